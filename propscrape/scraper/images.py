from __future__ import annotations

import hashlib
import time
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import requests

from . import config
from .error_codes import ErrorCode, classify_http_status
from .logging_utils import _scraper_event
from .models import ExtractedRecord, ImageAsset
from .retry_policy import compute_backoff_seconds, decide_retry
from .utils import log_line, sanitize_filename

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


@dataclass
class ImageDownloadResult:
    ok: bool
    status_code: Optional[int]
    bytes_written: int
    path: Optional[Path]
    error_message: Optional[str]


class ImageFetchError(Exception):
    def __init__(self, error_code: str, message: str, *, http_status: int | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.http_status = http_status


def _redact_url(url: str) -> str:
    try:
        parsed = urllib.parse.urlparse(url)
        return urllib.parse.urlunparse(parsed._replace(query=""))
    except Exception:
        return url


def image_dir_for(identity_key: str, root: Optional[Path] = None) -> Path:
    digest = hashlib.sha1(identity_key.encode("utf-8")).hexdigest()[:12]
    return Path(root or config.IMAGE_DIR) / digest


def download_image(
    url: str,
    dest_stem: Path,
    *,
    session: Optional[Any] = None,
    max_retries: Optional[int] = None,
    timeout: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ImageDownloadResult:
    """Stream an image into ``dest_stem`` plus an extension from its content type."""

    http = session or requests
    attempts = max(1, max_retries if max_retries is not None else config.IMAGE_DOWNLOAD_RETRIES)
    wait = timeout if timeout is not None else config.IMAGE_DOWNLOAD_TIMEOUT_SECONDS
    safe_url = _redact_url(url)
    dest_stem.parent.mkdir(parents=True, exist_ok=True)

    for attempt in range(1, attempts + 1):
        status: Optional[int] = None
        dest_path: Optional[Path] = None
        try:
            with http.get(url, stream=True, timeout=wait, headers=config.COMMON_HEADERS) as resp:
                status = resp.status_code
                if status >= 400:
                    raise ImageFetchError(
                        classify_http_status(status), f"HTTP {status}", http_status=status
                    )
                content_type = (resp.headers.get("Content-Type") or "").split(";")[0].strip().lower()
                if not content_type.startswith("image/"):
                    raise ImageFetchError("not_an_image", f"Unexpected content type {content_type!r}")
                dest_path = dest_stem.with_suffix(_EXTENSIONS.get(content_type, ".jpg"))
                with dest_path.open("wb") as handle:
                    for chunk in resp.iter_content(chunk_size=8192):
                        if chunk:
                            handle.write(chunk)

            size = dest_path.stat().st_size
            _scraper_event("image", step="saved", url=safe_url, http_status=status, bytes=size)
            return ImageDownloadResult(True, status, size, dest_path, None)

        except ImageFetchError as exc:
            error: Exception = exc
            error_code = exc.error_code
            status = status or exc.http_status
        except (requests.Timeout, requests.ConnectionError) as exc:
            error, error_code = exc, ErrorCode.NETWORK
        except OSError as exc:
            error, error_code = exc, ErrorCode.INTERNAL

        if dest_path is not None:
            dest_path.unlink(missing_ok=True)
        should_retry = decide_retry(
            attempt,
            attempts,
            error,
            error_code=error_code,
            http_status=status,
        )
        log_line(f"[IMAGE] Attempt {attempt} for {safe_url} failed: {error}")
        if not should_retry:
            return ImageDownloadResult(False, status, 0, None, str(error))
        sleep(compute_backoff_seconds(attempt))

    return ImageDownloadResult(False, None, 0, None, "download failed")


class ImageFetcher:
    """Download every fetchable asset of a record; failures are never fatal."""

    def __init__(self, *, root: Optional[Path] = None, session: Optional[Any] = None, **kwargs: Any) -> None:
        self.root = root
        self.session = session or requests.Session()
        self.kwargs = kwargs

    def __call__(self, record: ExtractedRecord) -> None:
        target = image_dir_for(record.identity_key, self.root)
        for asset in record.images:
            self._fetch(asset, target)

    def _fetch(self, asset: ImageAsset, target: Path) -> None:
        if not asset.fetchable or not asset.source_url.startswith(("http://", "https://")):
            asset.fetchable = False
            return
        stem = target / sanitize_filename(asset.label)
        result = download_image(asset.source_url, stem, session=self.session, **self.kwargs)
        if result.ok and result.path is not None:
            asset.local_path = str(result.path)
        else:
            asset.fetchable = False
            _scraper_event(
                "error",
                phase="image",
                error_code=ErrorCode.IMAGE_FETCH,
                asset=asset.label,
                url=_redact_url(asset.source_url),
                error=result.error_message,
            )


__all__ = [
    "ImageDownloadResult",
    "ImageFetchError",
    "ImageFetcher",
    "download_image",
    "image_dir_for",
]
