from pathlib import Path

import pytest
import requests

from propscrape.scraper import images
from propscrape.scraper.error_codes import ErrorCode
from propscrape.scraper.models import ExtractedRecord, ImageAsset


class _FakeResponse:
    def __init__(self, status_code: int = 200, content_type: str = "image/png", body: bytes = b"\x89PNG") -> None:
        self.status_code = status_code
        self.headers = {"Content-Type": content_type}
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):  # noqa: ANN001
        return False

    def iter_content(self, chunk_size=8192):  # noqa: ANN001
        yield self.body


class _FakeSession:
    def __init__(self, outcomes) -> None:  # noqa: ANN001
        self.outcomes = list(outcomes)
        self.urls = []

    def get(self, url, **kwargs):  # noqa: ANN001
        self.urls.append(url)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_download_image_uses_content_type_extension(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    messages = []
    monkeypatch.setattr(images, "log_line", lambda msg: messages.append(str(msg)))
    session = _FakeSession([_FakeResponse()])

    result = images.download_image(
        "https://img.example.com/a.png?sig=secret", tmp_path / "1_Bedroom", session=session
    )

    assert result.ok is True
    assert result.path == tmp_path / "1_Bedroom.png"
    assert result.bytes_written == 4
    assert result.path.read_bytes() == b"\x89PNG"


def test_download_image_retries_network_errors(tmp_path: Path) -> None:
    sleeps = []
    session = _FakeSession([requests.ConnectionError("reset"), _FakeResponse(content_type="image/jpeg")])

    result = images.download_image(
        "https://img.example.com/a.jpg", tmp_path / "a", session=session, sleep=sleeps.append
    )

    assert result.ok is True
    assert result.path.suffix == ".jpg"
    assert sleeps == [1.0]
    assert len(session.urls) == 2


def test_download_image_rejects_non_images(tmp_path: Path) -> None:
    session = _FakeSession([_FakeResponse(content_type="text/html", body=b"<html>")])

    result = images.download_image(
        "https://img.example.com/a.jpg", tmp_path / "a", session=session, sleep=lambda _: None
    )

    assert result.ok is False
    assert "text/html" in result.error_message
    assert len(session.urls) == 1
    assert list(tmp_path.iterdir()) == []


def test_download_image_does_not_retry_404(tmp_path: Path) -> None:
    session = _FakeSession([_FakeResponse(status_code=404)])

    result = images.download_image(
        "https://img.example.com/gone.jpg", tmp_path / "gone", session=session, sleep=lambda _: None
    )

    assert result.ok is False
    assert result.status_code == 404
    assert len(session.urls) == 1


def test_fetcher_marks_failed_assets_unfetchable(tmp_path: Path) -> None:
    session = _FakeSession([_FakeResponse(), _FakeResponse(status_code=404)])
    record = ExtractedRecord(
        identity_key="https://example.com/projectdetail/parc-clementi",
        images=[
            ImageAsset(label="1 Bedroom", source_url="https://img.example.com/1br.png"),
            ImageAsset(label="2 Bedroom", source_url="https://img.example.com/2br.png"),
            ImageAsset(label="Site Plan", source_url="data:image/png;base64,AAAA"),
        ],
    )

    images.ImageFetcher(root=tmp_path, session=session, sleep=lambda _: None)(record)

    first, second, inline = record.images
    target = images.image_dir_for(record.identity_key, tmp_path)
    assert first.local_path == str(target / "1_Bedroom.png")
    assert first.fetchable is True
    assert second.fetchable is False
    assert second.local_path is None
    assert inline.fetchable is False
    assert len(session.urls) == 2


def test_image_fetch_error_code() -> None:
    err = images.ImageFetchError(ErrorCode.HTTP_5XX, "HTTP 503", http_status=503)

    assert err.error_code == "http_5xx"
    assert err.http_status == 503
