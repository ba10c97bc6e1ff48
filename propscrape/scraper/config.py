"""Configuration constants for the property listing scraper."""
from __future__ import annotations

import os
from pathlib import Path

DATA_DIR: Path = Path(os.getenv("PROPSCRAPE_DATA_DIR", "data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
CHECKPOINT_FILE: Path = DATA_DIR / "scraping-progress.json"
CONTROL_FILE: Path = DATA_DIR / "scraper-control.json"
IMAGE_DIR: Path = DATA_DIR / "images"
EXPORTS_DIR: Path = DATA_DIR / "exports"
DB_PATH: Path = DATA_DIR / "propscrape.db"

LISTING_URL: str = os.getenv(
    "PROPSCRAPE_LISTING_URL", "https://www.ecoprop.com/new-launch-properties"
)
DETAIL_URL_BASE: str = os.getenv(
    "PROPSCRAPE_DETAIL_URL_BASE", "https://www.ecoprop.com/projectdetail/"
)

NAV_MAX_ATTEMPTS: int = int(os.getenv("NAV_MAX_ATTEMPTS", "3"))
NAV_BACKOFF_SECONDS: float = float(os.getenv("NAV_BACKOFF_SECONDS", "1.0"))
PAGE_SETTLE_SECONDS: float = float(os.getenv("PAGE_SETTLE_SECONDS", "2.0"))
PER_ITEM_DELAY: float = float(os.getenv("PER_ITEM_DELAY", "1.0"))

CONTROL_POLL_SECONDS: float = float(os.getenv("CONTROL_POLL_SECONDS", "1.0"))
ERROR_BUFFER_SIZE: int = int(os.getenv("ERROR_BUFFER_SIZE", "50"))

GALLERY_SETTLE_TIMEOUT_SECONDS: float = float(
    os.getenv("GALLERY_SETTLE_TIMEOUT_SECONDS", "3.0")
)
GALLERY_POLL_SECONDS: float = float(os.getenv("GALLERY_POLL_SECONDS", "0.2"))
GALLERY_ALWAYS: bool = os.getenv("GALLERY_ALWAYS", "0").strip().lower() not in {
    "0",
    "false",
}

DOWNLOAD_IMAGES: bool = os.getenv("DOWNLOAD_IMAGES", "0").strip().lower() not in {
    "0",
    "false",
}
IMAGE_DOWNLOAD_RETRIES: int = int(os.getenv("IMAGE_DOWNLOAD_RETRIES", "3"))

HEADLESS: bool = os.getenv("HEADLESS", "1").strip().lower() not in {"0", "false"}
MIN_FREE_MB: int = int(os.getenv("MIN_FREE_MB", "200"))
EXPORTS_KEEP_MAX: int = int(os.getenv("EXPORTS_KEEP_MAX", "10"))


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


# Playwright timeouts (seconds)
PLAYWRIGHT_NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "PROPSCRAPE_NAV_TIMEOUT_SECONDS", 60
)
# Selector waits (listing cards, pager buttons, detail panels).
PLAYWRIGHT_SELECTOR_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "PROPSCRAPE_SELECTOR_TIMEOUT_SECONDS", 15
)
IMAGE_DOWNLOAD_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "PROPSCRAPE_IMAGE_TIMEOUT_SECONDS", 30
)
# Short pause after pager clicks so the listing re-renders.
PLAYWRIGHT_POST_CLICK_SLEEP_SECONDS: float = float(
    os.getenv("PLAYWRIGHT_POST_CLICK_SLEEP_SECONDS", "0.5")
)

COMMON_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
}
