"""Tabbed floor-plan gallery capture.

Each gallery item swaps the image shown in a shared panel when clicked. The
capture walks the items strictly in order and waits for the panel's image
reference to change instead of sleeping for a fixed time, so a slow swap is
not mistaken for the previous item's image.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Set

from playwright.sync_api import Error as PWError, Page

from . import config
from .logging_utils import _scraper_event
from .models import ImageAsset
from .selectors import GALLERY_SELECTORS, GallerySelectors
from .utils import log_line, sanitize_filename


@dataclass(frozen=True)
class GalleryItem:
    name: str
    unit_type: str = ""
    preview: Optional[str] = None
    position: Optional[int] = None


class GalleryDriver(Protocol):
    def activate_all_tab(self) -> bool: ...

    def items(self) -> List[GalleryItem]: ...

    def current_image(self) -> Optional[str]: ...

    def activate(self, index: int) -> None: ...


def parse_preview_list(raw: Optional[str]) -> Optional[str]:
    """Return the first URL from a ``preview-src-list`` attribute value."""

    if not raw:
        return None
    cleaned = raw.strip().strip("[]")
    for part in cleaned.split(","):
        candidate = part.strip().strip("'\"").strip()
        if candidate and candidate.lower() != "null":
            return candidate
    return None


def _await_change(
    driver: GalleryDriver,
    before: Optional[str],
    exclude: Set[str],
    *,
    timeout: float,
    poll_interval: float,
    sleep: Callable[[float], None],
    clock: Callable[[], float],
) -> Optional[str]:
    deadline = clock() + timeout
    while True:
        current = driver.current_image()
        if current and current != before and current not in exclude:
            return current
        if clock() >= deadline:
            return None
        sleep(poll_interval)


def capture_gallery(
    driver: GalleryDriver,
    *,
    timeout: Optional[float] = None,
    poll_interval: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> List[ImageAsset]:
    """Return one image asset per gallery item that yielded an image.

    When the panel does not change before ``timeout`` the current image is
    accepted only if no earlier item already produced it; otherwise the
    item's preview attribute is used, and failing that the item is skipped.
    """

    settle = config.GALLERY_SETTLE_TIMEOUT_SECONDS if timeout is None else timeout
    interval = config.GALLERY_POLL_SECONDS if poll_interval is None else poll_interval

    if not driver.activate_all_tab():
        log_line("[GALLERY] 'All' tab not found; reading the default pane")

    try:
        items = driver.items()
    except Exception as exc:  # noqa: BLE001
        log_line(f"[GALLERY] Unable to enumerate gallery items: {exc}")
        return []

    assets: List[ImageAsset] = []
    captured: set[str] = set()

    for index, item in enumerate(items):
        try:
            before = driver.current_image()
            driver.activate(item.position if item.position is not None else index)
            source = _await_change(
                driver,
                before,
                captured,
                timeout=settle,
                poll_interval=interval,
                sleep=sleep,
                clock=clock,
            )
            how = "changed"
            if source is None:
                current = driver.current_image()
                if current and current not in captured:
                    source, how = current, "settled"
                else:
                    source, how = parse_preview_list(item.preview), "preview"
        except Exception as exc:  # noqa: BLE001
            log_line(f"[GALLERY] Failed to read image for {item.name!r}: {exc}")
            continue

        if not source:
            log_line(f"[GALLERY] No image for {item.name!r}; skipping")
            continue

        captured.add(source)
        assets.append(
            ImageAsset(
                label=item.name,
                unit_type=item.unit_type,
                source_url=source,
                file_name=f"{sanitize_filename(item.name)}.jpg",
            )
        )
        _scraper_event("gallery", step="captured", index=index, item_label=item.name, how=how)

    return assets


class PlaywrightGalleryDriver:
    """Gallery access through a live Playwright page."""

    def __init__(self, page: Page, selectors: GallerySelectors = GALLERY_SELECTORS) -> None:
        self.page = page
        self.selectors = selectors

    def activate_all_tab(self) -> bool:
        for selector in self.selectors.all_tabs:
            try:
                tab = self.page.locator(selector)
                if tab.count() and "all" in tab.first.inner_text().strip().lower():
                    tab.first.click(timeout=config.PLAYWRIGHT_SELECTOR_TIMEOUT_SECONDS * 1000)
                    return True
            except PWError:
                continue
        return False

    def _item_locator(self):
        desktop = self.page.locator(self.selectors.desktop_items)
        if desktop.count():
            return desktop
        return self.page.locator(self.selectors.mobile_items)

    def _text(self, parent, selector: str) -> str:
        node = parent.locator(selector)
        if not node.count():
            return ""
        return " ".join(node.first.inner_text().split())

    def items(self) -> List[GalleryItem]:
        locator = self._item_locator()
        found: List[GalleryItem] = []
        for idx in range(locator.count()):
            node = locator.nth(idx)
            name = self._text(node, self.selectors.item_name)
            if not name:
                continue
            found.append(
                GalleryItem(
                    name=name,
                    unit_type=self._text(node, self.selectors.item_type),
                    preview=node.get_attribute(self.selectors.preview_attribute),
                    position=idx,
                )
            )
        return found

    def current_image(self) -> Optional[str]:
        image = self.page.locator(self.selectors.image)
        if not image.count():
            return None
        return image.first.get_attribute("src")

    def activate(self, index: int) -> None:
        self._item_locator().nth(index).click(
            timeout=config.PLAYWRIGHT_SELECTOR_TIMEOUT_SECONDS * 1000
        )


__all__ = [
    "GalleryItem",
    "GalleryDriver",
    "PlaywrightGalleryDriver",
    "capture_gallery",
    "parse_preview_list",
]
