"""Playwright navigation over the paginated listing and project detail pages.

The navigator knows how to reach a listing page or a detail page and how to
read item references off a listing snapshot. It retries transient failures
with capped exponential backoff and knows nothing about checkpoints.
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, TypeVar
from urllib.parse import quote

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PWError, Page, TimeoutError as PWTimeout

from . import config
from .error_codes import ErrorCode, classify_http_status
from .logging_utils import _scraper_event
from .models import ItemRef, canonical_identity_key
from .retry_policy import compute_backoff_seconds, decide_retry
from .selectors import DETAIL_SELECTORS, LISTING_SELECTORS, ListingSelectors
from .utils import log_line

T = TypeVar("T")


class NavigationError(Exception):
    def __init__(
        self,
        error_code: str,
        message: str,
        *,
        http_status: int | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.http_status = http_status
        self.url = url


@dataclass(frozen=True)
class PageHandle:
    page_index: int
    url: str
    html: str


def detail_url_for(name: str, base: Optional[str] = None) -> str:
    """Return the project detail URL for a listing card name."""

    slug = "-".join(name.replace("@", "").split())
    return canonical_identity_key((base or config.DETAIL_URL_BASE) + quote(slug, safe="-"))


def _card_name(card: Any, selectors: ListingSelectors) -> str:
    for selector in selectors.name_selectors:
        node = card.select_one(selector)
        if node is not None:
            text = " ".join(node.get_text(" ").split())
            if text:
                return text
    return ""


def list_items_from_html(
    html: str,
    page_index: int,
    *,
    selectors: ListingSelectors = LISTING_SELECTORS,
    detail_base: Optional[str] = None,
) -> List[ItemRef]:
    """Return the item references on a listing snapshot in listing order."""

    soup = BeautifulSoup(html, "html5lib")
    cards: list = []
    for selector in selectors.card_selectors:
        cards = soup.select(selector)
        if cards:
            break

    items: List[ItemRef] = []
    seen: set[str] = set()
    for card in cards:
        name = _card_name(card, selectors)
        if not name or name in seen:
            continue
        seen.add(name)
        items.append(
            ItemRef(
                page_index=page_index,
                item_index=len(items),
                name=name,
                url=detail_url_for(name, detail_base),
            )
        )
    return items


def total_pages_from_html(html: str, *, selectors: ListingSelectors = LISTING_SELECTORS) -> int:
    """Return the highest page number in the pager, or 1 when none is found."""

    soup = BeautifulSoup(html, "html5lib")
    numbers = []
    for node in soup.select(selectors.pager_number):
        text = node.get_text(strip=True)
        if text.isdigit():
            numbers.append(int(text))
    return max(numbers) if numbers else 1


def _check_response(response: Any, url: str) -> None:
    status = getattr(response, "status", None) if response is not None else None
    if status is not None and int(status) >= 400:
        raise NavigationError(
            classify_http_status(int(status)),
            f"HTTP {status} for {url}",
            http_status=int(status),
            url=url,
        )


class PageNavigator:
    """Open listing and detail pages through a single Playwright page."""

    def __init__(
        self,
        page: Page,
        *,
        listing_url: Optional[str] = None,
        selectors: ListingSelectors = LISTING_SELECTORS,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        settle_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.page = page
        self.listing_url = listing_url or config.LISTING_URL
        self.selectors = selectors
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.NAV_MAX_ATTEMPTS)
        self.backoff_base = backoff_base if backoff_base is not None else config.NAV_BACKOFF_SECONDS
        self.settle_seconds = (
            settle_seconds if settle_seconds is not None else config.PAGE_SETTLE_SECONDS
        )
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Retry wrapper
    # ------------------------------------------------------------------

    def _with_retry(self, label: str, url: str, action: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                _scraper_event("nav", step="attempt", target=label, url=url, attempt=attempt)
                return action()
            except NavigationError as exc:
                error: NavigationError = exc
            except PWTimeout as exc:
                error = NavigationError(ErrorCode.NAV_TIMEOUT, f"Timed out loading {url}: {exc}", url=url)
            except PWError as exc:
                error = NavigationError(ErrorCode.NETWORK, f"Browser error loading {url}: {exc}", url=url)

            _scraper_event(
                "error",
                phase="nav",
                target=label,
                url=url,
                attempt=attempt,
                error_code=error.error_code,
                http_status=error.http_status,
                error=str(error),
            )
            if not decide_retry(
                attempt,
                self.max_attempts,
                error,
                error_code=error.error_code,
                http_status=error.http_status,
            ):
                log_line(f"[NAV] Giving up on {label} after {attempt} attempt(s): {error}")
                raise error
            delay = compute_backoff_seconds(attempt, base=self.backoff_base)
            log_line(f"[NAV] Retrying {label} in {delay:.1f}s (attempt {attempt + 1}/{self.max_attempts})")
            self._sleep(delay)

    # ------------------------------------------------------------------
    # Listing pages
    # ------------------------------------------------------------------

    def _goto_listing(self) -> None:
        response = self.page.goto(
            self.listing_url,
            wait_until="domcontentloaded",
            timeout=config.PLAYWRIGHT_NAV_TIMEOUT_SECONDS * 1000,
        )
        _check_response(response, self.listing_url)
        self.page.wait_for_selector(
            ", ".join(self.selectors.card_selectors),
            timeout=config.PLAYWRIGHT_SELECTOR_TIMEOUT_SECONDS * 1000,
        )

    def _wait_for_active(self, page_index: int) -> bool:
        try:
            self.page.wait_for_selector(
                f"{self.selectors.pager_number}.active:text-is('{page_index}')",
                timeout=config.PLAYWRIGHT_SELECTOR_TIMEOUT_SECONDS * 1000,
            )
            return True
        except PWTimeout:
            return False

    def _click_next(self) -> bool:
        for selector in self.selectors.next_buttons:
            button = self.page.locator(selector)
            if button.count() and button.first.is_enabled():
                button.first.click()
                return True
        return False

    def _go_to_page_number(self, page_index: int) -> None:
        numbers = self.page.locator(self.selectors.pager_number).filter(
            has_text=str(page_index)
        )
        for idx in range(numbers.count()):
            candidate = numbers.nth(idx)
            if candidate.inner_text().strip() == str(page_index):
                candidate.click()
                if self._wait_for_active(page_index):
                    return
                break

        # Collapsed pagers hide distant numbers; walk forward with "next".
        for _ in range(page_index - 1):
            active = self.page.locator(f"{self.selectors.pager_number}.active")
            if active.count() and active.first.inner_text().strip() == str(page_index):
                return
            if not self._click_next():
                break
            self._sleep(config.PLAYWRIGHT_POST_CLICK_SLEEP_SECONDS)

        if not self._wait_for_active(page_index):
            raise NavigationError(
                ErrorCode.SITE_STRUCTURE,
                f"Could not reach listing page {page_index}",
                url=self.listing_url,
            )

    def _load_listing_page(self, page_index: int) -> PageHandle:
        self._goto_listing()
        if page_index > 1:
            self._go_to_page_number(page_index)
        if self.settle_seconds > 0:
            self._sleep(self.settle_seconds)
        return PageHandle(page_index=page_index, url=self.page.url, html=self.page.content())

    def open(self, page_index: int) -> PageHandle:
        """Load listing page ``page_index`` (1-based) and snapshot its markup."""

        if page_index < 1:
            raise ValueError("page_index is 1-based")
        handle = self._with_retry(
            f"listing page {page_index}",
            self.listing_url,
            lambda: self._load_listing_page(page_index),
        )
        _scraper_event("nav", step="page_open", page_index=page_index, url=handle.url)
        return handle

    def list_items(self, handle: PageHandle) -> List[ItemRef]:
        items = list_items_from_html(handle.html, handle.page_index, selectors=self.selectors)
        _scraper_event("nav", step="items", page_index=handle.page_index, count=len(items))
        return items

    def detect_total_pages(self, handle: PageHandle) -> int:
        total = total_pages_from_html(handle.html, selectors=self.selectors)
        _scraper_event("nav", step="total_pages", total_pages=total)
        return total

    # ------------------------------------------------------------------
    # Detail pages
    # ------------------------------------------------------------------

    def _load_detail(self, tab: Page, url: str) -> None:
        response = tab.goto(
            url,
            wait_until="domcontentloaded",
            timeout=config.PLAYWRIGHT_NAV_TIMEOUT_SECONDS * 1000,
        )
        _check_response(response, url)
        try:
            tab.wait_for_selector(
                DETAIL_SELECTORS.info_container,
                timeout=config.PLAYWRIGHT_SELECTOR_TIMEOUT_SECONDS * 1000,
            )
        except PWTimeout:
            # Older layouts lack the info panel; the extractor falls back.
            log_line(f"[NAV] Info panel not found on {url}; continuing with fallbacks")

    @contextlib.contextmanager
    def detail_page(self, url: str) -> Iterator[Page]:
        """Open ``url`` in a fresh tab, yield it, and always close the tab."""

        tab = self.page.context.new_page()
        try:
            self._with_retry(f"detail {url}", url, lambda: self._load_detail(tab, url))
            yield tab
        finally:
            try:
                tab.close()
            except PWError as exc:
                log_line(f"[NAV] Failed to close detail tab for {url}: {exc}")


__all__ = [
    "NavigationError",
    "PageHandle",
    "PageNavigator",
    "detail_url_for",
    "list_items_from_html",
    "total_pages_from_html",
]
