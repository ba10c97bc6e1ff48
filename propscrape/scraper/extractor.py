"""Structured extraction of a project detail page.

Attributes and unit-mix rows are located through ordered lists of strategies.
Each strategy is a pure function over the parsed document that returns a
fragment or ``None``; the first fragment wins. New site layouts are handled
by appending strategies rather than editing existing ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup

from . import config
from .error_codes import ErrorCode
from .gallery import PlaywrightGalleryDriver, capture_gallery
from .logging_utils import _scraper_event
from .models import ExtractedRecord, ImageAsset, ItemRef
from .selectors import DETAIL_SELECTORS
from .unit_rows import build_unit_row, has_available_units
from .utils import log_line

Attributes = Dict[str, str]
CellRows = List[List[str]]


class ExtractionError(Exception):
    """Every attribute strategy missed; carries what was tried."""

    error_code = ErrorCode.EXTRACTION_MISS

    def __init__(self, message: str, *, url: str = "", attempts: Sequence[Dict[str, Any]] = ()) -> None:
        super().__init__(message)
        self.url = url
        self.attempts = list(attempts)

    def __str__(self) -> str:
        tried = "; ".join(
            f"{a['strategy']}({a['selector']})={a['candidates']}" for a in self.attempts
        )
        base = str(self.args[0]) if self.args else ""
        return f"{base} [tried: {tried}]" if tried else base


@dataclass(frozen=True)
class Strategy:
    name: str
    selector: str
    func: Callable[[BeautifulSoup], Any]


def _text(node: Any) -> str:
    return " ".join(node.get_text(" ").split()) if node is not None else ""


# Order matters: "units" must win over "top" for "Total Units".
_KEY_RULES = (
    (("units",), "total_units"),
    (("developer",), "developer"),
    (("blocks", "levels"), "blocks_levels"),
    (("top",), "expected_top"),
    (("tenure",), "tenure"),
    (("property type",), "property_type"),
    (("district",), "district"),
    (("address",), "address"),
)


def canonical_attribute_key(raw_key: str) -> Optional[str]:
    key = " ".join(raw_key.lower().split()).rstrip(":")
    for needles, name in _KEY_RULES:
        if all(needle in key for needle in needles):
            return name
    return None


def _price_and_size(scope: Any) -> Attributes:
    found: Attributes = {}
    price = scope.select_one(DETAIL_SELECTORS.price)
    if price is not None and _text(price):
        found["price_text"] = _text(price)
    size = scope.select_one(DETAIL_SELECTORS.size)
    if size is not None and _text(size):
        found["size_text"] = _text(size)
    return found


# ----------------------------------------------------------------------
# Attribute strategies
# ----------------------------------------------------------------------


def attributes_from_info_wrap(soup: BeautifulSoup) -> Optional[Attributes]:
    container = soup.select_one(DETAIL_SELECTORS.info_container)
    if container is None:
        return None
    found = _price_and_size(container)
    for row in container.select(DETAIL_SELECTORS.property_rows):
        key_node = row.select_one(DETAIL_SELECTORS.property_key)
        value_node = row.select_one(DETAIL_SELECTORS.property_value)
        if key_node is None or value_node is None:
            continue
        key = canonical_attribute_key(_text(key_node))
        value = _text(value_node)
        if key and value:
            found.setdefault(key, value)
    return found or None


def attributes_from_span_pairs(soup: BeautifulSoup) -> Optional[Attributes]:
    found: Attributes = {}
    for row in soup.select(".property_box p, .info_wrap p"):
        spans = row.find_all("span")
        if len(spans) < 2:
            continue
        key = canonical_attribute_key(_text(spans[0]))
        value = _text(spans[-1])
        if key and value:
            found.setdefault(key, value)
    if found:
        found.update({k: v for k, v in _price_and_size(soup).items() if k not in found})
    return found or None


def attributes_from_detail_table(soup: BeautifulSoup) -> Optional[Attributes]:
    found: Attributes = {}
    for row in soup.select("table tr"):
        cells = row.find_all(["th", "td"])
        if len(cells) != 2:
            continue
        key = canonical_attribute_key(_text(cells[0]))
        value = _text(cells[1])
        if key and value:
            found.setdefault(key, value)
    return found or None


ATTRIBUTE_STRATEGIES: List[Strategy] = [
    Strategy("info_wrap", DETAIL_SELECTORS.info_container, attributes_from_info_wrap),
    Strategy("span_pairs", ".property_box p, .info_wrap p", attributes_from_span_pairs),
    Strategy("detail_table", "table tr", attributes_from_detail_table),
]


# ----------------------------------------------------------------------
# Unit-mix strategies
# ----------------------------------------------------------------------


def _paragraph_rows(container: Any) -> CellRows:
    rows: CellRows = []
    for row in container.select(DETAIL_SELECTORS.unit_mix_rows):
        cells = [_text(cell) for cell in row.find_all("p")]
        if len(cells) >= 4:
            rows.append(cells)
    return rows


def unit_rows_from_anchor(soup: BeautifulSoup) -> Optional[CellRows]:
    anchor = soup.select_one(DETAIL_SELECTORS.unit_mix_anchor)
    if anchor is None:
        return None
    return _paragraph_rows(anchor) or None


def unit_rows_from_heading(soup: BeautifulSoup) -> Optional[CellRows]:
    for heading in soup.find_all(["h3", "h4", "h5"]):
        if DETAIL_SELECTORS.unit_mix_heading_text not in _text(heading).lower():
            continue
        container = heading.find_parent(class_="unitMix") or heading.parent
        if container is None:
            continue
        rows = _paragraph_rows(container)
        if rows:
            return rows
    return None


def unit_rows_from_legacy_table(soup: BeautifulSoup) -> Optional[CellRows]:
    tables = []
    for selector in DETAIL_SELECTORS.legacy_tables:
        tables.extend(soup.select(selector))
    for table in soup.find_all("table"):
        text = _text(table).lower()
        if any(word in text for word in DETAIL_SELECTORS.legacy_table_keywords):
            tables.append(table)

    seen: set[int] = set()
    for table in tables:
        if id(table) in seen:
            continue
        seen.add(id(table))
        rows: CellRows = []
        for row in table.find_all("tr")[1:]:
            cells = [_text(cell) for cell in row.find_all(["td", "th"])]
            if len(cells) >= 3:
                rows.append(cells)
        if rows:
            return rows
    return None


UNIT_ROW_STRATEGIES: List[Strategy] = [
    Strategy("unit_mix_anchor", DETAIL_SELECTORS.unit_mix_anchor, unit_rows_from_anchor),
    Strategy("unit_mix_heading", "h3, h4, h5", unit_rows_from_heading),
    Strategy("legacy_table", "table", unit_rows_from_legacy_table),
]


def _run_strategies(
    soup: BeautifulSoup, strategies: Sequence[Strategy]
) -> tuple[Optional[Any], List[Dict[str, Any]]]:
    attempts: List[Dict[str, Any]] = []
    for strategy in strategies:
        fragment = strategy.func(soup)
        attempts.append(
            {
                "strategy": strategy.name,
                "selector": strategy.selector,
                "candidates": len(soup.select(strategy.selector)),
            }
        )
        if fragment is not None:
            return fragment, attempts
    return None, attempts


def extract_from_html(
    html: str,
    item: ItemRef,
    *,
    attribute_strategies: Sequence[Strategy] = ATTRIBUTE_STRATEGIES,
    unit_row_strategies: Sequence[Strategy] = UNIT_ROW_STRATEGIES,
) -> ExtractedRecord:
    """Build a record from detail-page markup.

    Raises ``ExtractionError`` when no attribute strategy matches. A missing
    unit-mix table only yields an empty unit list.
    """

    soup = BeautifulSoup(html, "html5lib")

    attributes, attempts = _run_strategies(soup, attribute_strategies)
    if attributes is None:
        raise ExtractionError(
            f"No property attributes found for {item.name!r}",
            url=item.url,
            attempts=attempts,
        )

    record = ExtractedRecord(identity_key=item.url, attributes={"name": item.name, **attributes})

    cell_rows, unit_attempts = _run_strategies(soup, unit_row_strategies)
    if cell_rows is None:
        _scraper_event("extract", step="no_unit_mix", item=item.name, attempts=unit_attempts)
    else:
        for cells in cell_rows:
            row = build_unit_row(cells)
            if row is not None:
                record.unit_rows.append(row)

    _scraper_event(
        "extract",
        step="record",
        item=item.name,
        attributes=len(record.attributes),
        unit_rows=len(record.unit_rows),
    )
    return record


class StructuredExtractor:
    """Extract one ``ExtractedRecord`` per item through a detail tab."""

    def __init__(
        self,
        navigator: Any,
        *,
        gallery_always: Optional[bool] = None,
        capture: Callable[..., List[ImageAsset]] = capture_gallery,
        image_fetcher: Optional[Callable[[ExtractedRecord], None]] = None,
    ) -> None:
        self.navigator = navigator
        self.gallery_always = config.GALLERY_ALWAYS if gallery_always is None else gallery_always
        self._capture = capture
        self._image_fetcher = image_fetcher

    def extract(self, item: ItemRef) -> ExtractedRecord:
        with self.navigator.detail_page(item.url) as tab:
            record = extract_from_html(tab.content(), item)
            if self.gallery_always or has_available_units(record.unit_rows):
                record.images = self._capture(PlaywrightGalleryDriver(tab))
            else:
                log_line(f"[EXTRACT] {item.name}: no available units; skipping gallery")

        if self._image_fetcher is not None and record.images:
            self._image_fetcher(record)
        return record


__all__ = [
    "ExtractionError",
    "Strategy",
    "ATTRIBUTE_STRATEGIES",
    "UNIT_ROW_STRATEGIES",
    "canonical_attribute_key",
    "attributes_from_info_wrap",
    "attributes_from_span_pairs",
    "attributes_from_detail_table",
    "unit_rows_from_anchor",
    "unit_rows_from_heading",
    "unit_rows_from_legacy_table",
    "extract_from_html",
    "StructuredExtractor",
]
