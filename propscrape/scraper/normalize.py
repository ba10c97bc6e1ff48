"""Derived property columns computed from extracted attribute text."""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, Optional, Sequence

from .models import ExtractedRecord, UnitRow
from .unit_rows import has_available_units, parse_price_range

DEFAULT_PROPERTY_TYPE = "Private Condo"

PROPERTY_TYPE_MAP = {
    "residential lowrise": "Private Condo",
    "residential highrise": "Private Condo",
    "residential": "Private Condo",
    "condo": "Private Condo",
    "condominium": "Private Condo",
    "executive condo": "Executive Condo",
    "ec": "Executive Condo",
    "landed": "Landed House",
    "landed house": "Landed House",
    "commercial": "Business Space",
    "mixed development": "Mixed",
    "mixed use": "Mixed",
}

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_QUARTER_PATTERN = re.compile(r"\b(?:q|quarter\s*)([1-4])\b")
_YEAR_PATTERN = re.compile(r"\b(20\d{2})\b")


def map_property_type(raw: Optional[str]) -> str:
    if not raw:
        return DEFAULT_PROPERTY_TYPE
    return PROPERTY_TYPE_MAP.get(" ".join(raw.split()).lower(), DEFAULT_PROPERTY_TYPE)


def parse_total_units(raw: Optional[str]) -> Optional[int]:
    match = re.search(r"\d+", (raw or "").replace(",", ""))
    return int(match.group(0)) if match else None


def parse_top_date(raw: Optional[str]) -> Optional[date]:
    """Parse ``"Q3 2027"``, ``"Dec 2026"`` or ``"2027"`` into the first of a month.

    A bare year maps to December; quarters map to their last month.
    """

    text = (raw or "").strip().lower()
    year_match = _YEAR_PATTERN.search(text)
    if not year_match:
        return None

    month = 12
    quarter = _QUARTER_PATTERN.search(text)
    if quarter:
        month = int(quarter.group(1)) * 3
    else:
        for name, number in _MONTHS.items():
            if name in text:
                month = number
                break
    return date(int(year_match.group(1)), month, 1)


def infer_sales_status(rows: Sequence[UnitRow]) -> str:
    if not rows:
        return "Coming Soon"
    return "Available" if has_available_units(rows) else "Sold out"


def infer_completion_status(raw: Optional[str], *, today: Optional[date] = None) -> str:
    top = parse_top_date(raw)
    if top is None:
        return "BUC"
    current = today or date.today()
    months_until = (top - current).days / 30
    if months_until < 0:
        return "Completed"
    if months_until <= 6:
        return "TOP soon"
    return "BUC"


def derived_columns(record: ExtractedRecord, *, today: Optional[date] = None) -> Dict[str, Any]:
    """Return the derived property columns written alongside the raw attributes."""

    attrs = record.attributes
    price = parse_price_range(attrs.get("price_text", ""))
    top = parse_top_date(attrs.get("expected_top"))
    return {
        "property_type_mapped": map_property_type(attrs.get("property_type")),
        "total_units_count": parse_total_units(attrs.get("total_units")),
        "top_date": top.isoformat() if top else None,
        "sales_status": infer_sales_status(record.unit_rows),
        "completion_status": infer_completion_status(attrs.get("expected_top"), today=today),
        "price_min": price[0] if price else None,
        "price_max": price[1] if price else None,
    }


__all__ = [
    "PROPERTY_TYPE_MAP",
    "map_property_type",
    "parse_total_units",
    "parse_top_date",
    "infer_sales_status",
    "infer_completion_status",
    "derived_columns",
]
