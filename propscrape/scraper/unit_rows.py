"""Unit-mix row classification and range parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .models import UnitRow

_BEDROOM_PATTERN = re.compile(r"(\d+)\s*-?\s*(?:bed(?:room)?s?|br)\b", re.I)
_STUDIO_PATTERN = re.compile(r"\bstudio\b", re.I)
_PENTHOUSE_PATTERN = re.compile(r"\bpent\s*house\b", re.I)
_STUDY_PATTERN = re.compile(r"\bstudy\b", re.I)
_FLEXI_PATTERN = re.compile(r"\bflexi\b", re.I)
_AVAILABILITY_PATTERN = re.compile(r"(\d+)\s*/\s*(\d+)")
_NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")
_PRICE_TOKEN_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*([KkMm])?")

_SUFFIX_MULTIPLIERS = {"k": 1_000, "m": 1_000_000}


class ClassificationMiss(ValueError):
    """A row label outside the unit vocabulary; such rows are excluded."""


@dataclass(frozen=True)
class UnitClassification:
    bedrooms: Optional[int]
    has_study: bool = False
    has_flexi: bool = False
    is_penthouse: bool = False


def classify_unit_type(label: str) -> UnitClassification:
    """Classify a unit-type label against the bedroom/studio/penthouse vocabulary.

    Raises ``ClassificationMiss`` for anything else (car park lots, shop
    units, header rows).
    """

    text = (label or "").strip()
    has_study = bool(_STUDY_PATTERN.search(text))
    has_flexi = bool(_FLEXI_PATTERN.search(text))

    bedroom_match = _BEDROOM_PATTERN.search(text)
    bedrooms = int(bedroom_match.group(1)) if bedroom_match else None

    if _PENTHOUSE_PATTERN.search(text):
        return UnitClassification(
            bedrooms=bedrooms,
            has_study=has_study,
            has_flexi=has_flexi,
            is_penthouse=True,
        )
    if bedrooms is not None:
        return UnitClassification(bedrooms=bedrooms, has_study=has_study, has_flexi=has_flexi)
    if _STUDIO_PATTERN.search(text):
        return UnitClassification(bedrooms=0, has_study=has_study, has_flexi=has_flexi)

    raise ClassificationMiss(f"not a unit type: {text!r}")


def parse_size_range(text: str) -> Optional[Tuple[int, int]]:
    """Parse ``"980 - 1,200 sqft"`` into ``(980, 1200)``; single values repeat."""

    numbers = _NUMBER_PATTERN.findall((text or "").replace(",", ""))
    if not numbers:
        return None
    low = int(float(numbers[0]))
    high = int(float(numbers[1])) if len(numbers) > 1 else low
    return low, high


def parse_price_range(text: str) -> Optional[Tuple[int, int]]:
    """Parse ``"$1.2M - $1.5M"`` into ``(1200000, 1500000)``.

    Each bound carries its own K/M suffix; a bound without one borrows the
    suffix of the other (``"$1.2 - 1.5M"``).
    """

    tokens = _PRICE_TOKEN_PATTERN.findall((text or "").replace(",", ""))
    if not tokens:
        return None
    tokens = tokens[:2]
    suffixes = [suffix.lower() for _, suffix in tokens if suffix]
    shared = suffixes[-1] if suffixes else ""

    values = []
    for number, suffix in tokens:
        multiplier = _SUFFIX_MULTIPLIERS.get((suffix or shared).lower(), 1)
        values.append(int(round(float(number) * multiplier)))

    low = values[0]
    high = values[1] if len(values) > 1 else low
    return low, high


def parse_availability(text: str) -> Optional[Tuple[Optional[int], Optional[int]]]:
    """Parse ``"3 / 32"`` into ``(3, 32)``; ``"Sold Out"`` gives ``(0, None)``."""

    raw = (text or "").strip()
    match = _AVAILABILITY_PATTERN.search(raw)
    if match:
        return int(match.group(1)), int(match.group(2))
    if "sold out" in raw.lower():
        return 0, None
    return None


def build_unit_row(cells: Sequence[str]) -> Optional[UnitRow]:
    """Build a ``UnitRow`` from table cell texts, or ``None`` if excluded.

    Four-cell rows are ``type, size, price, availability``; three-cell rows
    from older table layouts omit availability.
    """

    texts = [" ".join((cell or "").split()) for cell in cells]
    if len(texts) < 3:
        return None

    try:
        kind = classify_unit_type(texts[0])
    except ClassificationMiss:
        return None

    size_text, price_text = texts[1], texts[2]
    availability_text = texts[3] if len(texts) > 3 else ""

    size = parse_size_range(size_text)
    price = parse_price_range(price_text)
    availability = parse_availability(availability_text)

    return UnitRow(
        unit_type=texts[0],
        bedrooms=kind.bedrooms,
        has_study=kind.has_study,
        has_flexi=kind.has_flexi,
        is_penthouse=kind.is_penthouse,
        size_min=size[0] if size else None,
        size_max=size[1] if size else None,
        size_text=size_text,
        price_min=price[0] if price else None,
        price_max=price[1] if price else None,
        price_text=price_text,
        available_units=availability[0] if availability else None,
        total_units=availability[1] if availability else None,
        availability_text=availability_text,
    )


def has_available_units(rows: Sequence[UnitRow]) -> bool:
    return any((row.available_units or 0) > 0 for row in rows)


__all__ = [
    "ClassificationMiss",
    "UnitClassification",
    "classify_unit_type",
    "parse_size_range",
    "parse_price_range",
    "parse_availability",
    "build_unit_row",
    "has_available_units",
]
