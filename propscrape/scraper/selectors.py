from __future__ import annotations

"""Selectors for the new-launch listing site, primary first then fallbacks."""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class ListingSelectors:
    """Listing page hints.

    Cards carry the project name; the detail URL is derived from that name
    because the cards do not link to it directly.
    """

    card_selectors: Tuple[str, ...] = (".project_info", ".project-card", ".property_item")
    name_selectors: Tuple[str, ...] = (
        ".project_detail h2.mmm.one-line",
        ".project_detail h2",
        "h2",
        "h3",
    )
    pager_number: str = ".el-pager .number"
    next_buttons: Tuple[str, ...] = (
        ".btn-next",
        ".el-pager .btn-next",
        ".pagination .next",
        "button:has-text('Next')",
    )


@dataclass(frozen=True)
class DetailSelectors:
    info_container: str = "#info_wrap, .info_wrap"
    price: str = ".price_box .price_left .price"
    size: str = ".price_box .price_right .price"
    property_rows: str = ".property_box p"
    property_key: str = ".property_key"
    property_value: str = ".property_value"
    unit_mix_anchor: str = "#AvailableUnitMix"
    unit_mix_heading_text: str = "available unit mix"
    unit_mix_rows: str = ".content .table_body"
    legacy_tables: Tuple[str, ...] = (
        ".unit_mix_table",
        ".unit-mix-table",
        ".unitmix_table",
        ".price_table",
        ".unit_table",
        "table[class*='unit']",
        "table[class*='mix']",
        "table[class*='price']",
    )
    legacy_table_keywords: Tuple[str, ...] = ("bedroom", "unit", "sqft", "available", "total")


@dataclass(frozen=True)
class GallerySelectors:
    all_tabs: Tuple[str, ...] = (
        "a[href='#all']",
        ".tab-link[data-tab='all']",
        "#tab-0",
        ".el-tabs__item:has-text('All')",
        ".floor_plan_tab a:first-child",
        ".tab_nav a:first-child",
    )
    pane: str = "#pane-0"
    desktop_items: str = "#pane-0 .left .item"
    mobile_items: str = "#pane-0 .box-m .item"
    item_name: str = ".mmm.name"
    item_type: str = ".mrm.type"
    image: str = "#pane-0 .right .el-image img"
    preview_attribute: str = "preview-src-list"


LISTING_SELECTORS = ListingSelectors()
DETAIL_SELECTORS = DetailSelectors()
GALLERY_SELECTORS = GallerySelectors()

__all__ = [
    "ListingSelectors",
    "DetailSelectors",
    "GallerySelectors",
    "LISTING_SELECTORS",
    "DETAIL_SELECTORS",
    "GALLERY_SELECTORS",
]
