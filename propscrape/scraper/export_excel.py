"""Excel export of the scraped property catalogue."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Optional

import pandas as pd

from . import config, db
from .utils import log_line


def prune_old_exports(keep: Optional[int] = None) -> None:
    """Delete the oldest workbooks so at most ``keep`` remain."""

    limit = max(1, keep if keep is not None else config.EXPORTS_KEEP_MAX)
    exports_dir = Path(config.EXPORTS_DIR)
    if not exports_dir.is_dir():
        return
    files = sorted(str(p) for p in exports_dir.iterdir() if p.suffix == ".xlsx")
    while len(files) > limit:
        old = files.pop(0)
        try:
            os.remove(old)
        except Exception:  # noqa: BLE001
            continue


def latest_export_path() -> Optional[Path]:
    exports_dir = Path(config.EXPORTS_DIR)
    if not exports_dir.is_dir():
        return None
    files = sorted(p for p in exports_dir.iterdir() if p.suffix == ".xlsx")
    return files[-1] if files else None


def export_catalogue_to_excel(dest_path: Optional[str] = None) -> str:
    """Write properties, unit rows, images and sessions to an ``.xlsx`` workbook.

    Returns the path written. Without ``dest_path`` the workbook lands in
    ``EXPORTS_DIR`` with a timestamped name and older exports are pruned.
    """

    conn = db.get_connection()
    try:
        properties = pd.read_sql_query(
            "SELECT * FROM properties ORDER BY name COLLATE NOCASE", conn
        )
        unit_rows = pd.read_sql_query(
            """
            SELECT p.name AS property_name, p.identity_key, u.*
            FROM unit_rows AS u
            JOIN properties AS p ON p.id = u.property_id
            ORDER BY p.name COLLATE NOCASE, u.position
            """,
            conn,
        )
        images = pd.read_sql_query(
            """
            SELECT p.name AS property_name, p.identity_key, i.*
            FROM image_assets AS i
            JOIN properties AS p ON p.id = i.property_id
            ORDER BY p.name COLLATE NOCASE, i.position
            """,
            conn,
        )
        sessions = pd.read_sql_query(
            "SELECT * FROM scrape_sessions ORDER BY started_at DESC", conn
        )
    finally:
        conn.close()

    if properties.empty:
        summary_status = pd.DataFrame([{"info": "No properties scraped yet"}])
    else:
        summary_status = (
            properties.groupby(["sales_status", "completion_status"], dropna=False)
            .size()
            .reset_index(name="count")
            .sort_values("count", ascending=False)
        )
    summary_type = (
        properties.groupby("property_type_mapped", dropna=False).size().reset_index(name="count")
        if not properties.empty
        else pd.DataFrame()
    )

    managed = dest_path is None
    if managed:
        os.makedirs(config.EXPORTS_DIR, exist_ok=True)
        stamp = time.strftime("%Y%m%d_%H%M%S", time.gmtime())
        dest_path = os.path.join(config.EXPORTS_DIR, f"properties_{stamp}.xlsx")

    with pd.ExcelWriter(dest_path, engine="openpyxl") as writer:
        properties.to_excel(writer, index=False, sheet_name="Properties")
        unit_rows.to_excel(writer, index=False, sheet_name="Unit_Rows")
        images.to_excel(writer, index=False, sheet_name="Images")
        sessions.to_excel(writer, index=False, sheet_name="Sessions")
        summary_status.to_excel(writer, index=False, sheet_name="Summary_Status")
        if not summary_type.empty:
            summary_type.to_excel(writer, index=False, sheet_name="Summary_Type")

    log_line(f"[EXPORT] Wrote {len(properties)} properties to {dest_path}")
    if managed:
        prune_old_exports()
    return str(dest_path)


__all__ = ["export_catalogue_to_excel", "latest_export_path", "prune_old_exports"]
