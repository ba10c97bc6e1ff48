from __future__ import annotations

import sqlite3
from datetime import date
from enum import Enum
from typing import Optional

from . import db
from .logging_utils import _scraper_event
from .models import ExtractedRecord
from .normalize import derived_columns


class SyncOutcome(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def reconcile(
    record: ExtractedRecord,
    *,
    conn: Optional[sqlite3.Connection] = None,
    today: Optional[date] = None,
) -> SyncOutcome:
    """Insert, update or skip ``record`` by identity key in one transaction.

    Unit rows and image assets are replaced wholesale whenever the property
    row is written. Replaying an identical record reports ``UNCHANGED`` and
    only stamps ``last_scraped_at`` and refreshes the date-derived columns.
    Store failures surface as ``db.PersistenceError``.
    """

    own = conn is None
    snapshot_hash = record.snapshot_hash
    try:
        conn = conn or db.get_connection()
        with conn:
            existing = db.find_property(record.identity_key, conn=conn)
            derived = derived_columns(record, today=today)
            if existing is not None and existing["snapshot_hash"] == snapshot_hash:
                db.touch_property(int(existing["id"]), conn=conn, derived=derived)
                outcome = SyncOutcome.UNCHANGED
            else:
                columns = {**record.attributes, **derived}
                property_id = db.upsert_property(
                    record.identity_key, columns, snapshot_hash, conn=conn
                )
                db.replace_unit_rows(property_id, record.unit_rows, conn=conn)
                db.replace_image_assets(property_id, record.images, conn=conn)
                outcome = SyncOutcome.NEW if existing is None else SyncOutcome.UPDATED
    except sqlite3.Error as exc:
        raise db.PersistenceError(
            f"Failed to persist {record.identity_key}: {exc}",
            identity_key=record.identity_key,
        ) from exc
    finally:
        if own and conn is not None:
            conn.close()

    _scraper_event(
        "sync",
        identity_key=record.identity_key,
        outcome=outcome.value,
        unit_rows=len(record.unit_rows),
        images=len(record.images),
    )
    return outcome


__all__ = ["SyncOutcome", "reconcile"]
