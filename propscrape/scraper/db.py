"""SQLite helpers for the property scraper.

This module defines the project database path, connection helper, schema
initialisation, and the insert/update/query operations used by the sync layer
and the scrape session summary.
"""
from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from . import config
from .error_codes import ErrorCode
from .models import ImageAsset, UnitRow

DB_PATH: Path = config.DB_PATH

PROPERTY_COLUMNS = (
    "name",
    "property_type",
    "district",
    "address",
    "developer",
    "tenure",
    "total_units",
    "expected_top",
    "blocks_levels",
    "price_text",
    "size_text",
    "property_type_mapped",
    "total_units_count",
    "top_date",
    "sales_status",
    "completion_status",
    "price_min",
    "price_max",
)


class PersistenceError(Exception):
    """A backing-store write or read failed."""

    error_code = ErrorCode.PERSISTENCE

    def __init__(self, message: str, *, identity_key: Optional[str] = None) -> None:
        super().__init__(message)
        self.identity_key = identity_key


def get_connection() -> sqlite3.Connection:
    """Return a SQLite connection to the project database.

    The parent directory is created if missing and ``check_same_thread`` is
    disabled so the Flask app can share the helper. Callers must manage
    concurrency at a higher layer.
    """

    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_schema() -> None:
    """Create the baseline tables if they do not yet exist.

    Safe to call multiple times; each statement uses ``IF NOT EXISTS``.
    """

    statements: Iterable[str] = (
        """
        CREATE TABLE IF NOT EXISTS properties (
            id                   INTEGER PRIMARY KEY AUTOINCREMENT,
            identity_key         TEXT NOT NULL UNIQUE,
            name                 TEXT NOT NULL,
            property_type        TEXT,
            district             TEXT,
            address              TEXT,
            developer            TEXT,
            tenure               TEXT,
            total_units          TEXT,
            expected_top         TEXT,
            blocks_levels        TEXT,
            price_text           TEXT,
            size_text            TEXT,
            property_type_mapped TEXT,
            total_units_count    INTEGER,
            top_date             TEXT,
            sales_status         TEXT,
            completion_status    TEXT,
            price_min            INTEGER,
            price_max            INTEGER,
            snapshot_hash        TEXT NOT NULL,
            first_seen_at        TEXT NOT NULL,
            last_scraped_at      TEXT NOT NULL,
            updated_at           TEXT NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS unit_rows (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            property_id       INTEGER NOT NULL,
            position          INTEGER NOT NULL,
            unit_type         TEXT NOT NULL,
            bedrooms          INTEGER,
            has_study         INTEGER NOT NULL DEFAULT 0,
            has_flexi         INTEGER NOT NULL DEFAULT 0,
            is_penthouse      INTEGER NOT NULL DEFAULT 0,
            size_min          INTEGER,
            size_max          INTEGER,
            size_text         TEXT,
            price_min         INTEGER,
            price_max         INTEGER,
            price_text        TEXT,
            available_units   INTEGER,
            total_units       INTEGER,
            availability_text TEXT,
            FOREIGN KEY(property_id) REFERENCES properties(id) ON DELETE CASCADE
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_unit_rows_property
            ON unit_rows(property_id);
        """,
        """
        CREATE TABLE IF NOT EXISTS image_assets (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            property_id  INTEGER NOT NULL,
            position     INTEGER NOT NULL,
            label        TEXT NOT NULL,
            unit_type    TEXT,
            source_url   TEXT NOT NULL,
            file_name    TEXT,
            fetchable    INTEGER NOT NULL DEFAULT 1,
            local_path   TEXT,
            FOREIGN KEY(property_id) REFERENCES properties(id) ON DELETE CASCADE
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_image_assets_property
            ON image_assets(property_id);
        """,
        """
        CREATE TABLE IF NOT EXISTS scrape_sessions (
            id               TEXT PRIMARY KEY,
            status           TEXT NOT NULL,
            started_at       TEXT NOT NULL,
            ended_at         TEXT,
            processed        INTEGER NOT NULL DEFAULT 0,
            new_count        INTEGER NOT NULL DEFAULT 0,
            updated_count    INTEGER NOT NULL DEFAULT 0,
            duplicate_count  INTEGER NOT NULL DEFAULT 0,
            error_count      INTEGER NOT NULL DEFAULT 0,
            pause_seconds    REAL NOT NULL DEFAULT 0,
            metadata_json    TEXT,
            updated_at       TEXT NOT NULL
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_scrape_sessions_started_at
            ON scrape_sessions(started_at DESC);
        """,
    )

    conn = get_connection()
    with conn:
        for statement in statements:
            conn.execute(statement)


def _utc_now() -> str:
    """Return a UTC timestamp formatted as ISO8601 without fractional seconds."""

    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def check_connection() -> bool:
    """Return ``True`` when the schema is present and queryable."""

    conn = get_connection()
    try:
        conn.execute("SELECT COUNT(*) FROM properties").fetchone()
        return True
    finally:
        conn.close()


def find_property(
    identity_key: str, *, conn: Optional[sqlite3.Connection] = None
) -> Optional[sqlite3.Row]:
    """Return the stored property row for ``identity_key`` if present."""

    own = conn is None
    conn = conn or get_connection()
    try:
        return conn.execute(
            "SELECT * FROM properties WHERE identity_key = ?",
            (identity_key,),
        ).fetchone()
    finally:
        if own:
            conn.close()


def upsert_property(
    identity_key: str,
    columns: Dict[str, Any],
    snapshot_hash: str,
    *,
    conn: sqlite3.Connection,
) -> int:
    """Insert or update a property row and return its id.

    Runs inside the caller's transaction so child rows can be replaced
    atomically alongside it.
    """

    now = _utc_now()
    values = [columns.get(name) for name in PROPERTY_COLUMNS]
    existing = conn.execute(
        "SELECT id FROM properties WHERE identity_key = ?",
        (identity_key,),
    ).fetchone()

    if existing is None:
        placeholders = ", ".join("?" for _ in PROPERTY_COLUMNS)
        cursor = conn.execute(
            f"""
            INSERT INTO properties (
                identity_key, {", ".join(PROPERTY_COLUMNS)},
                snapshot_hash, first_seen_at, last_scraped_at, updated_at
            ) VALUES (?, {placeholders}, ?, ?, ?, ?)
            """,
            (identity_key, *values, snapshot_hash, now, now, now),
        )
        return int(cursor.lastrowid)

    assignments = ", ".join(f"{name} = ?" for name in PROPERTY_COLUMNS)
    conn.execute(
        f"""
        UPDATE properties
        SET {assignments}, snapshot_hash = ?, last_scraped_at = ?, updated_at = ?
        WHERE id = ?
        """,
        (*values, snapshot_hash, now, now, existing["id"]),
    )
    return int(existing["id"])


def touch_property(
    property_id: int,
    *,
    conn: sqlite3.Connection,
    derived: Optional[Mapping[str, Any]] = None,
) -> None:
    """Record that an unchanged property was seen again.

    ``derived`` refreshes date-dependent columns such as ``completion_status``;
    ``updated_at`` only moves when the scraped content changes.
    """

    columns = [name for name in (derived or {}) if name in PROPERTY_COLUMNS]
    assignments = "".join(f", {name} = ?" for name in columns)
    conn.execute(
        f"UPDATE properties SET last_scraped_at = ?{assignments} WHERE id = ?",
        (_utc_now(), *[derived[name] for name in columns], property_id),
    )


def replace_unit_rows(
    property_id: int, rows: Sequence[UnitRow], *, conn: sqlite3.Connection
) -> None:
    conn.execute("DELETE FROM unit_rows WHERE property_id = ?", (property_id,))
    conn.executemany(
        """
        INSERT INTO unit_rows (
            property_id, position, unit_type, bedrooms, has_study, has_flexi,
            is_penthouse, size_min, size_max, size_text, price_min, price_max,
            price_text, available_units, total_units, availability_text
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                property_id,
                position,
                row.unit_type,
                row.bedrooms,
                int(row.has_study),
                int(row.has_flexi),
                int(row.is_penthouse),
                row.size_min,
                row.size_max,
                row.size_text,
                row.price_min,
                row.price_max,
                row.price_text,
                row.available_units,
                row.total_units,
                row.availability_text,
            )
            for position, row in enumerate(rows)
        ],
    )


def replace_image_assets(
    property_id: int, assets: Sequence[ImageAsset], *, conn: sqlite3.Connection
) -> None:
    conn.execute("DELETE FROM image_assets WHERE property_id = ?", (property_id,))
    conn.executemany(
        """
        INSERT INTO image_assets (
            property_id, position, label, unit_type, source_url, file_name,
            fetchable, local_path
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                property_id,
                position,
                asset.label,
                asset.unit_type,
                asset.source_url,
                asset.file_name,
                int(asset.fetchable),
                asset.local_path,
            )
            for position, asset in enumerate(assets)
        ],
    )


def list_unit_rows(property_id: int) -> List[Dict[str, Any]]:
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM unit_rows WHERE property_id = ? ORDER BY position",
            (property_id,),
        ).fetchall()
    finally:
        conn.close()
    return [dict(row) for row in rows]


def list_image_assets(property_id: int) -> List[Dict[str, Any]]:
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM image_assets WHERE property_id = ? ORDER BY position",
            (property_id,),
        ).fetchall()
    finally:
        conn.close()
    return [dict(row) for row in rows]


def list_properties(limit: Optional[int] = None) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM properties ORDER BY name"
    params: tuple = ()
    if limit is not None:
        sql += " LIMIT ?"
        params = (int(limit),)
    conn = get_connection()
    try:
        rows = conn.execute(sql, params).fetchall()
    finally:
        conn.close()
    return [dict(row) for row in rows]


def record_session_summary(
    session_id: str,
    *,
    status: str,
    started_at: str,
    ended_at: Optional[str],
    counts: Dict[str, int],
    pause_seconds: float = 0.0,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Create or refresh the ``scrape_sessions`` row for a session."""

    conn = get_connection()
    try:
        with conn:
            conn.execute(
                """
                INSERT INTO scrape_sessions (
                    id, status, started_at, ended_at, processed, new_count,
                    updated_count, duplicate_count, error_count, pause_seconds,
                    metadata_json, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    ended_at = excluded.ended_at,
                    processed = excluded.processed,
                    new_count = excluded.new_count,
                    updated_count = excluded.updated_count,
                    duplicate_count = excluded.duplicate_count,
                    error_count = excluded.error_count,
                    pause_seconds = excluded.pause_seconds,
                    metadata_json = excluded.metadata_json,
                    updated_at = excluded.updated_at
                """,
                (
                    session_id,
                    status,
                    started_at,
                    ended_at,
                    int(counts.get("processed", 0)),
                    int(counts.get("new", 0)),
                    int(counts.get("updated", 0)),
                    int(counts.get("duplicates", 0)),
                    int(counts.get("errors", 0)),
                    float(pause_seconds),
                    json.dumps(metadata or {}, sort_keys=True),
                    _utc_now(),
                ),
            )
    finally:
        conn.close()


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM scrape_sessions WHERE id = ?", (session_id,)
        ).fetchone()
    finally:
        conn.close()
    return dict(row) if row is not None else None


def list_sessions(limit: int = 20) -> List[Dict[str, Any]]:
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM scrape_sessions ORDER BY started_at DESC LIMIT ?",
            (int(limit),),
        ).fetchall()
    finally:
        conn.close()
    return [dict(row) for row in rows]


__all__ = [
    "DB_PATH",
    "PROPERTY_COLUMNS",
    "PersistenceError",
    "get_connection",
    "initialize_schema",
    "check_connection",
    "find_property",
    "upsert_property",
    "touch_property",
    "replace_unit_rows",
    "replace_image_assets",
    "list_unit_rows",
    "list_image_assets",
    "list_properties",
    "record_session_summary",
    "get_session",
    "list_sessions",
]
