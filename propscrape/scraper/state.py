"""Durable scrape progress: the checkpoint record and its file store."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .error_codes import ErrorCode
from .logging_utils import _scraper_event
from .models import ScrapeSession, SessionStatus
from .utils import log_line, parse_iso, utc_now_iso, write_json_atomic


class CheckpointWriteError(OSError):
    """Raised when the checkpoint could not be made durable."""

    error_code = ErrorCode.CHECKPOINT_WRITE


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_int(value: Any, name: str, *, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{name} must be an integer >= {minimum}, got {value!r}")
    return value


def _int_list(value: Any, name: str) -> List[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a list")
    return [_as_int(item, name, minimum=1) for item in value]


@dataclass
class Checkpoint:
    """Exact position of a scrape session plus its running totals.

    ``current_page`` is 1-based and names the page to process next;
    ``current_item_index`` is the 0-based index of the next item within it.
    The cursor only moves after an item has been persisted, so a checkpoint
    read back after a crash never points past unsaved work.
    """

    session: ScrapeSession
    current_page: int = 1
    current_item_index: int = 0
    total_pages: Optional[int] = None
    completed_pages: List[int] = field(default_factory=list)
    failed_pages: List[int] = field(default_factory=list)
    last_processed_item: Optional[str] = None
    total_properties_scraped: int = 0
    new_properties_added: int = 0
    properties_updated: int = 0
    duplicates_skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    error_count: int = 0
    errors_dropped: int = 0
    paused_at: Optional[str] = None
    resumed_at: Optional[str] = None
    total_pause_duration: float = 0.0
    start_time: Optional[str] = None
    last_save_time: Optional[str] = None

    @classmethod
    def fresh(cls, *, now: Optional[datetime] = None, pid: Optional[int] = None) -> "Checkpoint":
        started = utc_now_iso(now or _now())
        return cls(
            session=ScrapeSession.new(started_at=started, pid=pid),
            start_time=started,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        """Build a checkpoint from its JSON form, raising ``ValueError`` if malformed."""

        if not isinstance(data, dict):
            raise ValueError("checkpoint payload must be an object")
        session_raw = data.get("session")
        if not isinstance(session_raw, dict):
            raise ValueError("checkpoint is missing its session")

        total_pages = data.get("total_pages")
        if total_pages is not None:
            total_pages = _as_int(total_pages, "total_pages", minimum=1)

        errors = data.get("errors") or []
        if not isinstance(errors, list):
            raise ValueError("errors must be a list")

        pause_total = data.get("total_pause_duration") or 0
        if isinstance(pause_total, bool) or not isinstance(pause_total, (int, float)):
            raise ValueError("total_pause_duration must be numeric")

        return cls(
            session=ScrapeSession.from_dict(session_raw),
            current_page=_as_int(data.get("current_page", 1), "current_page", minimum=1),
            current_item_index=_as_int(
                data.get("current_item_index", 0), "current_item_index"
            ),
            total_pages=total_pages,
            completed_pages=_int_list(data.get("completed_pages"), "completed_pages"),
            failed_pages=_int_list(data.get("failed_pages"), "failed_pages"),
            last_processed_item=data.get("last_processed_item"),
            total_properties_scraped=_as_int(
                data.get("total_properties_scraped", 0), "total_properties_scraped"
            ),
            new_properties_added=_as_int(
                data.get("new_properties_added", 0), "new_properties_added"
            ),
            properties_updated=_as_int(data.get("properties_updated", 0), "properties_updated"),
            duplicates_skipped=_as_int(data.get("duplicates_skipped", 0), "duplicates_skipped"),
            errors=[entry for entry in errors if isinstance(entry, dict)],
            error_count=_as_int(data.get("error_count", len(errors)), "error_count"),
            errors_dropped=_as_int(data.get("errors_dropped", 0), "errors_dropped"),
            paused_at=data.get("paused_at"),
            resumed_at=data.get("resumed_at"),
            total_pause_duration=float(pause_total),
            start_time=data.get("start_time"),
            last_save_time=data.get("last_save_time"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_page": self.current_page,
            "current_item_index": self.current_item_index,
            "total_pages": self.total_pages,
            "completed_pages": list(self.completed_pages),
            "failed_pages": list(self.failed_pages),
            "last_processed_item": self.last_processed_item,
            "total_properties_scraped": self.total_properties_scraped,
            "new_properties_added": self.new_properties_added,
            "properties_updated": self.properties_updated,
            "duplicates_skipped": self.duplicates_skipped,
            "errors": list(self.errors),
            "error_count": self.error_count,
            "errors_dropped": self.errors_dropped,
            "paused_at": self.paused_at,
            "resumed_at": self.resumed_at,
            "total_pause_duration": self.total_pause_duration,
            "start_time": self.start_time,
            "last_save_time": self.last_save_time,
            "session": self.session.to_dict(),
        }

    # ------------------------------------------------------------------
    # Cursor movement
    # ------------------------------------------------------------------

    def advance_item(self, identity_key: str, outcome: str) -> None:
        """Move past an item whose record has been persisted."""

        self.current_item_index += 1
        self.last_processed_item = identity_key
        self.total_properties_scraped += 1
        if outcome == "new":
            self.new_properties_added += 1
        elif outcome == "updated":
            self.properties_updated += 1
        else:
            self.duplicates_skipped += 1

    def skip_item(self) -> None:
        """Move past an item that failed and was recorded as an error."""

        self.current_item_index += 1

    def complete_page(self, page_index: int) -> None:
        if page_index not in self.completed_pages:
            self.completed_pages.append(page_index)
        self._next_page(page_index)

    def fail_page(self, page_index: int) -> None:
        if page_index not in self.failed_pages:
            self.failed_pages.append(page_index)
        self._next_page(page_index)

    def _next_page(self, page_index: int) -> None:
        self.current_page = page_index + 1
        self.current_item_index = 0

    # ------------------------------------------------------------------
    # Pause accounting
    # ------------------------------------------------------------------

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    def mark_paused(self, now: Optional[datetime] = None) -> None:
        if self.paused_at is None:
            self.paused_at = utc_now_iso(now or _now())
        self.session.status = SessionStatus.PAUSED

    def mark_resumed(self, now: Optional[datetime] = None) -> float:
        """Close the open pause and return its length in seconds."""

        moment = now or _now()
        elapsed = 0.0
        paused = parse_iso(self.paused_at)
        if paused is not None:
            elapsed = max(0.0, (moment - paused).total_seconds())
        self.total_pause_duration += elapsed
        self.paused_at = None
        self.resumed_at = utc_now_iso(moment)
        self.session.status = SessionStatus.RUNNING
        return elapsed

    def finish(self, status: SessionStatus, now: Optional[datetime] = None) -> None:
        if self.paused_at is not None:
            self.mark_resumed(now)
        self.session.status = status
        self.session.ended_at = utc_now_iso(now or _now())

    def to_progress(self) -> Dict[str, int]:
        return {
            "processed": self.total_properties_scraped,
            "new": self.new_properties_added,
            "updated": self.properties_updated,
            "duplicates": self.duplicates_skipped,
            "errors": self.error_count,
        }


class CheckpointStore:
    """Load and atomically replace the checkpoint file."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else Path(config.CHECKPOINT_FILE)

    def read(self) -> Optional[Checkpoint]:
        """Return the stored checkpoint, or ``None`` if missing or unreadable."""

        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
            return Checkpoint.from_dict(data)
        except (OSError, ValueError) as exc:
            log_line(f"[CHECKPOINT] Ignoring unreadable checkpoint {self.path}: {exc}")
            _scraper_event(
                "error",
                phase="checkpoint",
                step="load_corrupt",
                path=str(self.path),
                error=str(exc),
            )
            return None

    def load(self, *, now: Optional[datetime] = None) -> Checkpoint:
        """Return the stored checkpoint or a fresh start-of-session one."""

        checkpoint = self.read()
        if checkpoint is not None:
            return checkpoint
        return Checkpoint.fresh(now=now, pid=os.getpid())

    def save(self, checkpoint: Checkpoint, *, now: Optional[datetime] = None) -> None:
        checkpoint.last_save_time = utc_now_iso(now or _now())
        try:
            write_json_atomic(self.path, checkpoint.to_dict())
        except (OSError, TypeError, ValueError) as exc:
            _scraper_event(
                "error",
                phase="checkpoint",
                step="save_failed",
                path=str(self.path),
                error=str(exc),
            )
            raise CheckpointWriteError(f"Unable to write checkpoint {self.path}: {exc}") from exc

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


__all__ = ["Checkpoint", "CheckpointStore", "CheckpointWriteError"]
