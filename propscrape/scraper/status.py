"""Human and JSON views of the current checkpoint for operators."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .control import ControlCommand
from .state import Checkpoint
from .utils import format_duration, parse_iso


def _now() -> datetime:
    return datetime.now(timezone.utc)


def status_payload(
    checkpoint: Optional[Checkpoint],
    *,
    pending: Optional[ControlCommand] = None,
    now: Optional[datetime] = None,
    recent_errors: int = 3,
) -> Dict[str, Any]:
    """Return a JSON-serialisable summary of scrape progress."""

    if checkpoint is None:
        return {
            "ok": True,
            "session": None,
            "pending_command": pending.to_dict() if pending else None,
        }

    moment = now or _now()
    started = parse_iso(checkpoint.start_time) or parse_iso(checkpoint.session.started_at)
    ended = parse_iso(checkpoint.session.ended_at)
    until = ended or moment
    total_seconds = (until - started).total_seconds() if started else 0.0

    pause_seconds = checkpoint.total_pause_duration
    paused = parse_iso(checkpoint.paused_at)
    if paused is not None:
        pause_seconds += max(0.0, (until - paused).total_seconds())
    active_seconds = max(0.0, total_seconds - pause_seconds)

    total_pages = checkpoint.total_pages
    pages_done = max(0, checkpoint.current_page - 1)
    if total_pages:
        pages_done = min(pages_done, total_pages)
    percent = round(100.0 * pages_done / total_pages, 1) if total_pages else None

    eta_seconds: Optional[float] = None
    if total_pages and pages_done and not checkpoint.session.is_terminal:
        per_page = active_seconds / pages_done
        eta_seconds = per_page * max(0, total_pages - pages_done)

    errors: List[Dict[str, Any]] = list(checkpoint.errors[-recent_errors:]) if recent_errors else []

    return {
        "ok": True,
        "session": checkpoint.session.to_dict(),
        "current_page": checkpoint.current_page,
        "current_item_index": checkpoint.current_item_index,
        "total_pages": total_pages,
        "pages_done": pages_done,
        "percent": percent,
        "completed_pages": list(checkpoint.completed_pages),
        "failed_pages": list(checkpoint.failed_pages),
        "last_processed_item": checkpoint.last_processed_item,
        "counts": checkpoint.to_progress(),
        "errors_dropped": checkpoint.errors_dropped,
        "recent_errors": errors,
        "paused_at": checkpoint.paused_at,
        "resumed_at": checkpoint.resumed_at,
        "runtime_seconds": round(total_seconds, 1),
        "active_seconds": round(active_seconds, 1),
        "pause_seconds": round(pause_seconds, 1),
        "eta_seconds": round(eta_seconds, 1) if eta_seconds is not None else None,
        "last_save_time": checkpoint.last_save_time,
        "pending_command": pending.to_dict() if pending else None,
    }


def render_status(
    checkpoint: Optional[Checkpoint],
    *,
    pending: Optional[ControlCommand] = None,
    now: Optional[datetime] = None,
) -> str:
    """Render the status block printed by ``propscrape status``."""

    payload = status_payload(checkpoint, pending=pending, now=now)
    lines: List[str] = []
    if payload["session"] is None:
        lines.append("No scrape checkpoint found.")
        if pending:
            lines.append(f"Pending command: {pending.state.value} ({pending.timestamp})")
        return "\n".join(lines)

    session = payload["session"]
    counts = payload["counts"]
    total_pages = payload["total_pages"]

    lines.append(f"Session {session['id']}  status={session['status']}")
    lines.append(f"Started: {session['started_at']}")
    if session.get("ended_at"):
        lines.append(f"Ended: {session['ended_at']}")
    if total_pages:
        lines.append(
            f"Progress: {payload['pages_done']}/{total_pages} pages ({payload['percent']}%)"
        )
    else:
        lines.append("Progress: total pages not yet detected")
    lines.append(
        f"Position: page {payload['current_page']}, item {payload['current_item_index']}"
    )
    if payload["last_processed_item"]:
        lines.append(f"Last item: {payload['last_processed_item']}")
    lines.append(
        f"Scraped: {counts['processed']} (new {counts['new']}, updated {counts['updated']}, "
        f"unchanged {counts['duplicates']})"
    )
    if payload["failed_pages"]:
        lines.append(f"Failed pages: {', '.join(str(p) for p in payload['failed_pages'])}")
    lines.append(f"Runtime: {format_duration(payload['runtime_seconds'])}")
    lines.append(f"Active: {format_duration(payload['active_seconds'])}")
    lines.append(f"Paused: {format_duration(payload['pause_seconds'])}")
    if payload["paused_at"]:
        lines.append(f"Paused since: {payload['paused_at']}")
    if payload["eta_seconds"] is not None:
        lines.append(f"ETA: {format_duration(payload['eta_seconds'])}")

    error_line = f"Errors: {counts['errors']}"
    if payload["errors_dropped"]:
        error_line += f" ({payload['errors_dropped']} older entries dropped)"
    lines.append(error_line)
    for entry in payload["recent_errors"]:
        lines.append(
            f"  - [{entry.get('error_code')}] page {entry.get('page')} "
            f"{entry.get('item') or ''}: {entry.get('error')}"
        )
    if pending:
        lines.append(f"Pending command: {pending.state.value} ({pending.timestamp})")
    return "\n".join(lines)


__all__ = ["status_payload", "render_status"]
