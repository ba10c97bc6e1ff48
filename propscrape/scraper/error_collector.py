from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from . import config
from .error_codes import ErrorCode
from .logging_utils import _scraper_event
from .state import Checkpoint
from .utils import log_line, utc_now_iso


@dataclass(frozen=True)
class ErrorContext:
    page: Optional[int] = None
    item_index: Optional[int] = None
    item: Optional[str] = None


def _short_error_message(exc: BaseException, max_length: int = 300) -> str:
    message = str(exc) or exc.__class__.__name__
    if len(message) > max_length:
        return message[: max_length - 3] + "..."
    return message


class ErrorCollector:
    """Bounded record of per-item failures held inside the checkpoint.

    Keeps the most recent ``capacity`` entries, drops the oldest beyond that
    and keeps ``error_count`` accurate regardless of truncation. Recording
    never raises.
    """

    def __init__(
        self,
        checkpoint: Checkpoint,
        *,
        capacity: Optional[int] = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.checkpoint = checkpoint
        self.capacity = max(1, capacity if capacity is not None else config.ERROR_BUFFER_SIZE)
        self._clock = clock

    def record(self, context: ErrorContext, error: BaseException) -> None:
        try:
            entry: Dict[str, Any] = {
                "item": context.item,
                "page": context.page,
                "item_index": context.item_index,
                "error_code": getattr(error, "error_code", None) or ErrorCode.INTERNAL,
                "error": _short_error_message(error),
                "timestamp": utc_now_iso(self._clock() if self._clock else None),
            }
            errors = self.checkpoint.errors
            errors.append(entry)
            overflow = len(errors) - self.capacity
            if overflow > 0:
                del errors[:overflow]
                self.checkpoint.errors_dropped += overflow
            self.checkpoint.error_count += 1
            _scraper_event("error", phase="item", **entry)
        except Exception as exc:  # noqa: BLE001
            log_line(f"[ERRORS] Unable to record error for {context.item!r}: {exc}")

    @property
    def total(self) -> int:
        return self.checkpoint.error_count

    def recent(self, limit: int = 3) -> list[Dict[str, Any]]:
        return list(self.checkpoint.errors[-limit:]) if limit > 0 else []


__all__ = ["ErrorCollector", "ErrorContext"]
