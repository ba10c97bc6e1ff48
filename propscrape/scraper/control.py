"""File-based pause/resume/stop signalling between operators and the scraper."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from . import config
from .error_codes import ErrorCode
from .logging_utils import _scraper_event
from .utils import log_line, parse_iso, utc_now_iso, write_json_atomic


class ControlState(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


class ControlChannelError(Exception):
    error_code = ErrorCode.CONTROL_CHANNEL


@dataclass(frozen=True)
class ControlCommand:
    state: ControlState
    timestamp: str
    command: Optional[str] = None

    @property
    def issued_at(self) -> Optional[datetime]:
        return parse_iso(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"state": self.state.value, "timestamp": self.timestamp}
        if self.command:
            payload["command"] = self.command
        return payload


def parse_command(data: Any) -> ControlCommand:
    """Validate a decoded control record, raising ``ControlChannelError``."""

    if not isinstance(data, dict):
        raise ControlChannelError("control record must be a JSON object")
    try:
        state = ControlState(str(data.get("state", "")).strip().lower())
    except ValueError as exc:
        raise ControlChannelError(f"unknown control state {data.get('state')!r}") from exc
    timestamp = data.get("timestamp")
    if parse_iso(timestamp) is None:
        raise ControlChannelError(f"invalid control timestamp {timestamp!r}")
    command = data.get("command")
    return ControlCommand(
        state=state,
        timestamp=str(timestamp),
        command=str(command) if command else None,
    )


class ControlChannel:
    """Single-slot command record at a well-known path.

    Operators ``issue`` commands; the scrape loop ``poll``s and consumes them.
    Malformed or stale records are logged, removed and ignored so the loop
    keeps its current state.
    """

    def __init__(self, path: Optional[Path] = None, *, not_before: Optional[datetime] = None) -> None:
        self.path = Path(path) if path is not None else Path(config.CONTROL_FILE)
        self.not_before = not_before

    def issue(
        self,
        state: ControlState | str,
        command: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> ControlCommand:
        try:
            desired = ControlState(str(getattr(state, "value", state)).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown control state: {state!r}") from exc
        record = ControlCommand(
            state=desired,
            timestamp=utc_now_iso(now or datetime.now(timezone.utc)),
            command=command,
        )
        write_json_atomic(self.path, record.to_dict())
        _scraper_event("control", step="issued", **record.to_dict())
        return record

    def _read(self, path: Optional[Path] = None) -> ControlCommand:
        source = path or self.path
        try:
            raw = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise ControlChannelError(f"unreadable control file: {exc}") from exc
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise ControlChannelError(f"malformed control file: {exc}") from exc
        return parse_command(data)

    def peek(self) -> Optional[ControlCommand]:
        """Return the pending command without consuming it."""

        if not self.path.exists():
            return None
        try:
            return self._read()
        except ControlChannelError:
            return None

    def _claim(self) -> Optional[Path]:
        """Move the pending record aside so a newer ``issue`` lands in a fresh file."""

        claimed = self.path.with_suffix(self.path.suffix + ".consumed")
        try:
            os.replace(self.path, claimed)
        except FileNotFoundError:
            return None
        except OSError as exc:
            log_line(f"[CONTROL] Unable to claim control file {self.path}: {exc}")
            return None
        return claimed

    def poll(self) -> Optional[ControlCommand]:
        """Consume and return the pending command, if any."""

        if not self.path.exists():
            return None
        claimed = self._claim()
        if claimed is None:
            return None
        try:
            record = self._read(claimed)
        except ControlChannelError as exc:
            log_line(f"[CONTROL] Ignoring control record: {exc}")
            _scraper_event(
                "error",
                phase="control",
                error_code=exc.error_code,
                error=str(exc),
            )
            return None
        finally:
            self._discard(claimed)

        issued = record.issued_at
        if self.not_before is not None and issued is not None and issued < self.not_before:
            log_line(
                f"[CONTROL] Ignoring stale {record.state.value} command issued at {record.timestamp}"
            )
            _scraper_event(
                "control",
                step="stale",
                state=record.state.value,
                timestamp=record.timestamp,
            )
            return None

        _scraper_event("control", step="received", **record.to_dict())
        return record

    def clear(self) -> None:
        self._discard()

    def _discard(self, path: Optional[Path] = None) -> None:
        target = path or self.path
        try:
            target.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            log_line(f"[CONTROL] Unable to remove control file {target}: {exc}")


__all__ = [
    "ControlState",
    "ControlCommand",
    "ControlChannel",
    "ControlChannelError",
    "parse_command",
]
