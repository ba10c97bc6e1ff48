from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from . import config, db
from .config_validation import validate_runtime_config
from .control import ControlChannel
from .logging_utils import _scraper_event
from .state import CheckpointStore
from .utils import disk_has_room, ensure_dirs, log_line


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def run_health_checks(entrypoint: str = "cli") -> HealthResult:
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_runtime_config(entrypoint or "cli")
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    ensure_dirs()
    fs_ok = disk_has_room(config.MIN_FREE_MB, config.DATA_DIR)
    checks["filesystem"] = {
        "ok": fs_ok,
        "data_dir": str(config.DATA_DIR),
        "min_free_mb": config.MIN_FREE_MB,
    }

    try:
        db.initialize_schema()
        db.check_connection()
        checks["database"] = {"ok": True, "path": str(db.DB_PATH)}
    except Exception as exc:  # noqa: BLE001
        checks["database"] = {"ok": False, "error": str(exc)}

    store = CheckpointStore()
    checkpoint_ok = not store.path.exists() or store.read() is not None
    checks["checkpoint"] = {
        "ok": checkpoint_ok,
        "path": str(store.path),
        "present": store.path.exists(),
    }

    pending = ControlChannel().peek()
    checks["control"] = {
        "ok": True,
        "pending": pending.state.value if pending else None,
    }

    overall_ok = all(check.get("ok", False) for check in checks.values())

    try:
        _scraper_event(
            "state" if overall_ok else "error",
            phase="health",
            context="healthcheck",
            ok=overall_ok,
            checks=checks,
        )
    except Exception:
        pass

    return HealthResult(ok=overall_ok, checks=checks)


if __name__ == "__main__":  # pragma: no cover
    result = run_health_checks(entrypoint="cli")
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")
    raise SystemExit(0 if result.ok else 1)
