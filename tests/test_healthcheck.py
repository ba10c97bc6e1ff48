from __future__ import annotations

from pathlib import Path
import pytest

from propscrape.scraper import config, db
from propscrape.scraper import healthcheck
from propscrape.scraper.control import ControlChannel, ControlState
from tests.test_api import _configure_temp_paths, _reload_main_module


def test_run_health_checks_happy_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    monkeypatch.setattr(config, "MIN_FREE_MB", 0)

    db.initialize_schema()

    result = healthcheck.run_health_checks(entrypoint="ui")
    assert result.ok is True
    assert result.checks["config"]["ok"] is True
    assert result.checks["filesystem"]["ok"] is True
    assert result.checks["database"]["ok"] is True
    assert result.checks["checkpoint"] == {
        "ok": True,
        "path": str(config.CHECKPOINT_FILE),
        "present": False,
    }
    assert result.checks["control"]["pending"] is None


def test_run_health_checks_handles_invalid_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    monkeypatch.setattr(config, "MIN_FREE_MB", -1)

    db.initialize_schema()

    result = healthcheck.run_health_checks(entrypoint="cli")
    assert result.ok is False
    assert result.checks["config"]["ok"] is False


def test_corrupt_checkpoint_fails_check(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    monkeypatch.setattr(config, "MIN_FREE_MB", 0)
    Path(config.CHECKPOINT_FILE).write_text("{not json", encoding="utf-8")

    result = healthcheck.run_health_checks()

    assert result.ok is False
    assert result.checks["checkpoint"]["ok"] is False
    assert result.checks["checkpoint"]["present"] is True


def test_pending_control_command_is_reported(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    monkeypatch.setattr(config, "MIN_FREE_MB", 0)
    ControlChannel().issue(ControlState.PAUSE, command="test")

    result = healthcheck.run_health_checks()

    assert result.checks["control"] == {"ok": True, "pending": "pause"}
    # Reporting must not consume the command.
    assert ControlChannel().peek() is not None


def test_health_api_reports_status(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    monkeypatch.setattr(config, "MIN_FREE_MB", 0)

    main = _reload_main_module()
    client = main.app.test_client()

    resp = client.get("/api/health")
    assert resp.status_code == 200
    payload = resp.get_json()
    assert payload["ok"] is True
    assert "filesystem" in payload["checks"]

    monkeypatch.setattr(db, "initialize_schema", lambda: (_ for _ in ()).throw(RuntimeError("db error")))

    resp_unhealthy = client.get("/api/health")
    assert resp_unhealthy.status_code == 503
    data_unhealthy = resp_unhealthy.get_json()
    assert data_unhealthy["ok"] is False
    assert data_unhealthy["checks"]["database"]["ok"] is False
