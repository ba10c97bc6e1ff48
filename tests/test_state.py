from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from propscrape.scraper import state
from propscrape.scraper.error_codes import ErrorCode
from propscrape.scraper.models import SessionStatus
from propscrape.scraper.state import Checkpoint, CheckpointStore, CheckpointWriteError

T0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def test_load_missing_file_starts_fresh(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "progress.json")

    checkpoint = store.load(now=T0)

    assert checkpoint.current_page == 1
    assert checkpoint.current_item_index == 0
    assert checkpoint.total_properties_scraped == 0
    assert checkpoint.session.status is SessionStatus.RUNNING
    assert checkpoint.start_time == "2026-03-01T09:00:00Z"


def test_save_then_read_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "progress.json"
    store = CheckpointStore(path)
    checkpoint = Checkpoint.fresh(now=T0)
    checkpoint.total_pages = 7
    checkpoint.advance_item("https://example.com/projectdetail/a", "new")
    checkpoint.advance_item("https://example.com/projectdetail/b", "updated")

    store.save(checkpoint, now=T0 + timedelta(seconds=5))

    assert not path.with_suffix(".json.tmp").exists()
    loaded = store.read()
    assert loaded is not None
    assert loaded.to_dict() == checkpoint.to_dict()
    assert loaded.last_save_time == "2026-03-01T09:00:05Z"
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["current_item_index"] == 2
    assert raw["session"]["id"] == checkpoint.session.id


def test_corrupt_file_is_treated_as_absent(tmp_path: Path) -> None:
    path = tmp_path / "progress.json"
    path.write_text("{not json", encoding="utf-8")
    store = CheckpointStore(path)

    assert store.read() is None
    checkpoint = store.load(now=T0)
    assert checkpoint.current_page == 1
    assert checkpoint.current_item_index == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"current_page": 0},
        {"current_item_index": -1},
        {"current_page": "3"},
        {"total_pages": 0},
        {"errors": "oops"},
    ],
)
def test_invalid_fields_are_rejected(tmp_path: Path, overrides: dict) -> None:
    payload = Checkpoint.fresh(now=T0).to_dict()
    payload.update(overrides)
    path = tmp_path / "progress.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    assert CheckpointStore(path).read() is None


def test_cursor_and_counts() -> None:
    checkpoint = Checkpoint.fresh(now=T0)

    checkpoint.advance_item("a", "new")
    checkpoint.advance_item("b", "updated")
    checkpoint.advance_item("c", "unchanged")
    checkpoint.skip_item()

    assert checkpoint.current_item_index == 4
    assert checkpoint.last_processed_item == "c"
    assert checkpoint.to_progress() == {
        "processed": 3,
        "new": 1,
        "updated": 1,
        "duplicates": 1,
        "errors": 0,
    }

    checkpoint.complete_page(1)
    assert (checkpoint.current_page, checkpoint.current_item_index) == (2, 0)
    checkpoint.fail_page(2)
    assert (checkpoint.current_page, checkpoint.current_item_index) == (3, 0)
    assert checkpoint.completed_pages == [1]
    assert checkpoint.failed_pages == [2]


def test_pause_accounting_accumulates() -> None:
    checkpoint = Checkpoint.fresh(now=T0)

    checkpoint.mark_paused(T0)
    assert checkpoint.is_paused
    assert checkpoint.session.status is SessionStatus.PAUSED

    elapsed = checkpoint.mark_resumed(T0 + timedelta(seconds=90))
    assert elapsed == 90
    assert checkpoint.paused_at is None
    assert checkpoint.resumed_at == "2026-03-01T09:01:30Z"
    assert checkpoint.session.status is SessionStatus.RUNNING

    checkpoint.mark_paused(T0 + timedelta(minutes=5))
    checkpoint.mark_resumed(T0 + timedelta(minutes=6))
    assert checkpoint.total_pause_duration == 150


def test_finish_closes_open_pause() -> None:
    checkpoint = Checkpoint.fresh(now=T0)
    checkpoint.mark_paused(T0)

    checkpoint.finish(SessionStatus.STOPPED, T0 + timedelta(seconds=30))

    assert checkpoint.paused_at is None
    assert checkpoint.total_pause_duration == 30
    assert checkpoint.session.status is SessionStatus.STOPPED
    assert checkpoint.session.ended_at == "2026-03-01T09:00:30Z"


def test_save_failure_raises_checkpoint_write_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _boom(path: Path, payload: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(state, "write_json_atomic", _boom)
    store = CheckpointStore(tmp_path / "progress.json")

    with pytest.raises(CheckpointWriteError) as excinfo:
        store.save(Checkpoint.fresh(now=T0))

    assert excinfo.value.error_code == ErrorCode.CHECKPOINT_WRITE
    assert "disk full" in str(excinfo.value)


def test_clear_removes_file(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "progress.json")
    store.save(Checkpoint.fresh(now=T0))
    assert store.path.exists()

    store.clear()
    store.clear()

    assert not store.path.exists()
