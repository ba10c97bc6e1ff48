from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from propscrape.scraper import db
from propscrape.scraper.control import ControlChannel, ControlState
from propscrape.scraper.error_codes import ErrorCode
from propscrape.scraper.extractor import ExtractionError
from propscrape.scraper.models import ExtractedRecord, ItemRef, SessionStatus
from propscrape.scraper.navigator import NavigationError, PageHandle
from propscrape.scraper.runner import (
    EXIT_COMPLETED,
    EXIT_FAILED,
    EXIT_STOPPED,
    ScrapeLoop,
    exit_code_for,
    prepare_checkpoint,
)
from propscrape.scraper.state import Checkpoint, CheckpointStore, CheckpointWriteError
from propscrape.scraper.sync import SyncOutcome


class _StepClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class _FakeNavigator:
    def __init__(
        self,
        pages: Dict[int, List[str]],
        *,
        total: Optional[int] = None,
        failing: Iterable[int] = (),
    ) -> None:
        self.pages = pages
        self.total = total if total is not None else len(pages)
        self.failing = set(failing)
        self.opened: List[int] = []

    def open(self, page_index: int) -> PageHandle:
        self.opened.append(page_index)
        if page_index in self.failing:
            raise NavigationError(ErrorCode.NAV_TIMEOUT, f"Timed out loading page {page_index}")
        return PageHandle(page_index, f"https://example.com/listing?page={page_index}", "")

    def detect_total_pages(self, handle: PageHandle) -> int:
        return self.total

    def list_items(self, handle: PageHandle) -> List[ItemRef]:
        return [
            ItemRef(handle.page_index, idx, name, f"https://example.com/projectdetail/{name}")
            for idx, name in enumerate(self.pages.get(handle.page_index, []))
        ]


class _FakeExtractor:
    def __init__(
        self,
        *,
        failing: Iterable[str] = (),
        hook: Optional[Callable[[ItemRef], None]] = None,
    ) -> None:
        self.failing = set(failing)
        self.hook = hook
        self.seen: List[str] = []

    def extract(self, item: ItemRef) -> ExtractedRecord:
        self.seen.append(item.name)
        if self.hook is not None:
            self.hook(item)
        if item.name in self.failing:
            raise ExtractionError(f"No property attributes found for {item.name!r}", url=item.url)
        return ExtractedRecord(identity_key=item.url, attributes={"name": item.name})


class _FakeSync:
    def __init__(self, *, unchanged: Iterable[str] = (), broken: Iterable[str] = ()) -> None:
        self.unchanged = set(unchanged)
        self.broken = set(broken)
        self.written: List[str] = []

    def __call__(self, record: ExtractedRecord) -> SyncOutcome:
        if record.name in self.broken:
            raise db.PersistenceError("database is locked", identity_key=record.identity_key)
        self.written.append(record.name)
        if record.name in self.unchanged:
            return SyncOutcome.UNCHANGED
        return SyncOutcome.NEW


def _loop(
    tmp_path: Path,
    navigator: _FakeNavigator,
    extractor: _FakeExtractor,
    *,
    checkpoint: Optional[Checkpoint] = None,
    sync: Optional[_FakeSync] = None,
    sleep: Optional[Callable[[float], None]] = None,
    store: Optional[CheckpointStore] = None,
    **kwargs: object,
) -> ScrapeLoop:
    return ScrapeLoop(
        navigator,
        extractor,
        store or CheckpointStore(tmp_path / "progress.json"),
        ControlChannel(tmp_path / "control.json"),
        checkpoint or Checkpoint.fresh(),
        reconcile_record=sync or _FakeSync(),
        per_item_delay=0,
        poll_seconds=0.01,
        sleep=sleep or (lambda seconds: None),
        clock=_StepClock(),
        **kwargs,
    )


def test_completes_all_pages(tmp_path: Path) -> None:
    extractor = _FakeExtractor()
    loop = _loop(tmp_path, _FakeNavigator({1: ["a", "b"], 2: ["c"]}), extractor)

    checkpoint = loop.run()

    assert checkpoint.session.status is SessionStatus.COMPLETED
    assert exit_code_for(checkpoint.session.status) == EXIT_COMPLETED
    assert extractor.seen == ["a", "b", "c"]
    assert checkpoint.completed_pages == [1, 2]
    assert checkpoint.current_page == 3
    assert checkpoint.to_progress()["new"] == 3
    saved = CheckpointStore(tmp_path / "progress.json").read()
    assert saved is not None
    assert saved.session.status is SessionStatus.COMPLETED
    assert saved.last_processed_item == "https://example.com/projectdetail/c"


def test_extraction_failure_is_recorded_and_skipped(tmp_path: Path) -> None:
    sync = _FakeSync()
    loop = _loop(tmp_path, _FakeNavigator({1: ["a", "b", "c"]}), _FakeExtractor(failing={"b"}), sync=sync)

    checkpoint = loop.run()

    assert checkpoint.session.status is SessionStatus.COMPLETED
    assert sync.written == ["a", "c"]
    assert checkpoint.total_properties_scraped == 2
    assert checkpoint.error_count == 1
    entry = checkpoint.errors[0]
    assert entry["item"] == "b"
    assert entry["page"] == 1
    assert entry["item_index"] == 1
    assert entry["error_code"] == ErrorCode.EXTRACTION_MISS


def test_listing_page_failure_skips_page(tmp_path: Path) -> None:
    extractor = _FakeExtractor()
    navigator = _FakeNavigator({1: ["a"], 2: ["b"], 3: ["c"]}, failing={2})
    loop = _loop(tmp_path, navigator, extractor)

    checkpoint = loop.run()

    assert checkpoint.session.status is SessionStatus.COMPLETED
    assert extractor.seen == ["a", "c"]
    assert checkpoint.failed_pages == [2]
    assert checkpoint.completed_pages == [1, 3]
    assert checkpoint.errors[0]["error_code"] == ErrorCode.NAV_TIMEOUT
    assert checkpoint.errors[0]["page"] == 2


def test_first_page_failure_before_page_count_fails_session(tmp_path: Path) -> None:
    extractor = _FakeExtractor()
    navigator = _FakeNavigator({1: ["a"], 2: ["b"]}, total=2, failing={1})
    store = CheckpointStore(tmp_path / "progress.json")
    loop = _loop(tmp_path, navigator, extractor, store=store)

    checkpoint = loop.run()

    assert checkpoint.session.status is SessionStatus.FAILED
    assert exit_code_for(checkpoint.session.status) == EXIT_FAILED
    assert navigator.opened == [1]
    assert extractor.seen == []
    assert checkpoint.current_page == 1
    assert checkpoint.total_pages is None
    assert checkpoint.failed_pages == []
    assert checkpoint.errors[0]["page"] == 1

    resumed = prepare_checkpoint(store)
    assert resumed.session.id == checkpoint.session.id
    assert resumed.current_page == 1


def test_resumes_from_saved_cursor(tmp_path: Path) -> None:
    checkpoint = Checkpoint.fresh()
    checkpoint.total_pages = 2
    checkpoint.advance_item("https://example.com/projectdetail/a", "new")
    extractor = _FakeExtractor()
    loop = _loop(
        tmp_path,
        _FakeNavigator({1: ["a", "b"], 2: ["c"]}),
        extractor,
        checkpoint=checkpoint,
    )

    result = loop.run()

    assert extractor.seen == ["b", "c"]
    assert result.total_properties_scraped == 3
    assert result.session.status is SessionStatus.COMPLETED


def test_stop_then_rerun_continues_where_it_left_off(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "progress.json")
    control = ControlChannel(tmp_path / "control.json")
    pages = {1: ["a", "b"], 2: ["c"]}

    def _stop_after_a(item: ItemRef) -> None:
        if item.name == "a":
            control.issue(ControlState.STOP, command="test")

    first = _FakeExtractor(hook=_stop_after_a)
    stopped = _loop(tmp_path, _FakeNavigator(pages), first, store=store).run()

    assert stopped.session.status is SessionStatus.STOPPED
    assert exit_code_for(stopped.session.status) == EXIT_STOPPED
    assert first.seen == ["a"]
    assert (stopped.current_page, stopped.current_item_index) == (1, 1)

    resumed_checkpoint = prepare_checkpoint(store)
    assert resumed_checkpoint.session.id == stopped.session.id
    assert resumed_checkpoint.session.status is SessionStatus.RUNNING

    second = _FakeExtractor()
    finished = _loop(
        tmp_path, _FakeNavigator(pages), second, store=store, checkpoint=resumed_checkpoint
    ).run()

    assert second.seen == ["b", "c"]
    assert finished.session.status is SessionStatus.COMPLETED
    assert finished.total_properties_scraped == 3


def test_pause_then_resume(tmp_path: Path) -> None:
    control = ControlChannel(tmp_path / "control.json")
    statuses: List[SessionStatus] = []

    def _pause_after_a(item: ItemRef) -> None:
        if item.name == "a":
            control.issue(ControlState.PAUSE)

    def _sleep(seconds: float) -> None:
        control.issue(ControlState.RESUME)

    extractor = _FakeExtractor(hook=_pause_after_a)
    loop = _loop(
        tmp_path,
        _FakeNavigator({1: ["a", "b"]}),
        extractor,
        sleep=_sleep,
        on_progress=lambda cp: statuses.append(cp.session.status),
    )

    checkpoint = loop.run()

    assert extractor.seen == ["a", "b"]
    assert SessionStatus.PAUSED in statuses
    assert checkpoint.session.status is SessionStatus.COMPLETED
    assert checkpoint.paused_at is None
    assert checkpoint.resumed_at is not None
    assert checkpoint.total_pause_duration >= 1


def test_stop_while_paused(tmp_path: Path) -> None:
    control = ControlChannel(tmp_path / "control.json")

    def _pause_after_a(item: ItemRef) -> None:
        if item.name == "a":
            control.issue(ControlState.PAUSE)

    polls: List[float] = []

    def _sleep(seconds: float) -> None:
        polls.append(seconds)
        if len(polls) == 3:
            control.issue(ControlState.STOP)

    extractor = _FakeExtractor(hook=_pause_after_a)
    checkpoint = _loop(
        tmp_path, _FakeNavigator({1: ["a", "b"]}), extractor, sleep=_sleep
    ).run()

    assert polls == [0.01, 0.01, 0.01]
    assert extractor.seen == ["a"]
    assert checkpoint.session.status is SessionStatus.STOPPED
    assert checkpoint.paused_at is None
    assert checkpoint.current_item_index == 1


def test_persistence_failure_fails_session_without_advancing(tmp_path: Path) -> None:
    loop = _loop(
        tmp_path,
        _FakeNavigator({1: ["a", "b", "c"]}),
        _FakeExtractor(),
        sync=_FakeSync(broken={"b"}),
    )

    checkpoint = loop.run()

    assert checkpoint.session.status is SessionStatus.FAILED
    assert exit_code_for(checkpoint.session.status) == EXIT_FAILED
    assert checkpoint.current_item_index == 1
    assert checkpoint.last_processed_item == "https://example.com/projectdetail/a"
    saved = CheckpointStore(tmp_path / "progress.json").read()
    assert saved is not None
    assert saved.session.status is SessionStatus.FAILED
    assert saved.current_item_index == 1


def test_checkpoint_write_failure_fails_session(tmp_path: Path) -> None:
    class _FlakyStore(CheckpointStore):
        def __init__(self, path: Path) -> None:
            super().__init__(path)
            self.saves = 0

        def save(self, checkpoint: Checkpoint, *, now: Optional[datetime] = None) -> None:
            self.saves += 1
            if self.saves >= 3:
                raise CheckpointWriteError("disk full")
            super().save(checkpoint, now=now)

    store = _FlakyStore(tmp_path / "progress.json")
    checkpoint = _loop(
        tmp_path, _FakeNavigator({1: ["a", "b", "c"]}), _FakeExtractor(), store=store
    ).run()

    assert checkpoint.session.status is SessionStatus.FAILED


def test_unchanged_records_count_as_duplicates(tmp_path: Path) -> None:
    loop = _loop(
        tmp_path,
        _FakeNavigator({1: ["a", "b"]}),
        _FakeExtractor(),
        sync=_FakeSync(unchanged={"a"}),
    )

    checkpoint = loop.run()

    assert checkpoint.duplicates_skipped == 1
    assert checkpoint.new_properties_added == 1
    assert checkpoint.total_properties_scraped == 2


def test_max_pages_ends_session_as_stopped(tmp_path: Path) -> None:
    extractor = _FakeExtractor()
    loop = _loop(
        tmp_path,
        _FakeNavigator({1: ["a"], 2: ["b"], 3: ["c"]}),
        extractor,
        max_pages=1,
    )

    checkpoint = loop.run()

    assert checkpoint.session.status is SessionStatus.STOPPED
    assert extractor.seen == ["a"]
    assert checkpoint.current_page == 2


def test_error_buffer_is_bounded(tmp_path: Path) -> None:
    names = [f"item-{idx}" for idx in range(5)]
    loop = _loop(
        tmp_path,
        _FakeNavigator({1: names}),
        _FakeExtractor(failing=names),
        error_capacity=2,
    )

    checkpoint = loop.run()

    assert [entry["item"] for entry in checkpoint.errors] == ["item-3", "item-4"]
    assert checkpoint.error_count == 5
    assert checkpoint.errors_dropped == 3


def test_progress_callback_failure_does_not_stop_loop(tmp_path: Path) -> None:
    def _broken(checkpoint: Checkpoint) -> None:
        raise RuntimeError("db offline")

    checkpoint = _loop(
        tmp_path, _FakeNavigator({1: ["a"]}), _FakeExtractor(), on_progress=_broken
    ).run()

    assert checkpoint.session.status is SessionStatus.COMPLETED


def test_prepare_checkpoint_starts_new_session_after_completion(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "progress.json")
    done = Checkpoint.fresh()
    done.finish(SessionStatus.COMPLETED)
    store.save(done)

    checkpoint = prepare_checkpoint(store)

    assert checkpoint.session.id != done.session.id
    assert checkpoint.current_page == 1


def test_prepare_checkpoint_fresh_ignores_saved_cursor(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "progress.json")
    saved = Checkpoint.fresh()
    saved.complete_page(1)
    store.save(saved)

    checkpoint = prepare_checkpoint(store, fresh=True)

    assert checkpoint.session.id != saved.session.id
    assert checkpoint.current_page == 1


def test_prepare_checkpoint_closes_pause_left_by_crash(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "progress.json")
    t0 = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
    crashed = Checkpoint.fresh(now=t0)
    crashed.mark_paused(t0)
    store.save(crashed, now=t0 + timedelta(seconds=45))

    checkpoint = prepare_checkpoint(store, now=t0 + timedelta(hours=2))

    assert checkpoint.session.id == crashed.session.id
    assert checkpoint.paused_at is None
    assert checkpoint.total_pause_duration == 45
    assert checkpoint.session.status is SessionStatus.RUNNING


@pytest.mark.parametrize(
    "status, code",
    [
        (SessionStatus.COMPLETED, 0),
        (SessionStatus.STOPPED, 3),
        (SessionStatus.FAILED, 1),
    ],
)
def test_exit_codes(status: SessionStatus, code: int) -> None:
    assert exit_code_for(status) == code
