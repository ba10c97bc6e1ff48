"""Resumable scrape loop and its Playwright wiring.

Workflow:

- Load the checkpoint (or start a fresh session) and reopen it as running.
- For each listing page from the checkpoint cursor, open the page, read the
  item references and, for each item from the cursor, extract and reconcile
  its record.
- Advance and save the checkpoint only after the record is persisted.
- Poll the control channel before each page and after each item; pause
  blocks in a bounded sleep-and-repoll loop, stop ends the session cleanly.

This is wired to the ``scrape`` CLI command via ``run_scrape()``.
"""

from __future__ import annotations

import os
import signal
import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from playwright.sync_api import Error as PWError, sync_playwright

from . import config, db
from .config_validation import validate_runtime_config
from .control import ControlChannel, ControlState
from .error_collector import ErrorCollector, ErrorContext
from .extractor import StructuredExtractor
from .images import ImageFetcher
from .logging_utils import _scraper_event
from .models import ExtractedRecord, ItemRef, SessionStatus
from .navigator import NavigationError, PageNavigator
from .state import Checkpoint, CheckpointStore, CheckpointWriteError
from .sync import SyncOutcome, reconcile
from .utils import ensure_dirs, log_line, parse_iso, setup_run_logger

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_STARTUP = 2
EXIT_STOPPED = 3

_EXIT_CODES = {
    SessionStatus.COMPLETED: EXIT_COMPLETED,
    SessionStatus.STOPPED: EXIT_STOPPED,
    SessionStatus.FAILED: EXIT_FAILED,
}


def exit_code_for(status: SessionStatus) -> int:
    return _EXIT_CODES.get(status, EXIT_FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunResult:
    status: SessionStatus
    exit_code: int
    checkpoint: Optional[Checkpoint] = None
    error: Optional[str] = None


class ScrapeLoop:
    """Drive navigator, extractor and sync from a checkpoint cursor."""

    def __init__(
        self,
        navigator: Any,
        extractor: Any,
        store: CheckpointStore,
        control: ControlChannel,
        checkpoint: Checkpoint,
        *,
        reconcile_record: Callable[[ExtractedRecord], SyncOutcome] = reconcile,
        max_pages: Optional[int] = None,
        per_item_delay: Optional[float] = None,
        poll_seconds: Optional[float] = None,
        error_capacity: Optional[int] = None,
        on_progress: Optional[Callable[[Checkpoint], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.navigator = navigator
        self.extractor = extractor
        self.store = store
        self.control = control
        self.checkpoint = checkpoint
        self.reconcile_record = reconcile_record
        self.max_pages = max_pages
        self.per_item_delay = config.PER_ITEM_DELAY if per_item_delay is None else per_item_delay
        self.poll_seconds = config.CONTROL_POLL_SECONDS if poll_seconds is None else poll_seconds
        self.errors = ErrorCollector(checkpoint, capacity=error_capacity, clock=clock)
        self.on_progress = on_progress
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Checkpoint helpers
    # ------------------------------------------------------------------

    def _save(self) -> None:
        self.store.save(self.checkpoint, now=self._clock())

    def _progress(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.checkpoint)
        except Exception as exc:  # noqa: BLE001
            log_line(f"[RUN][WARN] Unable to publish session progress: {exc}")

    def _finish(self, status: SessionStatus) -> Checkpoint:
        self.checkpoint.finish(status, self._clock())
        self._save()
        self._progress()
        cp = self.checkpoint
        log_line(
            f"[RUN] Session {cp.session.id} {status.value}: page={cp.current_page} "
            f"item={cp.current_item_index} scraped={cp.total_properties_scraped} "
            f"new={cp.new_properties_added} updated={cp.properties_updated} "
            f"unchanged={cp.duplicates_skipped} errors={cp.error_count}"
        )
        _scraper_event("state", phase="session_end", session_id=cp.session.id, status=status.value)
        return cp

    # ------------------------------------------------------------------
    # Control handling
    # ------------------------------------------------------------------

    def _should_stop(self) -> bool:
        """Apply any pending control command; ``True`` means stop now."""

        command = self.control.poll()
        if command is None:
            return False
        if command.state is ControlState.STOP:
            log_line("[CONTROL] Stop requested; finishing session")
            return True
        if command.state is ControlState.RESUME:
            log_line("[CONTROL] Resume received while running; nothing to do")
            return False
        return self._wait_while_paused()

    def _wait_while_paused(self) -> bool:
        self.checkpoint.mark_paused(self._clock())
        self._save()
        self._progress()
        log_line(
            f"[CONTROL] Paused at page {self.checkpoint.current_page}, "
            f"item {self.checkpoint.current_item_index}"
        )
        _scraper_event("control", step="paused", paused_at=self.checkpoint.paused_at)

        while True:
            self._sleep(self.poll_seconds)
            command = self.control.poll()
            if command is None or command.state is ControlState.PAUSE:
                continue
            elapsed = self.checkpoint.mark_resumed(self._clock())
            self._save()
            if command.state is ControlState.STOP:
                log_line(f"[CONTROL] Stop requested while paused ({elapsed:.0f}s paused)")
                return True
            log_line(f"[CONTROL] Resumed after {elapsed:.0f}s")
            _scraper_event("control", step="resumed", paused_seconds=round(elapsed, 1))
            self._progress()
            return False

    # ------------------------------------------------------------------
    # Items and pages
    # ------------------------------------------------------------------

    def _process_item(self, item: ItemRef) -> None:
        context = ErrorContext(page=item.page_index, item_index=item.item_index, item=item.name)
        try:
            record = self.extractor.extract(item)
        except Exception as exc:  # noqa: BLE001
            # ExtractionError and NavigationError carry their own codes;
            # anything else is recorded as internal_error.
            self.errors.record(context, exc)
            self.checkpoint.skip_item()
            self._save()
            return

        try:
            outcome = self.reconcile_record(record)
        except db.PersistenceError:
            log_line(
                f"[RUN][ERROR] Persistence failed for {record.identity_key} "
                f"(page {item.page_index}, item {item.item_index})"
            )
            raise

        self.checkpoint.advance_item(record.identity_key, outcome.value)
        self._save()
        log_line(
            f"[RUN] Page {item.page_index} item {item.item_index} {item.name}: {outcome.value}"
        )

    def _run_pages(self) -> SessionStatus:
        cp = self.checkpoint
        pages_this_run = 0
        while True:
            if self._should_stop():
                return SessionStatus.STOPPED

            page_index = cp.current_page
            if cp.total_pages is not None and page_index > cp.total_pages:
                return SessionStatus.COMPLETED
            if self.max_pages is not None and pages_this_run >= self.max_pages:
                log_line(f"[RUN] Page limit {self.max_pages} reached; stopping")
                return SessionStatus.STOPPED

            pages_this_run += 1
            try:
                handle = self.navigator.open(page_index)
            except NavigationError as exc:
                self.errors.record(ErrorContext(page=page_index), exc)
                if cp.total_pages is None:
                    # Without a page count there is no safe next page; leave
                    # the cursor here so the next run retries it.
                    log_line(f"[RUN][ERROR] Page {page_index} unreachable before page count known")
                    return SessionStatus.FAILED
                cp.fail_page(page_index)
                self._save()
                self._progress()
                continue

            if cp.total_pages is None:
                cp.total_pages = self.navigator.detect_total_pages(handle)
                log_line(f"[RUN] Detected {cp.total_pages} listing page(s)")

            items = self.navigator.list_items(handle)
            log_line(
                f"[RUN] Page {page_index}/{cp.total_pages}: {len(items)} item(s), "
                f"starting at {cp.current_item_index}"
            )
            while cp.current_item_index < len(items):
                self._process_item(items[cp.current_item_index])
                if self._should_stop():
                    return SessionStatus.STOPPED
                if self.per_item_delay > 0:
                    self._sleep(self.per_item_delay)

            cp.complete_page(page_index)
            self._save()
            self._progress()

    def run(self) -> Checkpoint:
        cp = self.checkpoint
        cp.session.status = SessionStatus.RUNNING
        _scraper_event(
            "state",
            phase="session_start",
            session_id=cp.session.id,
            page=cp.current_page,
            item=cp.current_item_index,
        )
        try:
            self._save()
            return self._finish(self._run_pages())
        except (db.PersistenceError, CheckpointWriteError) as exc:
            log_line(f"[RUN][ERROR] Session aborted: {exc}")
            _scraper_event(
                "error",
                phase="session",
                error_code=getattr(exc, "error_code", None),
                page=cp.current_page,
                item=cp.current_item_index,
                error=str(exc),
            )
            cp.finish(SessionStatus.FAILED, self._clock())
            try:
                self._save()
            except CheckpointWriteError as save_exc:
                log_line(f"[RUN][ERROR] Unable to record failed session: {save_exc}")
            self._progress()
            return cp


# ---------------------------------------------------------------------------
# Session preparation and signals
# ---------------------------------------------------------------------------


def prepare_checkpoint(
    store: CheckpointStore, *, fresh: bool = False, now: Optional[datetime] = None
) -> Checkpoint:
    """Return the checkpoint to run from.

    Completed sessions (or ``fresh``) start over at page 1; stopped, failed
    and crashed sessions are reopened at their cursor.
    """

    moment = now or _utcnow()
    existing = None if fresh else store.read()
    if existing is None or existing.session.status is SessionStatus.COMPLETED:
        checkpoint = Checkpoint.fresh(now=moment, pid=os.getpid())
        log_line(f"[RUN] Starting new session {checkpoint.session.id}")
        return checkpoint

    if existing.paused_at is not None:
        # The process died while paused; the pause ended with the last save.
        existing.mark_resumed(parse_iso(existing.last_save_time) or moment)
    existing.session.status = SessionStatus.RUNNING
    existing.session.ended_at = None
    existing.session.pid = os.getpid()
    log_line(
        f"[RUN] Resuming session {existing.session.id} at page {existing.current_page}, "
        f"item {existing.current_item_index}"
    )
    return existing


def install_signal_handlers(loop: ScrapeLoop) -> Dict[int, Any]:
    """Route SIGTERM to stop and SIGINT to pause (stop when already paused)."""

    def _on_term(signum: int, frame: Any) -> None:
        loop.control.issue(ControlState.STOP, command="signal_sigterm")

    def _on_int(signum: int, frame: Any) -> None:
        if loop.checkpoint.is_paused:
            loop.control.issue(ControlState.STOP, command="signal_sigint")
        else:
            loop.control.issue(ControlState.PAUSE, command="signal_sigint")

    previous: Dict[int, Any] = {}
    for signum, handler in ((signal.SIGTERM, _on_term), (signal.SIGINT, _on_int)):
        try:
            previous[signum] = signal.signal(signum, handler)
        except ValueError:
            # Not on the main thread (e.g. launched from the web app).
            continue
    return previous


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        try:
            signal.signal(signum, handler)
        except ValueError:
            continue


def publish_session_summary(checkpoint: Checkpoint) -> None:
    """Mirror checkpoint progress into the ``scrape_sessions`` table."""

    session = checkpoint.session
    db.record_session_summary(
        session.id,
        status=session.status.value,
        started_at=session.started_at,
        ended_at=session.ended_at,
        counts=checkpoint.to_progress(),
        pause_seconds=checkpoint.total_pause_duration,
        metadata={
            "current_page": checkpoint.current_page,
            "total_pages": checkpoint.total_pages,
            "failed_pages": checkpoint.failed_pages,
            "pid": session.pid,
        },
    )


def run_scrape(
    *,
    fresh: bool = False,
    max_pages: Optional[int] = None,
    headless: Optional[bool] = None,
) -> RunResult:
    """Public entrypoint: run one scrape session end to end."""

    ensure_dirs()
    setup_run_logger()
    run_started = _utcnow().replace(microsecond=0)

    try:
        validate_runtime_config("cli")
        db.initialize_schema()
        db.check_connection()
    except (ValueError, sqlite3.Error, OSError) as exc:
        log_line(f"[RUN][ERROR] Startup failed: {exc}")
        _scraper_event("error", phase="startup", error=str(exc))
        return RunResult(SessionStatus.FAILED, EXIT_STARTUP, error=str(exc))

    store = CheckpointStore()
    checkpoint = prepare_checkpoint(store, fresh=fresh, now=run_started)
    control = ControlChannel(not_before=run_started)
    use_headless = config.HEADLESS if headless is None else headless

    try:
        with sync_playwright() as pw:
            browser = pw.chromium.launch(headless=use_headless)
            context = browser.new_context(user_agent=config.COMMON_HEADERS["User-Agent"])
            try:
                page = context.new_page()
                navigator = PageNavigator(page)
                extractor = StructuredExtractor(
                    navigator,
                    image_fetcher=ImageFetcher() if config.DOWNLOAD_IMAGES else None,
                )
                loop = ScrapeLoop(
                    navigator,
                    extractor,
                    store,
                    control,
                    checkpoint,
                    max_pages=max_pages,
                    on_progress=publish_session_summary,
                )
                previous = install_signal_handlers(loop)
                try:
                    checkpoint = loop.run()
                finally:
                    restore_signal_handlers(previous)
            finally:
                try:
                    context.close()
                    browser.close()
                except PWError as exc:
                    log_line(f"[RUN][WARN] Error closing browser: {exc}")
    except PWError as exc:
        log_line(f"[RUN][ERROR] Browser startup failed: {exc}")
        _scraper_event("error", phase="startup", error=str(exc))
        return RunResult(SessionStatus.FAILED, EXIT_STARTUP, checkpoint=checkpoint, error=str(exc))

    status = checkpoint.session.status
    return RunResult(status, exit_code_for(status), checkpoint=checkpoint)


__all__ = [
    "EXIT_COMPLETED",
    "EXIT_FAILED",
    "EXIT_STARTUP",
    "EXIT_STOPPED",
    "RunResult",
    "ScrapeLoop",
    "exit_code_for",
    "prepare_checkpoint",
    "install_signal_handlers",
    "restore_signal_handlers",
    "publish_session_summary",
    "run_scrape",
]
