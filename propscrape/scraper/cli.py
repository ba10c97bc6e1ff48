from __future__ import annotations

"""Command-line interface: scrape, control, status, health and export."""

import argparse
import json
from typing import Sequence

from .control import ControlChannel, ControlState
from .export_excel import export_catalogue_to_excel
from .healthcheck import run_health_checks
from .runner import EXIT_COMPLETED, EXIT_FAILED, EXIT_STARTUP, EXIT_STOPPED, run_scrape
from .state import CheckpointStore
from .status import render_status
from .utils import format_duration

_CONTROL_MESSAGES = {
    ControlState.PAUSE: "Pause requested; the scraper pauses after the current item.",
    ControlState.RESUME: "Resume requested.",
    ControlState.STOP: "Stop requested; the scraper saves progress and exits.",
}


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc
    if parsed < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the ``propscrape`` command."""

    parser = argparse.ArgumentParser(
        prog="propscrape",
        description="Resumable property listing scraper.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scrape = sub.add_parser(
        "scrape",
        help="Run or resume a scrape session.",
        description="Run or resume a scrape session from the saved checkpoint.",
        epilog=(
            f"exit codes: {EXIT_COMPLETED} completed, {EXIT_STOPPED} stopped (resumable), "
            f"{EXIT_FAILED} failed (resumable), {EXIT_STARTUP} startup failure"
        ),
    )
    scrape.add_argument(
        "--fresh",
        action="store_true",
        help="Ignore the saved checkpoint and start at page 1.",
    )
    scrape.add_argument(
        "--max-pages",
        type=_positive_int,
        help="Stop after this many listing pages have been processed.",
    )
    scrape.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window.",
    )

    for state in ControlState:
        sub.add_parser(state.value, help=f"Ask a running scraper to {state.value}.")

    status = sub.add_parser("status", help="Show checkpoint progress.")
    status.add_argument("--json", action="store_true", help="Print the checkpoint as JSON.")

    sub.add_parser("health", help="Check configuration, disk and database.")

    export = sub.add_parser("export", help="Export the catalogue to Excel.")
    export.add_argument("--dest", help="Workbook path (defaults to the exports directory).")
    return parser


def _cmd_scrape(args: argparse.Namespace) -> int:
    result = run_scrape(
        fresh=args.fresh,
        max_pages=args.max_pages,
        headless=False if args.headed else None,
    )
    if result.error:
        print(f"Scrape failed: {result.error}")
    if result.checkpoint is not None:
        progress = result.checkpoint.to_progress()
        print(
            f"Session {result.checkpoint.session.id} {result.status.value}: "
            f"{progress['processed']} processed, {progress['new']} new, "
            f"{progress['updated']} updated, {progress['duplicates']} unchanged, "
            f"{progress['errors']} errors"
        )
        if result.checkpoint.total_pause_duration:
            print(f"Paused for {format_duration(result.checkpoint.total_pause_duration)}")
    return result.exit_code


def _cmd_control(state: ControlState) -> int:
    ControlChannel().issue(state, command="cli")
    print(_CONTROL_MESSAGES[state])
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    checkpoint = CheckpointStore().read()
    pending = ControlChannel().peek()
    if args.json:
        payload = checkpoint.to_dict() if checkpoint is not None else None
        print(json.dumps(payload, indent=2))
    else:
        print(render_status(checkpoint, pending=pending))
    return 0


def _cmd_health() -> int:
    result = run_health_checks(entrypoint="cli")
    for name, info in result.checks.items():
        label = "OK" if info.get("ok") else "FAIL"
        detail = {k: v for k, v in info.items() if k != "ok"}
        print(f"{name}: {label} {detail if detail else ''}".rstrip())
    return 0 if result.ok else 1


def _cmd_export(args: argparse.Namespace) -> int:
    try:
        path = export_catalogue_to_excel(args.dest)
    except OSError as exc:
        print(f"Export failed: {exc}")
        return 1
    print(f"Exported catalogue to {path}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``propscrape`` CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "scrape":
        return _cmd_scrape(args)
    if args.command in {state.value for state in ControlState}:
        return _cmd_control(ControlState(args.command))
    if args.command == "status":
        return _cmd_status(args)
    if args.command == "health":
        return _cmd_health()
    if args.command == "export":
        return _cmd_export(args)
    parser.error(f"unknown command {args.command!r}")  # pragma: no cover
    return 2  # pragma: no cover


__all__ = ["main"]


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
