from __future__ import annotations

import os
from typing import Any, Dict

from flask import Flask, Response, jsonify, request, send_file

from propscrape.scraper import db
from propscrape.scraper.control import ControlChannel, ControlState
from propscrape.scraper.export_excel import export_catalogue_to_excel
from propscrape.scraper.healthcheck import run_health_checks
from propscrape.scraper.logging_utils import _scraper_event
from propscrape.scraper.state import CheckpointStore
from propscrape.scraper.status import status_payload
from propscrape.scraper.utils import ensure_dirs, log_line

app = Flask(__name__)

# Initialise storage paths and SQLite schema on import so WSGI entrypoints
# also have the expected environment ready.
ensure_dirs()
db.initialize_schema()


@app.get("/api/status")
def api_status() -> Response:
    """Return checkpoint progress plus any pending control command."""

    checkpoint = CheckpointStore().read()
    pending = ControlChannel().peek()
    return jsonify(status_payload(checkpoint, pending=pending))


@app.post("/api/control/<state>")
def api_control(state: str) -> Response:
    """Issue a pause/resume/stop command to the running scraper."""

    try:
        desired = ControlState(state.strip().lower())
    except ValueError:
        return jsonify({"ok": False, "error": "invalid_state", "state": state}), 400

    command = request.args.get("command") or "api"
    try:
        record = ControlChannel().issue(desired, command=command)
    except OSError as exc:
        log_line(f"[API] Unable to write control command {desired.value}: {exc}")
        _scraper_event("error", phase="control", context="api", error=str(exc))
        return jsonify({"ok": False, "error": "control_write_failed"}), 500

    return jsonify({"ok": True, "command": record.to_dict()}), 202


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, filesystem, and DB."""

    result = run_health_checks(entrypoint="ui")
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status


@app.get("/api/exports/latest.xlsx")
def api_export_latest_xlsx() -> Response:
    path = export_catalogue_to_excel()
    return send_file(path, as_attachment=True, download_name=os.path.basename(path))


@app.get("/api/properties")
def api_properties() -> Response:
    """Return stored properties; ``?details=1`` adds unit rows and images."""

    raw_limit = request.args.get("limit", type=int)
    if raw_limit is None:
        limit = 100
    else:
        limit = max(1, min(raw_limit, 1000))

    properties = db.list_properties(limit)
    if request.args.get("details") == "1":
        for row in properties:
            row["unit_rows"] = db.list_unit_rows(row["id"])
            row["images"] = db.list_image_assets(row["id"])

    payload: Dict[str, Any] = {"ok": True, "count": len(properties), "properties": properties}
    return jsonify(payload)


@app.get("/api/sessions")
def api_sessions() -> Response:
    """Return recent scrape session summaries from SQLite."""

    raw_limit = request.args.get("limit", type=int)
    limit = 20 if raw_limit is None else max(1, min(raw_limit, 200))
    sessions = db.list_sessions(limit)
    return jsonify({"ok": True, "count": len(sessions), "sessions": sessions})


if __name__ == "__main__":
    # Direct invocation is primarily for local development; directories and
    # schema are initialised above during module import.
    app.run(host="0.0.0.0", port=8080)
