from __future__ import annotations

"""Error code taxonomy for scraper failures.

These codes are stored in checkpoint error entries and included in structured
logs so an operator can tell why an item or page was skipped. Keep them stable;
status output and exports group by them.
"""


class ErrorCode:
    NETWORK = "network_error"
    NAV_TIMEOUT = "nav_timeout"
    HTTP_4XX = "http_4xx"
    HTTP_404 = "http_404_not_found"
    HTTP_5XX = "http_5xx"
    SITE_STRUCTURE = "site_structure_changed"
    EXTRACTION_MISS = "extraction_miss"
    IMAGE_FETCH = "image_fetch_failed"
    PERSISTENCE = "persistence_failed"
    CHECKPOINT_WRITE = "checkpoint_write_failed"
    CONTROL_CHANNEL = "control_channel_error"
    STARTUP = "startup_failed"
    INTERNAL = "internal_error"


def classify_http_status(status: int | None) -> str:
    """Map an HTTP status to the closest error code."""

    if status is None:
        return ErrorCode.INTERNAL
    if status == 404:
        return ErrorCode.HTTP_404
    if 400 <= status < 500:
        return ErrorCode.HTTP_4XX
    if status >= 500:
        return ErrorCode.HTTP_5XX
    return ErrorCode.INTERNAL


__all__ = ["ErrorCode", "classify_http_status"]
