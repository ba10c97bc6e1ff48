from __future__ import annotations

from typing import Literal

from . import config
from .logging_utils import _scraper_event
from .utils import log_line

Entrypoint = Literal["ui", "cli", "tests"]


def _raise_config_error(message: str, *, entrypoint: Entrypoint, error: str) -> None:
    _scraper_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint})")
    raise ValueError(message)


def _clamp(field: str, value: float, adjusted: float, *, entrypoint: Entrypoint) -> None:
    _scraper_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=field,
        value=value,
        adjusted=adjusted,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {field}={value!r} is out of range; clamping to {adjusted!r}.")
    setattr(config, field, adjusted)


def validate_runtime_config(entrypoint: Entrypoint) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Soft knobs (poll intervals, delays) are clamped and logged instead.
    """

    if config.NAV_MAX_ATTEMPTS < 1:
        _raise_config_error(
            "NAV_MAX_ATTEMPTS must be at least 1.",
            entrypoint=entrypoint,
            error="nav_attempts_invalid",
        )

    if config.ERROR_BUFFER_SIZE < 1:
        _raise_config_error(
            "ERROR_BUFFER_SIZE must be at least 1.",
            entrypoint=entrypoint,
            error="error_buffer_invalid",
        )

    if config.MIN_FREE_MB < 0:
        _raise_config_error(
            "MIN_FREE_MB must be non-negative.",
            entrypoint=entrypoint,
            error="min_free_mb_invalid",
        )

    timeout_fields = [
        ("PLAYWRIGHT_NAV_TIMEOUT_SECONDS", config.PLAYWRIGHT_NAV_TIMEOUT_SECONDS),
        ("PLAYWRIGHT_SELECTOR_TIMEOUT_SECONDS", config.PLAYWRIGHT_SELECTOR_TIMEOUT_SECONDS),
        ("IMAGE_DOWNLOAD_TIMEOUT_SECONDS", config.IMAGE_DOWNLOAD_TIMEOUT_SECONDS),
        ("GALLERY_SETTLE_TIMEOUT_SECONDS", config.GALLERY_SETTLE_TIMEOUT_SECONDS),
    ]
    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
            )

    if config.CONTROL_POLL_SECONDS <= 0:
        _clamp("CONTROL_POLL_SECONDS", config.CONTROL_POLL_SECONDS, 1.0, entrypoint=entrypoint)
    if config.GALLERY_POLL_SECONDS <= 0:
        _clamp("GALLERY_POLL_SECONDS", config.GALLERY_POLL_SECONDS, 0.2, entrypoint=entrypoint)
    if config.NAV_BACKOFF_SECONDS < 0:
        _clamp("NAV_BACKOFF_SECONDS", config.NAV_BACKOFF_SECONDS, 0.0, entrypoint=entrypoint)
    if config.PER_ITEM_DELAY < 0:
        _clamp("PER_ITEM_DELAY", config.PER_ITEM_DELAY, 0.0, entrypoint=entrypoint)


__all__ = ["validate_runtime_config", "Entrypoint"]
