"""Structured logging configuration for AwareGuard.

Environment variables:
    AG_LOG_FORMAT  -- ``json`` for structured JSON output, ``text`` for human-readable (default).
    AG_LOG_LEVEL   -- Python log level name (default: ``INFO``).
"""

from __future__ import annotations

import logging
import os
import traceback
from typing import Any

from pythonjsonlogger.json import JsonFormatter

# Request fields set by the logging middleware, then audit fields.
_STRUCTURED_FIELDS = (
    "request_id",
    "path",
    "method",
    "status_code",
    "duration_ms",
    "event_category",
    "action",
    "actor",
    "target",
)


def _is_json_mode() -> bool:
    return os.environ.get("AG_LOG_FORMAT", "text").lower() == "json"


def _get_log_level() -> int:
    """Return the numeric log level from AG_LOG_LEVEL (default INFO)."""
    name = os.environ.get("AG_LOG_LEVEL", "INFO").upper()
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric


class StructuredJsonFormatter(logging.Formatter):
    """JSON formatter that emits one JSON object per log line.

    Request and audit fields are copied onto the object when present on
    the LogRecord; tracebacks become a list instead of free text.
    """

    def __init__(self) -> None:
        super().__init__()
        self._inner = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        extras: dict[str, Any] = {}
        for key in _STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                extras[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            extras["traceback"] = traceback.format_exception(*record.exc_info)
            record.exc_info = None
            record.exc_text = None

        for k, v in extras.items():
            setattr(record, k, v)

        return self._inner.format(record)


def setup_logging() -> None:
    """Configure the root logger according to AG_LOG_FORMAT and AG_LOG_LEVEL."""
    level = _get_log_level()
    root = logging.getLogger()
    root.setLevel(level)

    # Replace handlers so repeated app startups in tests don't double-log.
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if _is_json_mode():
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root.addHandler(handler)


def log_startup_info() -> None:
    """Emit a structured startup log line with the effective configuration."""
    import awareguard
    from awareguard.config import settings

    logger = logging.getLogger("awareguard")
    logger.info(
        "AwareGuard started",
        extra={
            "version": awareguard.__version__,
            "auth_provider": settings.auth_provider,
            "default_role": settings.default_role,
            "bootstrap_first_admin": settings.bootstrap_first_admin,
            "rate_limit_config": settings.rate_limit,
        },
    )
