"""
Logging setup for the approval service.

Two output formats, picked by ``LOG_FORMAT`` (config) or by environment:

    json      one object per line for the log shipper (production default)
    readable  coloured single line for a terminal (development / testing default)

Level comes from the ``LOG_LEVEL`` env variable.

Context travels on the record through ``extra=``; every formatter renders the
same set of keys:

    logger.info("Application approved", extra={"tenant_id": 1, "application_id": 7})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# LogRecord attributes rendered by both formatters, in output order.
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "tenant_id",
    "member_id",
    "route_id",
    "template_id",
    "application_id",
    "action",
)

# Shown inline by the readable formatter; request fields go to the access line.
_ID_FIELDS = ("tenant_id", "member_id", "route_id", "template_id", "application_id", "action")

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic.runtime.migration")


def record_context(record: logging.LogRecord) -> dict:
    """Context fields carried by ``record`` (None values skipped)."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message [k=v ...] (12ms)`` with a coloured level."""

    COLORS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        line = f"{stamp} {level} {record.name}: {record.getMessage()}"
        ids = " ".join(
            f"{key}={getattr(record, key)}" for key in _ID_FIELDS if getattr(record, key, None) is not None
        )
        if ids:
            line += f" [{ids}]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    Repeated calls (one per create_app() in tests) replace the handler
    instead of stacking a new one.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    fmt = (app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()
    if fmt not in ("json", "readable"):
        raise ValueError(f"LOG_FORMAT must be 'json' or 'readable', got {fmt!r}")

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter(color=sys.stderr.isatty()))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging ready: level=%s format=%s", level_name, fmt)
