"""
Structured logging setup.

Development and tests log one readable line per record; production emits one
JSON object per line for the log aggregator. ``LOG_LEVEL`` overrides the level.

Services attach routing context with ``extra=``; the names listed in
``CONTEXT_FIELDS`` are lifted into the JSON object (and, for the few that
matter when reading a terminal, appended to the readable line).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = (
    # request
    "request_id",
    "actor_id",
    "method",
    "path",
    "status",
    "duration_ms",
    # routing / escalation
    "document_id",
    "distribution_id",
    "escalation_level",
    "processed_count",
    "scope",
    "user_ids",
    # scheduler
    "job_name",
)

# Shown inline by the readable formatter
_INLINE_FIELDS = ("distribution_id", "escalation_level", "job_name", "request_id")

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "redis", "urllib3")


def _context(record: logging.LogRecord, names) -> dict:
    found = {}
    for name in names:
        value = getattr(record, name, None)
        if value is not None:
            found[name] = value
    return found


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        doc.update(_context(record, CONTEXT_FIELDS))
        if record.exc_info and record.exc_info[0] is not None:
            doc["exc"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line format for a developer terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        ctx = " ".join(f"{k}={v}" for k, v in _context(record, _INLINE_FIELDS).items())
        line = f"{color}{clock} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        if ctx:
            line += f"  [{ctx}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    JSON when the app is neither in debug nor testing mode, readable otherwise.
    Existing root handlers are replaced so repeated app creation (tests) does
    not duplicate output.
    """
    testing = bool(app.config.get("TESTING"))
    json_output = not app.config.get("DEBUG") and not testing

    default_level = "INFO" if json_output else "DEBUG"
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging ready (level=%s, %s)", level_name, "json" if json_output else "readable")
