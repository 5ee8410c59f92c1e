"""
Logging setup for SIGEDOC.

Every record that reaches the root handler is stamped with the request
context (``request_id``, ``user_id``, ``area_id``) when there is one, so a
document's route between areas can be followed across log lines.

LOG_FORMAT picks ``json`` or ``text``.  Left empty, production writes JSON
and development / testing write coloured text.  LOG_LEVEL sets the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

CONTEXT_FIELDS = ("request_id", "user_id", "area_id")
EVENT_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "document_id", "derivation_id")

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "flask_limiter")


class RequestContextFilter(logging.Filter):
    """Copy the current request id and caller identity onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        values = dict.fromkeys(CONTEXT_FIELDS)
        if has_request_context():
            identity = getattr(g, "identity", None)
            values["request_id"] = getattr(g, "request_id", None)
            if identity is not None:
                values["user_id"] = identity.user_id
                values["area_id"] = identity.home_area_id
        for key, value in values.items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


def structured_fields(record: logging.LogRecord) -> dict:
    """Context and event attributes present on *record*, ``None`` values skipped."""
    fields = {}
    for key in CONTEXT_FIELDS + EVENT_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for the log aggregator."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(structured_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured one-liners for a developer terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        caller = ""
        if getattr(record, "user_id", None) is not None:
            caller = f" [user {record.user_id} @ area {record.area_id}]"
        line = f"{color}{clock} {record.levelname:<8}{self.RESET} {record.name}{caller}: {record.getMessage()}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class SigedocHandler(logging.StreamHandler):
    """stderr handler installed by ``configure_logging``."""


def _log_format(app) -> str:
    chosen = (os.getenv("LOG_FORMAT") or app.config.get("LOG_FORMAT") or "").lower()
    if chosen in ("json", "text"):
        return chosen
    production = not app.config.get("DEBUG", False) and not app.config.get("TESTING", False)
    return "json" if production else "text"


def configure_logging(app) -> logging.Handler:
    """Install the SIGEDOC handler on the root logger and return it."""
    level_name = (os.getenv("LOG_LEVEL") or app.config.get("LOG_LEVEL") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = _log_format(app)

    handler = SigedocHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if log_format == "json" else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    # create_app() may run many times in one process; swap our handler, keep foreign ones
    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, SigedocHandler)]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", level_name, log_format)
    return handler
