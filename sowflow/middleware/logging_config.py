"""
Structured logging configuration.

- Development: human-readable colored format with a short context suffix
- Production: one JSON object per line (log aggregator compatible)
- LOG_LEVEL / LOG_FORMAT env variables override the config defaults

Services attach workflow context with ``extra=`` (sow_id, approval_id,
stage, actor_id, lineage_root_id, event_type). Inside a request the
RequestContextFilter fills request_id and actor_id from ``flask.g`` so
log lines from the service layer can be joined to the access log.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Request fields written by middleware/timing.py
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "request_id")

# Workflow fields written by the service layer
WORKFLOW_FIELDS = ("sow_id", "approval_id", "stage", "actor_id", "lineage_root_id", "event_type")

CONTEXT_FIELDS = REQUEST_FIELDS + WORKFLOW_FIELDS

NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "alembic")


class RequestContextFilter(logging.Filter):
    """Copy request_id / actor_id from flask.g onto records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = getattr(g, "request_id", None)
            if getattr(record, "actor_id", None) is None:
                actor = getattr(g, "actor", None)
                record.actor_id = actor.actor_id if actor is not None else None
        return True


def _context(record: logging.LogRecord, fields) -> dict:
    return {
        key: getattr(record, key)
        for key in fields
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **_context(record, CONTEXT_FIELDS),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    # Shown after the message, in this order, when present
    SUFFIX_FIELDS = ("sow_id", "stage", "actor_id")

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        ctx = _context(record, self.SUFFIX_FIELDS)
        suffix = "".join(f" {k.removesuffix('_id')}={v}" for k, v in ctx.items())
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            suffix += f" [{duration:.0f}ms]"
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}{suffix}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install one root stream handler for the Flask app.

    Level:  LOG_LEVEL env > app.config["LOG_LEVEL"] > DEBUG (dev) / INFO (prod)
    Format: LOG_FORMAT env > app.config["LOG_FORMAT"] > readable (dev) / json (prod)
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL") or app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)
    fmt = (os.getenv("LOG_FORMAT") or app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    # Replace, not append: create_app runs once per test session and per worker
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
