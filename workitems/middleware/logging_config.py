"""
Logging setup for the work-item service.

One stderr handler on the root logger. Records emitted while a request is
being served are stamped with the request id, tenant and user from
``flask.g`` so service-layer log calls do not have to pass them.

Format:  LOG_FORMAT=json|readable (default: json in production,
         readable elsewhere)
Level:   LOG_LEVEL (default: INFO in production, DEBUG elsewhere)
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Request-scoped attributes copied onto every record
CONTEXT_FIELDS = ("request_id", "tenant_id", "user_id")

# Record attributes lifted into JSON log entries
_EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    *CONTEXT_FIELDS,
    "work_item_id",
    "event_type",
)

_NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Fill request_id / tenant_id / user_id from ``flask.g`` when unset."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        principal = g.get("principal")
        values = {
            "request_id": g.get("request_id"),
            "tenant_id": principal.tenant_id if principal is not None else None,
            "user_id": principal.id if principal is not None else None,
        }
        for key, value in values.items():
            if value is not None and getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update({
            key: getattr(record, key)
            for key in _EXTRA_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"]

        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"[{duration:.0f}ms]")
        tags = [
            f"{key}={getattr(record, key)}"
            for key in ("tenant_id", "work_item_id", "request_id")
            if getattr(record, key, None)
        ]
        if tags:
            parts.append(f"({' '.join(tags)})")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _log_settings(app):
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    fmt = (app.config.get("LOG_FORMAT") or ("json" if is_prod else "readable")).lower()
    if fmt not in ("json", "readable"):
        raise ValueError(f"LOG_FORMAT must be 'json' or 'readable', got {fmt!r}")
    return getattr(logging, level_name, logging.INFO), level_name, fmt


def configure_logging(app):
    """Install the root handler and return it."""
    level, level_name, fmt = _log_settings(app)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    # Cleared first so repeated app creation in tests does not stack handlers
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
    return handler
