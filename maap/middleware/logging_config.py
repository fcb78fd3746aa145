"""
Structured logging configuration.

- Development / testing: readable colored lines on stderr
- Production: one JSON object per line (log aggregator compatible)
- Level: LOG_LEVEL env variable

Services attach domain context with ``extra=``:

    logger.info("Snapshot finalized", extra={"snapshot_id": 12, "employee_id": 4})

Both formatters pick up the keys listed in ``CONTEXT_KEYS``.  Bulk workers
log from pool threads, so the thread name is kept when it is not the main one.
"""

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone

REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")
DOMAIN_KEYS = ("batch_id", "employee_id", "snapshot_id", "change_type", "error_kind")
CONTEXT_KEYS = REQUEST_KEYS + DOMAIN_KEYS

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_limiter")


def _context(record: logging.LogRecord, keys) -> dict:
    return {k: getattr(record, k) for k in keys if getattr(record, k, None) is not None}


def _worker_thread(record: logging.LogRecord) -> str | None:
    name = record.threadName
    return None if name == threading.main_thread().name else name


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        thread = _worker_thread(record)
        if thread:
            entry["thread"] = thread
        entry.update(_context(record, CONTEXT_KEYS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line formatter; domain context is appended in parentheses."""

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
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        parts = [f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"]

        context = _context(record, DOMAIN_KEYS)
        if context:
            parts.append("(" + " ".join(f"{k}={v}" for k, v in context.items()) + ")")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"[{duration:.0f}ms]")
        thread = _worker_thread(record)
        if thread:
            parts.append(f"<{thread}>")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for ``app``'s environment.

    Production (neither DEBUG nor TESTING) gets JSON at INFO; everything
    else gets readable lines at DEBUG, unless LOG_LEVEL says otherwise.
    """
    is_testing = app.config.get("TESTING", False)
    use_json = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if use_json else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs more than once per process in tests
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if use_json else "readable")
