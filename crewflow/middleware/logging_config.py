"""
Logging setup for CrewFlow.

One stderr handler on the root logger:
    readable  — coloured single lines, used in development and tests
    json      — one JSON object per line, used in production

Request timing (method, path, status, duration) and matrix import context
(contract_id, import_id) travel as ``extra=`` attributes on log records and
are rendered by both formatters.
"""

import json
import logging
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")
SCOPE_FIELDS = ("contract_id", "import_id")

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic", "PIL")


def _extras(record: logging.LogRecord, names) -> dict:
    return {name: getattr(record, name) for name in names if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    """Serialise a record with its request and import context."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        payload.update(_extras(record, REQUEST_FIELDS))
        payload.update(_extras(record, SCOPE_FIELDS))
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
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
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        scope = " ".join(f"{k}={v}" for k, v in _extras(record, SCOPE_FIELDS).items())
        line = f"{color}{stamp} {record.levelname:<8}{self.RESET} {record.name}"
        if scope:
            line += f" [{scope}]"
        line += f" {record.getMessage()}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install the root handler according to the app config.

    LOG_FORMAT ("json" | "readable") defaults to json outside debug/testing.
    LOG_LEVEL defaults to INFO in production and DEBUG otherwise.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    fmt = (app.config.get("LOG_FORMAT") or ("json" if production else "readable")).lower()
    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if production else "DEBUG")).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    # create_app runs more than once under tests; keep a single handler
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
