"""
Logging setup for solarops.

Two output shapes share one root handler on stderr:
    ReadableFormatter  dev and test runs; coloured, with the report id and
                       request duration appended when a record carries them
    JSONFormatter      production; one object per line, workflow fields
                       (report_id, stage_id, transition, user_id) promoted
                       to top-level keys

LOG_LEVEL overrides the default (DEBUG outside production, INFO in it).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

_EXTRA_KEYS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "user_id",
    "report_id",
    "stage_id",
    "transition",
    "event_type",
)

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
_RESET = "\033[0m"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for the production log shipper."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            (key, getattr(record, key)) for key in _EXTRA_KEYS
            if getattr(record, key, None) is not None
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        color = _LEVEL_COLORS.get(record.levelname, "")
        line = (
            f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{_RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        report_id = getattr(record, "report_id", None)
        if report_id:
            line += f" (report={report_id})"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler for ``app``; safe to call once per app build."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())
    handler.setLevel(level)

    # Tests build the app more than once.
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info(
            "Logging configured: level=%s format=%s", level_name, "JSON" if is_prod else "readable",
        )
