"""
Log Formatters
==============

Development (text):
    2026-10-19 12:00:00 | INFO  | routing.router            | [a1b2c3d4e5f6] Selected deepl

Production (JSON):
    {"timestamp": "...", "level": "INFO", "logger": "billing.ledger", "request_id": "...", "message": "..."}
"""

import json
import logging
from datetime import datetime, timezone

from lingobridge.core.logging.context import get_request_id

# Attributes every LogRecord carries; anything else was passed via `extra=`
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
})


def _request_prefix() -> str:
    request_id = get_request_id()
    return f"[{request_id}] " if request_id else ""


class DevFormatter(logging.Formatter):
    """Colored console output: {timestamp} | {level} | {logger} | [{request_id}] {message}"""

    COLORS = {
        "DEBUG": "\x1b[38;5;244m",
        "INFO": "\x1b[38;5;39m",
        "WARNING": "\x1b[38;5;208m",
        "ERROR": "\x1b[38;5;196m",
        "CRITICAL": "\x1b[38;5;196;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        logger_name = record.name
        if len(logger_name) > 25:
            logger_name = "..." + logger_name[-22:]

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        line = (
            f"{timestamp} | {record.levelname.ljust(5)} | "
            f"{logger_name.ljust(25)} | {_request_prefix()}{message}"
        )
        if self.use_colors:
            line = f"{self.COLORS.get(record.levelname, '')}{line}{self.RESET}"
        return line


class FileFormatter(logging.Formatter):
    """Plain text with milliseconds, no colors."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime(
            "%Y-%m-%d %H:%M:%S,%f"
        )[:23]
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return f"{timestamp} | {record.levelname.ljust(8)} | {record.name} | {_request_prefix()}{message}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        request_id = get_request_id()
        if request_id:
            log_entry["request_id"] = request_id

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra_fields = {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}
        if extra_fields:
            log_entry["extra"] = extra_fields

        return json.dumps(log_entry, ensure_ascii=False, default=str)
