"""
Category File Handlers
======================

logs/
├── app/        # Engine lifecycle, cache, context, providers
├── error/      # ERROR + CRITICAL from every category
├── api/        # HTTP request/response
├── routing/    # Provider selection, fallback, circuit breaker transitions
└── billing/    # Ledger debits/credits, recharges, usage flushes

File naming: {category}_YYYY-MM-DD.log
"""

import logging
import os
from datetime import datetime, timedelta
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Dict

from lingobridge.core.logging.formatters import FileFormatter, JsonFormatter


CATEGORIES = ["app", "error", "api", "routing", "billing"]

# Checked in order; first keyword hit wins
CATEGORY_KEYWORDS = {
    "billing": ("billing", "ledger", "credit", "usage", "payment"),
    "routing": ("routing", "circuit", "health_monitor"),
    "api": ("api", "routers", "endpoint", "uvicorn", "fastapi", "http"),
}


def get_log_dir() -> Path:
    return Path(os.environ.get("LOG_DIR", "logs"))


def ensure_log_directories() -> None:
    base_dir = get_log_dir()
    for category in CATEGORIES:
        (base_dir / category).mkdir(parents=True, exist_ok=True)


def detect_category(logger_name: str) -> str:
    """Map a logger name to its category file, defaulting to app."""
    name_lower = logger_name.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if name_lower == category or name_lower.startswith(category + "."):
            return category
        if any(kw in name_lower for kw in keywords):
            return category
    return "app"


def cleanup_old_logs(retention_days: int = 15) -> int:
    """Remove {category}_YYYY-MM-DD.log files older than retention_days."""
    base_dir = get_log_dir()
    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for category in CATEGORIES:
        category_dir = base_dir / category
        if not category_dir.exists():
            continue
        for log_file in category_dir.glob("*.log"):
            date_str = log_file.stem.rsplit("_", 1)[-1]
            try:
                file_date = datetime.strptime(date_str, "%Y-%m-%d")
            except ValueError:
                continue
            if file_date < cutoff_date:
                log_file.unlink()
                deleted_count += 1

    return deleted_count


class DailyRotatingFileHandler(TimedRotatingFileHandler):
    """Rotates at midnight into {category}_YYYY-MM-DD.log."""

    def __init__(self, category: str, retention_days: int = 15, use_json: bool = False):
        self.category = category
        self.retention_days = retention_days

        super().__init__(
            filename=str(self._current_filename()),
            when="midnight",
            interval=1,
            backupCount=retention_days,
            encoding="utf-8",
        )
        self.setFormatter(JsonFormatter() if use_json else FileFormatter())

    def _current_filename(self) -> Path:
        category_dir = get_log_dir() / self.category
        category_dir.mkdir(parents=True, exist_ok=True)
        return category_dir / f"{self.category}_{datetime.now():%Y-%m-%d}.log"

    def doRollover(self):
        if self.stream:
            self.stream.close()
            self.stream = None
        self.baseFilename = str(self._current_filename())
        self.stream = self._open()
        cleanup_old_logs(self.retention_days)


class ErrorMirrorFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def create_error_handler(use_json: bool = False, retention_days: int = 15) -> DailyRotatingFileHandler:
    handler = DailyRotatingFileHandler(category="error", retention_days=retention_days, use_json=use_json)
    handler.setLevel(logging.ERROR)
    handler.addFilter(ErrorMirrorFilter())
    return handler


class CategoryRoutingHandler(logging.Handler):
    """
    Root-level handler that routes every record to its category file.

    Modules keep using logging.getLogger(__name__) / LoggerMixin and land in
    the right file based on their dotted name.
    """

    def __init__(self, use_json: bool = False, retention_days: int = 15, level: int = logging.DEBUG):
        super().__init__(level)
        self.use_json = use_json
        self.retention_days = retention_days
        self._category_handlers: Dict[str, DailyRotatingFileHandler] = {}

    def _get_category_handler(self, category: str) -> DailyRotatingFileHandler:
        if category not in self._category_handlers:
            self._category_handlers[category] = DailyRotatingFileHandler(
                category=category,
                retention_days=self.retention_days,
                use_json=self.use_json,
            )
        return self._category_handlers[category]

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._get_category_handler(detect_category(record.name)).emit(record)
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        for handler in self._category_handlers.values():
            handler.close()
        self._category_handlers.clear()
        super().close()
