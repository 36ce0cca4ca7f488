"""
Logging Configuration
=====================

Environment Variables:
---------------------
- LOG_LEVEL: Minimum console level (default INFO)
- LOG_FORMAT: "json" or "text" (default text)
- LOG_DIR: Base directory for category files (default ./logs)
- LOG_RETENTION_DAYS: Days to keep files (default 15)
- LOG_CONSOLE: "false" disables console output
- LOG_FILES: "false" disables all file handlers
- ENV_STATE: "prod" forces JSON output
"""

import logging
import os
import sys
from typing import Dict, Optional

from lingobridge.core.logging.formatters import DevFormatter, JsonFormatter
from lingobridge.core.logging.handlers import (
    CategoryRoutingHandler,
    cleanup_old_logs,
    create_error_handler,
    ensure_log_directories,
)


_configured_loggers: Dict[str, logging.Logger] = {}
_file_handlers: list = []
_logging_initialized = False

NOISY_LOGGERS = [
    "httpx",
    "httpcore",
    "openai",
    "asyncio",
    "redis",
    "sqlalchemy.engine",
    "urllib3",
]


def _env_flag(name: str, default: bool) -> bool:
    return os.environ.get(name, "true" if default else "false").strip().lower() in {"1", "true", "yes"}


def get_config() -> dict:
    return {
        "level": os.environ.get("LOG_LEVEL", "INFO").upper(),
        "format": os.environ.get("LOG_FORMAT", "text").lower(),
        "log_dir": os.environ.get("LOG_DIR", "logs"),
        "retention_days": int(os.environ.get("LOG_RETENTION_DAYS", "15")),
        "console_enabled": _env_flag("LOG_CONSOLE", True),
        "files_enabled": _env_flag("LOG_FILES", True),
        "is_production": os.environ.get("ENV_STATE", "dev").lower() in {"prod", "production"},
    }


def setup_logging(
    level: Optional[str] = None,
    use_json: Optional[bool] = None,
    console: Optional[bool] = None,
    files: Optional[bool] = None,
) -> None:
    """
    Initialize the logging system. Safe to call more than once.

    Args:
        level: Override LOG_LEVEL
        use_json: Override LOG_FORMAT
        console: Override LOG_CONSOLE
        files: Override LOG_FILES
    """
    global _logging_initialized

    if _logging_initialized:
        return

    config = get_config()
    if level:
        config["level"] = level.upper()
    if use_json is not None:
        config["format"] = "json" if use_json else "text"
    if console is not None:
        config["console_enabled"] = console
    if files is not None:
        config["files_enabled"] = files

    log_level = getattr(logging, config["level"], logging.INFO)
    use_json_format = config["format"] == "json" or config["is_production"]

    root_logger = logging.getLogger()
    # Handlers filter; the root lets everything through
    root_logger.setLevel(logging.DEBUG)

    if config["console_enabled"]:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(JsonFormatter() if use_json_format else DevFormatter(use_colors=True))
        root_logger.addHandler(console_handler)
        _file_handlers.append(console_handler)

    if config["files_enabled"]:
        ensure_log_directories()
        routing_handler = CategoryRoutingHandler(
            use_json=use_json_format,
            retention_days=config["retention_days"],
            level=logging.DEBUG,
        )
        error_handler = create_error_handler(
            use_json=use_json_format,
            retention_days=config["retention_days"],
        )
        root_logger.addHandler(routing_handler)
        root_logger.addHandler(error_handler)
        _file_handlers.extend([routing_handler, error_handler])
        cleanup_old_logs(config["retention_days"])

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    _logging_initialized = True

    root_logger.info(
        f"Logging initialized: level={config['level']}, "
        f"format={'json' if use_json_format else 'text'}, "
        f"files={'on' if config['files_enabled'] else 'off'}"
    )


def get_logger(name: Optional[str] = None, category: Optional[str] = None) -> logging.Logger:
    """
    Get a logger, prefixing its name with `category` so the routing
    handler files it correctly.

    Examples:
        get_logger("routing")                      -> logs/routing/
        get_logger("ledger", category="billing")   -> logs/billing/
        get_logger()                               -> logs/app/
    """
    if not _logging_initialized:
        setup_logging()

    name = name or "app"
    if category and not name.lower().startswith(category):
        name = f"{category}.{name}"

    if name not in _configured_loggers:
        _configured_loggers[name] = logging.getLogger(name)
    return _configured_loggers[name]


def shutdown_logging() -> None:
    """Flush and detach handlers installed by setup_logging."""
    global _logging_initialized

    root_logger = logging.getLogger()
    for handler in _file_handlers:
        root_logger.removeHandler(handler)
        handler.flush()
        handler.close()
    _file_handlers.clear()
    _configured_loggers.clear()
    _logging_initialized = False
