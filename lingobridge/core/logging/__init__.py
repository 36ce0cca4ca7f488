"""
Engine Logging
==============

Category-based logging for the translation engine:
- One daily-rotated file per category (app, error, api, routing, billing)
- ERROR/CRITICAL mirrored into error/ for quick triage
- Request ID tracing via contextvars so a translation can be followed
  from the HTTP layer through routing and billing
- JSON lines in production, colored text in development

Usage:
------
```python
from lingobridge.core.logging import setup_logging, get_logger, RequestContext

setup_logging()

logger = get_logger("routing")   # logs/routing/
logger = get_logger("billing")   # logs/billing/
logger = get_logger()            # logs/app/

async with RequestContext(request_id="req-42"):
    logger.info("Selected provider deepl")
```

Set LOG_FILES=false to keep everything on the console (tests do this).
"""

from lingobridge.core.logging.config import setup_logging, get_logger, shutdown_logging
from lingobridge.core.logging.context import (
    RequestContext,
    get_request_id,
    set_request_id,
    clear_request_id,
)
from lingobridge.core.logging.middleware import LoggingMiddleware

__all__ = [
    "setup_logging",
    "get_logger",
    "shutdown_logging",
    "RequestContext",
    "get_request_id",
    "set_request_id",
    "clear_request_id",
    "LoggingMiddleware",
]
