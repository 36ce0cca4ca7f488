"""
Request logging middleware.

Every request gets a request id (taken from X-Request-ID when the client
sends one) that is injected into the log context and echoed back in the
response headers.
"""

import time
from typing import Callable, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from lingobridge.core.logging.config import get_logger
from lingobridge.core.logging.context import clear_request_id, new_request_id, set_request_id


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, exclude_paths: Optional[List[str]] = None, slow_request_threshold_ms: float = 2000):
        super().__init__(app)
        self.exclude_paths = exclude_paths or ["/api/v1/ping", "/favicon.ico"]
        self.slow_threshold = slow_request_threshold_ms
        self.logger = get_logger("api.middleware", category="api")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or new_request_id()
        set_request_id(request_id)

        start_time = time.perf_counter()
        client_host = request.client.host if request.client else "unknown"
        method = request.method
        path = request.url.path

        self.logger.info(f"→ {method} {path} | client={client_host}")

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000

            status_mark = "✓" if response.status_code < 400 else "✗"
            message = (
                f"{status_mark} {method} {path} | "
                f"status={response.status_code} | duration={duration_ms:.1f}ms"
            )
            if duration_ms > self.slow_threshold:
                self.logger.warning(f"SLOW {message}")
            else:
                self.logger.info(message)

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.logger.error(
                f"✗ {method} {path} | error={type(e).__name__}: {str(e)[:100]} | "
                f"duration={duration_ms:.1f}ms",
                exc_info=True,
            )
            raise

        finally:
            clear_request_id()
