"""
Request context for log tracing.

The request id lives in a ContextVar so it follows a translation across
awaits, including the fire-and-forget tasks spawned for cache hit counting
and usage tracking (asyncio copies the context when a task is created).
"""

import uuid
from contextvars import ContextVar
from typing import Optional

_request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return _request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set request ID in context.

    Args:
        request_id: Custom request ID. If None, generates a new one.

    Returns:
        The request ID that was set.
    """
    if request_id is None:
        request_id = new_request_id()
    _request_id_var.set(request_id)
    return request_id


def clear_request_id() -> None:
    _request_id_var.set(None)


class RequestContext:
    """
    Scope a request id to a block, restoring the previous one on exit.

    Usage:
        async with RequestContext(request_id=request.request_id):
            await engine.translate(request)
    """

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id or new_request_id()
        self._token = None

    def __enter__(self):
        self._token = _request_id_var.set(self.request_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _request_id_var.reset(self._token)
        return False

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
