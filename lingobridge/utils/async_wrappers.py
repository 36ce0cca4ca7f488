"""
Async wrappers for synchronous blocking operations.

SQLAlchemy sessions are synchronous; repositories push their work through
run_in_thread so ledger writes and cache persistence never block the event
loop.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Callable, Optional, TypeVar

from lingobridge.utils.logger.custom_logging import LoggerMixin

T = TypeVar('T')

# =============================================================================
# THREAD POOL EXECUTORS
# =============================================================================

_BLOCKING_IO_EXECUTOR = ThreadPoolExecutor(
    max_workers=10,
    thread_name_prefix="blocking_io_"
)

logger = LoggerMixin().logger


def create_db_executor(max_workers: int) -> ThreadPoolExecutor:
    """Dedicated pool for database sessions (1 worker for SQLite)."""
    return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="db_")


# =============================================================================
# ASYNC WRAPPER FUNCTIONS
# =============================================================================

async def run_in_thread(
    func: Callable[..., T],
    *args,
    executor: Optional[ThreadPoolExecutor] = None,
    **kwargs
) -> T:
    """
    Run a blocking function in a thread pool to avoid blocking the event loop.

    Usage:
        balance = await run_in_thread(repository.get_balance_sync, "ws-1")

    Args:
        func: The blocking function to run
        *args: Positional arguments for the function
        executor: Optional custom executor (defaults to blocking I/O pool)
        **kwargs: Keyword arguments for the function
    """
    if executor is None:
        executor = _BLOCKING_IO_EXECUTOR

    loop = asyncio.get_running_loop()
    func_with_args = partial(func, *args, **kwargs)

    try:
        return await loop.run_in_executor(executor, func_with_args)
    except Exception as e:
        logger.debug(f"[ASYNC_WRAPPER] {getattr(func, '__name__', func)} raised {type(e).__name__}: {e}")
        raise

