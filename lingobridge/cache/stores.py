import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Optional, Tuple

import redis.asyncio as aioredis
from redis.asyncio.connection import BlockingConnectionPool

from lingobridge.utils.logger.custom_logging import LoggerMixin


# Timeout settings
REDIS_CONNECT_TIMEOUT = 5   # seconds
REDIS_SOCKET_TIMEOUT = 5    # seconds
REDIS_CLOSE_TIMEOUT = 8     # seconds - for graceful close

# Connection pool settings
REDIS_MAX_CONNECTIONS = 50
REDIS_HEALTH_CHECK_INTERVAL = 30  # seconds
REDIS_POOL_TIMEOUT = 5            # seconds - time to wait for available connection

REDIS_KEY_PREFIX = "lingobridge:translation:"


class CacheStore(ABC):
    """Fast key/value tier of the translation cache. Values are serialized strings."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def close(self) -> None:
        pass


class MemoryCacheStore(CacheStore):
    """
    In-process LRU with per-entry expiry. Used in tests and when no Redis
    is configured.
    """

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()

    async def get(self, key: str) -> Optional[str]:
        item = self._entries.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore(CacheStore, LoggerMixin):
    """
    Redis tier using a BlockingConnectionPool: under load callers wait for a
    free connection instead of failing with ConnectionError.
    """

    def __init__(self, redis_url: str, key_prefix: str = REDIS_KEY_PREFIX):
        LoggerMixin.__init__(self)
        self.key_prefix = key_prefix
        pool = BlockingConnectionPool.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=REDIS_CONNECT_TIMEOUT,
            socket_timeout=REDIS_SOCKET_TIMEOUT,
            max_connections=REDIS_MAX_CONNECTIONS,
            timeout=REDIS_POOL_TIMEOUT,
            retry_on_timeout=True,
            health_check_interval=REDIS_HEALTH_CHECK_INTERVAL,
        )
        self.client = aioredis.Redis(connection_pool=pool)
        self.logger.info(f"Redis BlockingConnectionPool created (max={REDIS_MAX_CONNECTIONS})")

    @staticmethod
    def make_url(host: str, port: int, db: int, password: str = "") -> str:
        if password:
            return f"redis://:{password}@{host}:{port}/{db}"
        return f"redis://{host}:{port}/{db}"

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(self.key_prefix + key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self.client.set(self.key_prefix + key, value, ex=ttl)

    async def delete(self, key: str) -> None:
        await self.client.delete(self.key_prefix + key)

    async def close(self) -> None:
        try:
            await asyncio.wait_for(self.client.aclose(), timeout=REDIS_CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            self.logger.warning(f"Timed out closing Redis connection after {REDIS_CLOSE_TIMEOUT}s")
