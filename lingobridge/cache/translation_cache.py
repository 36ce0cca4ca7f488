"""
Two-tier translation cache.

The fast tier (Redis, or an in-process LRU) answers repeat requests; the
durable tier (the translation_cache table) survives restarts, feeds warm-up
and serves stale results when every provider is down. Cache failures are
never fatal: an unreachable tier is logged and treated as a miss.
"""

import asyncio
import hashlib
import time
import unicodedata
from datetime import datetime, timedelta
from typing import Callable, Optional, Set

from lingobridge.cache.stores import CacheStore
from lingobridge.database.repository.translation_cache_repository import TranslationCacheRepository
from lingobridge.database.session_manager import SessionManager
from lingobridge.translation.models import TranslationResponse
from lingobridge.utils.logger.custom_logging import LoggerMixin


_KEY_SEPARATOR = "\x1f"


def normalize_text(text: str) -> str:
    """NFC, whitespace runs collapsed, trimmed. Case is preserved."""
    return " ".join(unicodedata.normalize("NFC", text).split())


def make_cache_key(text: str, source_lang: str, target_lang: str, context: Optional[str] = None) -> str:
    """
    Deterministic key over the normalized text, the language pair and the
    request context. Requests that differ only in whitespace share a key.
    """
    context_digest = hashlib.sha256(normalize_text(context).encode("utf-8")).hexdigest() if context else ""
    material = _KEY_SEPARATOR.join(
        (normalize_text(text), source_lang.lower(), target_lang.lower(), context_digest)
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class TranslationCache(LoggerMixin):
    """
    Args:
        store: Fast tier
        session_manager: Durable tier; None keeps the cache in the fast tier only
        ttl: Entry lifetime in seconds, for both tiers
        utcnow: Wall clock for durable expiry, injectable for tests
    """

    def __init__(
        self,
        store: CacheStore,
        session_manager: Optional[SessionManager] = None,
        ttl: int = 60 * 60 * 24,
        utcnow: Callable[[], datetime] = datetime.utcnow,
    ):
        super().__init__()
        self.store = store
        self.session_manager = session_manager
        self.ttl = ttl
        self._utcnow = utcnow
        self._pending: Set[asyncio.Task] = set()
        self.hits = 0
        self.misses = 0

    # ========================================================================
    # LOOKUP
    # ========================================================================

    async def get(self, key: str) -> Optional[TranslationResponse]:
        started = time.perf_counter()
        response = await self._get_fast(key)
        if response is None and self.session_manager is not None:
            response = await self._get_durable(key, include_expired=False)
            if response is not None:
                await self._set_fast(key, response)

        if response is None:
            self.misses += 1
            return None

        self.hits += 1
        self._record_hit_nowait(key)
        self.logger.debug(f"[CACHE] Hit {key[:12]} in {(time.perf_counter() - started) * 1000:.1f}ms")
        return self._as_hit(response)

    async def get_stale(self, key: str) -> Optional[TranslationResponse]:
        """Durable entry regardless of expiry, for degraded responses."""
        response = await self._get_fast(key)
        if response is None and self.session_manager is not None:
            response = await self._get_durable(key, include_expired=True)
        return self._as_hit(response) if response is not None else None

    async def _get_fast(self, key: str) -> Optional[TranslationResponse]:
        try:
            raw = await self.store.get(key)
        except Exception as e:
            self.logger.warning(f"[CACHE] Fast tier read failed, treating as miss: {e}")
            return None
        if raw is None:
            return None
        try:
            return TranslationResponse.model_validate_json(raw)
        except ValueError as e:
            self.logger.warning(f"[CACHE] Dropping unreadable entry {key[:12]}: {e}")
            await self._delete_fast(key)
            return None

    async def _get_durable(self, key: str, include_expired: bool) -> Optional[TranslationResponse]:
        def _load(session_manager: SessionManager) -> Optional[str]:
            with session_manager.create_session() as session:
                entry = TranslationCacheRepository(session).get(key)
                if entry is None:
                    return None
                if not include_expired and entry.expires_at <= self._utcnow():
                    return None
                return entry.response_json

        try:
            raw = await self.session_manager.run(_load, self.session_manager)
        except Exception as e:
            self.logger.warning(f"[CACHE] Durable tier read failed, treating as miss: {e}")
            return None
        if raw is None:
            return None
        try:
            return TranslationResponse.model_validate_json(raw)
        except ValueError as e:
            self.logger.warning(f"[CACHE] Unreadable durable entry {key[:12]}: {e}")
            return None

    # ========================================================================
    # WRITE
    # ========================================================================

    async def put(self, key: str, response: TranslationResponse) -> None:
        """Store in both tiers. Failures are logged, never raised."""
        await self._set_fast(key, response)
        if self.session_manager is None:
            return

        payload = self._serialize(response)
        expires_at = self._utcnow() + timedelta(seconds=self.ttl)

        def _store(session_manager: SessionManager) -> None:
            with session_manager.create_session() as session:
                TranslationCacheRepository(session).upsert(
                    cache_key=key,
                    source_lang=response.source_lang,
                    target_lang=response.target_lang,
                    provider=response.provider,
                    response_json=payload,
                    expires_at=expires_at,
                    now=self._utcnow(),
                )

        try:
            await self.session_manager.run(_store, self.session_manager)
        except Exception as e:
            self.logger.warning(f"[CACHE] Durable tier write failed for {key[:12]}: {e}")

    async def _set_fast(self, key: str, response: TranslationResponse) -> None:
        try:
            await self.store.set(key, self._serialize(response), self.ttl)
        except Exception as e:
            self.logger.warning(f"[CACHE] Fast tier write failed for {key[:12]}: {e}")

    async def _delete_fast(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception as e:
            self.logger.warning(f"[CACHE] Fast tier delete failed for {key[:12]}: {e}")

    @staticmethod
    def _serialize(response: TranslationResponse) -> str:
        return response.model_dump_json()

    @staticmethod
    def _as_hit(response: TranslationResponse) -> TranslationResponse:
        return response.model_copy(update={"metadata": response.metadata.model_copy(update={"cache_hit": True})})

    def _record_hit_nowait(self, key: str) -> None:
        """Bump the durable hit counter in the background."""
        if self.session_manager is None:
            return

        def _increment(session_manager: SessionManager) -> None:
            with session_manager.create_session() as session:
                TranslationCacheRepository(session).increment_hits(key, now=self._utcnow())

        task = asyncio.create_task(self.session_manager.run(_increment, self.session_manager))
        self._pending.add(task)
        task.add_done_callback(self._on_hit_recorded)

    def _on_hit_recorded(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.warning(f"[CACHE] Failed to record hit: {task.exception()}")

    async def drain(self) -> None:
        """Wait for background hit updates."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    async def warm_up(self, min_hits: int = 5, limit: int = 1000) -> int:
        """Copy popular unexpired durable entries into the fast tier."""
        if self.session_manager is None:
            return 0

        def _load(session_manager: SessionManager):
            with session_manager.create_session() as session:
                rows = TranslationCacheRepository(session).get_popular(min_hits, limit, now=self._utcnow())
                return [(row.cache_key, row.response_json) for row in rows]

        try:
            entries = await self.session_manager.run(_load, self.session_manager)
        except Exception as e:
            self.logger.error(f"[CACHE] Warm-up failed: {e}")
            return 0

        loaded = 0
        for key, payload in entries:
            try:
                await self.store.set(key, payload, self.ttl)
                loaded += 1
            except Exception as e:
                self.logger.warning(f"[CACHE] Warm-up stopped, fast tier unavailable: {e}")
                break
        self.logger.info(f"[CACHE] Warmed {loaded} entries")
        return loaded

    async def cleanup_expired(self) -> int:
        if self.session_manager is None:
            return 0

        def _cleanup(session_manager: SessionManager) -> int:
            with session_manager.create_session() as session:
                return TranslationCacheRepository(session).delete_stale(now=self._utcnow())

        removed = await self.session_manager.run(_cleanup, self.session_manager)
        if removed:
            self.logger.info(f"[CACHE] Removed {removed} stale durable entries")
        return removed

    def stats(self) -> dict:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 4) if total else 0.0,
        }

    async def close(self) -> None:
        await self.drain()
        await self.store.close()
