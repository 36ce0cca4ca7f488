"""
Translation Cache Repository - durable tier of the translation cache
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.orm import Session

from lingobridge.database.models.translation_cache import CachedTranslation
from lingobridge.utils.logger.custom_logging import LoggerMixin


class TranslationCacheRepository(LoggerMixin):

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def get(self, cache_key: str) -> Optional[CachedTranslation]:
        return self.session.get(CachedTranslation, cache_key)

    def upsert(
        self,
        cache_key: str,
        source_lang: str,
        target_lang: str,
        provider: Optional[str],
        response_json: str,
        expires_at: datetime,
        now: Optional[datetime] = None,
    ) -> CachedTranslation:
        now = now or datetime.utcnow()
        entry = self.session.get(CachedTranslation, cache_key)
        if entry is None:
            entry = CachedTranslation(cache_key=cache_key, hits=0, created_at=now)
            self.session.add(entry)
        entry.source_lang = source_lang
        entry.target_lang = target_lang
        entry.provider = provider
        entry.response_json = response_json
        entry.last_accessed_at = now
        entry.expires_at = expires_at
        self.session.flush()
        return entry

    def increment_hits(self, cache_key: str, now: Optional[datetime] = None) -> None:
        self.session.execute(
            update(CachedTranslation)
            .where(CachedTranslation.cache_key == cache_key)
            .values(hits=CachedTranslation.hits + 1, last_accessed_at=now or datetime.utcnow())
        )

    def get_popular(self, min_hits: int, limit: int, now: Optional[datetime] = None) -> List[CachedTranslation]:
        """Unexpired entries with at least `min_hits` hits, most used first."""
        now = now or datetime.utcnow()
        stmt = (
            select(CachedTranslation)
            .where(CachedTranslation.hits >= min_hits, CachedTranslation.expires_at > now)
            .order_by(CachedTranslation.hits.desc(), CachedTranslation.cache_key.asc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def delete_stale(self, now: Optional[datetime] = None) -> int:
        """
        Remove entries unused for 30 days, and rarely used ones (fewer than
        5 hits) older than 7 days.
        """
        now = now or datetime.utcnow()
        result = self.session.execute(
            delete(CachedTranslation).where(
                or_(
                    CachedTranslation.last_accessed_at < now - timedelta(days=30),
                    and_(
                        CachedTranslation.hits < 5,
                        CachedTranslation.created_at < now - timedelta(days=7),
                    ),
                )
            )
        )
        return result.rowcount or 0
