from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from lingobridge.database.models.base import Base


class CachedTranslation(Base):
    """
    Durable copy of the translation cache, used to warm the fast store at
    startup and to serve stale results in degraded mode.
    """
    __tablename__ = "translation_cache"

    cache_key = Column(String(64), primary_key=True)
    source_lang = Column(String(16), nullable=False)
    target_lang = Column(String(16), nullable=False, index=True)
    provider = Column(String(32), nullable=True)
    # Serialized TranslationResponse
    response_json = Column(Text, nullable=False)

    hits = Column(Integer, nullable=False, default=0, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_accessed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
