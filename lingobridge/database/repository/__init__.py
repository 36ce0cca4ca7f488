from lingobridge.database.repository.credits_repository import CreditsRepository
from lingobridge.database.repository.translation_cache_repository import TranslationCacheRepository
from lingobridge.database.repository.usage_repository import UsageRepository

__all__ = ["CreditsRepository", "UsageRepository", "TranslationCacheRepository"]
