from lingobridge.cache.stores import CacheStore, MemoryCacheStore, RedisCacheStore
from lingobridge.cache.translation_cache import TranslationCache, make_cache_key, normalize_text

__all__ = [
    "CacheStore",
    "MemoryCacheStore",
    "RedisCacheStore",
    "TranslationCache",
    "make_cache_key",
    "normalize_text",
]
