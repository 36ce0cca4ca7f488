from enum import Enum


class ExtendedEnum(Enum):
    @classmethod
    def list(cls):
        return list(map(lambda c: c.value, cls))


class QualityTier(str, ExtendedEnum):
    ECONOMY = "economy"
    BALANCED = "balanced"
    PREMIUM = "premium"


class HealthStatus(str, ExtendedEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class TextComplexity(str, ExtendedEnum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class LanguageFamily(str, ExtendedEnum):
    EUROPEAN = "european"
    ASIAN = "asian"
    OTHER = "other"


class TransactionType(str, ExtendedEnum):
    DEBIT = "debit"
    CREDIT = "credit"


class ErrorKind(str, ExtendedEnum):
    TRANSIENT = "transient"
    FATAL = "fatal"


AUTO_LANGUAGE = "auto"
UNKNOWN_LANGUAGE = "und"
MAX_TEXT_LENGTH = 10_000

EUROPEAN_LANGUAGES = frozenset({
    "en", "de", "fr", "es", "it", "pt", "nl", "pl", "ru", "sv", "da", "no", "nb", "fi",
    "bg", "cs", "el", "et", "hu", "lt", "lv", "ro", "sk", "sl", "uk",
})

ASIAN_LANGUAGES = frozenset({
    "zh", "ja", "ko", "th", "vi", "id", "ms", "hi", "bn", "ta",
})
