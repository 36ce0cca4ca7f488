from lingobridge.providers.base_provider import HttpTranslationProvider, ProviderHealth, TranslationProvider
from lingobridge.providers.claude_provider import ClaudeProvider
from lingobridge.providers.deepl_provider import DeepLProvider
from lingobridge.providers.health_monitor import HealthMonitor, ProviderHealthStore
from lingobridge.providers.openai_provider import OpenAIProvider
from lingobridge.providers.provider_factory import ProviderFactory, ProviderType

__all__ = [
    "TranslationProvider",
    "HttpTranslationProvider",
    "ProviderHealth",
    "OpenAIProvider",
    "ClaudeProvider",
    "DeepLProvider",
    "ProviderFactory",
    "ProviderType",
    "HealthMonitor",
    "ProviderHealthStore",
]
