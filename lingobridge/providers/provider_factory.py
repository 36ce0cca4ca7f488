from enum import Enum
from typing import Dict, List, Optional, Type

from lingobridge.providers.base_provider import TranslationProvider
from lingobridge.providers.claude_provider import ClaudeProvider
from lingobridge.providers.deepl_provider import DeepLProvider
from lingobridge.providers.openai_provider import OpenAIProvider
from lingobridge.utils.config import Settings
from lingobridge.utils.logger.custom_logging import LoggerMixin


class ProviderType(str, Enum):
    """
    Supported translation backends. Declaration order is the registration
    order, which the router uses to break score ties.
    """
    DEEPL = "deepl"
    OPENAI = "openai"
    CLAUDE = "claude"

    @classmethod
    def list(cls):
        return list(map(lambda c: c.value, cls))


PROVIDER_CLASSES: Dict[ProviderType, Type[TranslationProvider]] = {
    ProviderType.DEEPL: DeepLProvider,
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.CLAUDE: ClaudeProvider,
}


class ProviderFactory(LoggerMixin):
    """
    Builds the provider registry from configuration.

    A provider without an API key is simply left out; the router works with
    whatever subset is configured, including none.
    """

    @staticmethod
    def create_provider(
        provider_type: str,
        api_key: str,
        model_name: Optional[str] = None,
        **kwargs
    ) -> TranslationProvider:
        """
        Raises:
            ValueError: unknown provider type or missing API key
        """
        try:
            provider_cls = PROVIDER_CLASSES[ProviderType(provider_type.lower())]
        except ValueError:
            raise ValueError(
                f"Unsupported provider type: {provider_type}. "
                f"Supported providers: {ProviderType.list()}"
            )
        if model_name:
            kwargs["model_name"] = model_name
        return provider_cls(api_key=api_key, **kwargs)

    @staticmethod
    def _get_api_key(provider_type: ProviderType, settings: Settings) -> str:
        return {
            ProviderType.DEEPL: settings.DEEPL_API_KEY,
            ProviderType.OPENAI: settings.OPENAI_API_KEY,
            ProviderType.CLAUDE: settings.ANTHROPIC_API_KEY,
        }[provider_type]

    @staticmethod
    def _get_model_name(provider_type: ProviderType, settings: Settings) -> Optional[str]:
        return {
            ProviderType.OPENAI: settings.OPENAI_MODEL,
            ProviderType.CLAUDE: settings.ANTHROPIC_MODEL,
        }.get(provider_type)

    @classmethod
    def get_available_providers(cls, settings: Settings) -> List[str]:
        return [p.value for p in ProviderType if cls._get_api_key(p, settings)]

    @classmethod
    def create_from_settings(cls, settings: Settings) -> List[TranslationProvider]:
        logger = LoggerMixin().logger
        timeout = settings.CB_CALL_TIMEOUT_MS / 1000

        providers: List[TranslationProvider] = []
        for provider_type in ProviderType:
            api_key = cls._get_api_key(provider_type, settings)
            if not api_key:
                logger.info(f"[FACTORY] {provider_type.value} disabled (no API key)")
                continue
            providers.append(
                cls.create_provider(
                    provider_type,
                    api_key=api_key,
                    model_name=cls._get_model_name(provider_type, settings),
                    timeout=timeout,
                    degraded_latency_ms=settings.HEALTH_DEGRADED_LATENCY_MS,
                )
            )
            logger.debug(f"[FACTORY] Created {provider_type.value} provider")

        if not providers:
            logger.warning("[FACTORY] No translation providers configured; every request will be degraded")
        return providers
