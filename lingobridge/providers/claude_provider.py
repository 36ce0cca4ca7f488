from decimal import Decimal
from typing import Any, Dict, List

from lingobridge.providers.base_provider import HttpTranslationProvider
from lingobridge.providers.prompts import (
    LANGUAGE_DETECTION_PROMPT,
    build_detection_user_prompt,
    build_translation_system_prompt,
    parse_detected_code,
)
from lingobridge.translation.models import LanguageDetectionResult, TranslationRequest, TranslationResponse
from lingobridge.utils.constants import ErrorKind, LanguageFamily, TextComplexity
from lingobridge.utils.exceptions import ProviderError


ANTHROPIC_API_VERSION = "2023-06-01"


class ClaudeProvider(HttpTranslationProvider):
    """
    Translation through the Anthropic Messages API.

    Best fit for long, technical or context-heavy messages.
    """

    provider_id = "claude"
    base_url = "https://api.anthropic.com/v1"
    supported_languages = frozenset({
        "en", "es", "fr", "de", "it", "pt", "ru", "zh", "ja", "ko",
        "ar", "hi", "nl", "pl", "tr", "vi", "th", "id", "ms", "lt",
    })
    cost_per_unit = Decimal("0.00003")
    language_affinity = {
        LanguageFamily.EUROPEAN: 15,
        LanguageFamily.ASIAN: 15,
        LanguageFamily.OTHER: 15,
    }
    complexity_fit = {
        TextComplexity.SIMPLE: 5,
        TextComplexity.MEDIUM: 15,
        TextComplexity.COMPLEX: 25,
    }
    quality_score = 0.95
    confidence = 0.95
    max_text_length = 200_000
    max_concurrent = 50

    def __init__(self, api_key: str, model_name: str = "claude-3-5-haiku-latest", timeout: float = 30.0, **kwargs):
        super().__init__(api_key, model_name, timeout=timeout, **kwargs)

    def _default_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }

    async def _create_message(self, system: str, user_content: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        payload = {
            "model": self.model_name,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "messages": [{"role": "user", "content": user_content}],
        }
        response = await self._request("POST", "/messages", json=payload)
        return response.json()

    @staticmethod
    def _text_of(message: Dict[str, Any]) -> str:
        blocks: List[Dict[str, Any]] = message.get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type") == "text").strip()

    async def translate(self, request: TranslationRequest) -> TranslationResponse:
        system = build_translation_system_prompt(request.source_lang, request.target_lang, request.context)
        max_tokens = min(len(request.text) * 3 + 50, 4000)

        self.logger.debug(f"[Claude] Translating {len(request.text)} chars with {self.model_name}")
        message = await self._create_message(system, request.text, max_tokens=max_tokens, temperature=0.3)

        translated = self._text_of(message)
        if not translated:
            raise ProviderError(self.provider_id, "empty message content", kind=ErrorKind.TRANSIENT)

        return self._build_response(request, translated, model=message.get("model") or self.model_name)

    async def detect_language(self, text: str) -> LanguageDetectionResult:
        message = await self._create_message(
            LANGUAGE_DETECTION_PROMPT,
            build_detection_user_prompt(text),
            max_tokens=10,
            temperature=0.0,
        )
        raw = self._text_of(message)
        code = parse_detected_code(raw)
        if code is None:
            raise ProviderError(self.provider_id, f"unparseable language code: {raw!r}", kind=ErrorKind.TRANSIENT)
        return LanguageDetectionResult(language=code, confidence=0.9, source=self.provider_id)

    async def _probe(self) -> None:
        await self._request("GET", "/models", params={"limit": 1})
