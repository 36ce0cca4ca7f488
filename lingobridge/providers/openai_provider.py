from decimal import Decimal
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI

from lingobridge.providers.base_provider import TranslationProvider
from lingobridge.providers.prompts import (
    LANGUAGE_DETECTION_PROMPT,
    build_detection_user_prompt,
    build_translation_system_prompt,
    parse_detected_code,
)
from lingobridge.translation.models import LanguageDetectionResult, TranslationRequest, TranslationResponse
from lingobridge.utils.constants import ErrorKind, LanguageFamily, TextComplexity
from lingobridge.utils.exceptions import ProviderError, ProviderTimeoutError


# ============================================================================
# MODEL CAPABILITY CONSTANTS
# ============================================================================

# Models that take max_completion_tokens instead of max_tokens
NEW_API_MODELS = ("o1", "o3", "o4", "gpt-5")

# Models that only accept the default temperature
MODELS_WITHOUT_TEMPERATURE = ("o1", "o3", "o4", "gpt-5-nano")


def completion_params(model_name: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
    """Chat completion parameters adjusted to what `model_name` accepts."""
    model_lower = model_name.lower()
    params: Dict[str, Any] = {}

    if model_lower.startswith(NEW_API_MODELS):
        params["max_completion_tokens"] = max_tokens
    else:
        params["max_tokens"] = max_tokens

    if not model_lower.startswith(MODELS_WITHOUT_TEMPERATURE):
        params["temperature"] = temperature

    return params


# ============================================================================
# OPENAI PROVIDER CLASS
# ============================================================================

class OpenAIProvider(TranslationProvider):
    """
    Translation through OpenAI chat completions using the official SDK.

    Strong on Asian languages and general-purpose text; no fixed language
    list, the model accepts anything.
    """

    provider_id = "openai"
    supported_languages = frozenset()
    cost_per_unit = Decimal("0.00002")
    language_affinity = {
        LanguageFamily.EUROPEAN: 10,
        LanguageFamily.ASIAN: 20,
        LanguageFamily.OTHER: 15,
    }
    complexity_fit = {
        TextComplexity.SIMPLE: 20,
        TextComplexity.MEDIUM: 20,
        TextComplexity.COMPLEX: 15,
    }
    quality_score = 0.92
    confidence = 0.95
    max_text_length = 30_000
    max_concurrent = 100

    def __init__(self, api_key: str, model_name: str = "gpt-4o-mini", timeout: float = 30.0, **kwargs):
        super().__init__(api_key, model_name, **kwargs)
        self.timeout = timeout
        self.client: Optional[AsyncOpenAI] = None

    async def initialize(self) -> None:
        self.client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        self.logger.info(f"Initialized OpenAI provider with model {self.model_name}")

    async def close(self) -> None:
        if self.client:
            await self.client.close()

    async def _complete(self, messages, max_tokens: int, temperature: float):
        if not self.client:
            await self.initialize()
        try:
            return await self.client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                **completion_params(self.model_name, max_tokens, temperature),
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeoutError(self.provider_id, self.timeout) from e
        except (
            openai.AuthenticationError,
            openai.PermissionDeniedError,
            openai.BadRequestError,
            openai.NotFoundError,
            openai.UnprocessableEntityError,
        ) as e:
            raise ProviderError(self.provider_id, str(e), kind=ErrorKind.FATAL, status_code=e.status_code) from e
        except openai.APIStatusError as e:
            raise ProviderError.from_status(self.provider_id, e.status_code, str(e)) from e
        except openai.APIConnectionError as e:
            raise ProviderError(self.provider_id, f"connection error: {e}", kind=ErrorKind.TRANSIENT) from e

    async def translate(self, request: TranslationRequest) -> TranslationResponse:
        messages = [
            {
                "role": "system",
                "content": build_translation_system_prompt(request.source_lang, request.target_lang, request.context),
            },
            {"role": "user", "content": request.text},
        ]
        max_tokens = min(len(request.text) * 3 + 50, 4000)

        self.logger.debug(f"[OpenAI] Translating {len(request.text)} chars with {self.model_name}")
        completion = await self._complete(messages, max_tokens=max_tokens, temperature=0.3)

        content = (completion.choices[0].message.content or "").strip() if completion.choices else ""
        if not content:
            raise ProviderError(self.provider_id, "empty completion", kind=ErrorKind.TRANSIENT)

        return self._build_response(request, content, model=completion.model or self.model_name)

    async def detect_language(self, text: str) -> LanguageDetectionResult:
        messages = [
            {"role": "system", "content": LANGUAGE_DETECTION_PROMPT},
            {"role": "user", "content": build_detection_user_prompt(text)},
        ]
        completion = await self._complete(messages, max_tokens=10, temperature=0.0)
        raw = completion.choices[0].message.content if completion.choices else None
        code = parse_detected_code(raw)
        if code is None:
            raise ProviderError(self.provider_id, f"unparseable language code: {raw!r}", kind=ErrorKind.TRANSIENT)
        return LanguageDetectionResult(language=code, confidence=0.85, source=self.provider_id)

    async def _probe(self) -> None:
        if not self.client:
            await self.initialize()
        try:
            await self.client.models.list()
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise ProviderError(self.provider_id, str(e), kind=ErrorKind.FATAL, status_code=e.status_code) from e
