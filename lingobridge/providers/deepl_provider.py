from decimal import Decimal
from typing import Any, Dict, Optional

from lingobridge.providers.base_provider import HttpTranslationProvider
from lingobridge.translation.models import LanguageDetectionResult, TranslationRequest, TranslationResponse
from lingobridge.utils.constants import AUTO_LANGUAGE, ErrorKind, LanguageFamily, TextComplexity
from lingobridge.utils.exceptions import ProviderError


DEEPL_FREE_URL = "https://api-free.deepl.com/v2"
DEEPL_PRO_URL = "https://api.deepl.com/v2"

# DeepL wants regional variants for some targets
TARGET_CODE_MAPPING = {
    "en": "EN-US",
    "pt": "PT-PT",
    "pt-br": "PT-BR",
    "en-gb": "EN-GB",
    "zh": "ZH",
}


class DeepLProvider(HttpTranslationProvider):
    """
    DeepL REST API. Dedicated MT engine: cheapest per character and the
    strongest choice for European language pairs. Context is not sent,
    DeepL has no prompt to put it in.
    """

    provider_id = "deepl"
    supported_languages = frozenset({
        "bg", "cs", "da", "de", "el", "en", "es", "et", "fi", "fr",
        "hu", "id", "it", "ja", "ko", "lt", "lv", "nb", "nl", "pl",
        "pt", "ro", "ru", "sk", "sl", "sv", "tr", "uk", "zh",
    })
    # 25 per million characters
    cost_per_unit = Decimal("0.000025")
    language_affinity = {
        LanguageFamily.EUROPEAN: 25,
        LanguageFamily.ASIAN: 5,
        LanguageFamily.OTHER: 10,
    }
    complexity_fit = {
        TextComplexity.SIMPLE: 25,
        TextComplexity.MEDIUM: 20,
        TextComplexity.COMPLEX: 10,
    }
    quality_score = 0.98
    confidence = 0.98
    max_text_length = 50_000
    max_concurrent = 200

    def __init__(self, api_key: str, model_name: str = "deepl-v2", timeout: float = 30.0, **kwargs):
        super().__init__(api_key, model_name, timeout=timeout, **kwargs)
        # Free-tier keys carry the ":fx" suffix and only work on the free host
        self.base_url = DEEPL_FREE_URL if api_key.endswith(":fx") else DEEPL_PRO_URL

    def _default_headers(self) -> Dict[str, str]:
        return {"Authorization": f"DeepL-Auth-Key {self.api_key}"}

    @staticmethod
    def map_target_code(code: str) -> str:
        return TARGET_CODE_MAPPING.get(code, code.split("-", 1)[0].upper())

    @staticmethod
    def map_source_code(code: str) -> Optional[str]:
        # Source codes never take a region
        if code == AUTO_LANGUAGE:
            return None
        return code.split("-", 1)[0].upper()

    async def _translate_raw(self, text: str, target: str, source: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "text": [text],
            "target_lang": target,
            "preserve_formatting": True,
        }
        if source:
            payload["source_lang"] = source

        response = await self._request("POST", "/translate", json=payload)
        translations = response.json().get("translations") or []
        if not translations:
            raise ProviderError(self.provider_id, "response contained no translations", kind=ErrorKind.TRANSIENT)
        return translations[0]

    async def translate(self, request: TranslationRequest) -> TranslationResponse:
        self.logger.debug(f"[DeepL] Translating {len(request.text)} chars to {request.target_lang}")
        translation = await self._translate_raw(
            request.text,
            target=self.map_target_code(request.target_lang),
            source=self.map_source_code(request.source_lang),
        )

        detected = (translation.get("detected_source_language") or "").lower() or None
        source_lang = request.source_lang if request.source_lang != AUTO_LANGUAGE else (detected or AUTO_LANGUAGE)
        return self._build_response(request, translation.get("text", ""), source_lang=source_lang)

    async def detect_language(self, text: str) -> LanguageDetectionResult:
        # No detection endpoint; a translation into English reports the source
        translation = await self._translate_raw(text[:500], target="EN-US")
        detected = (translation.get("detected_source_language") or "").lower()
        if not detected:
            raise ProviderError(self.provider_id, "no detected_source_language in response", kind=ErrorKind.TRANSIENT)
        return LanguageDetectionResult(language=detected, confidence=0.95, source=self.provider_id)

    async def _probe(self) -> None:
        await self._request("GET", "/usage")
