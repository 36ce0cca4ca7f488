import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, Optional

import httpx

from lingobridge.translation.models import (
    CostEstimate,
    LanguageDetectionResult,
    TranslationCost,
    TranslationRequest,
    TranslationResponse,
    quantize_money,
)
from lingobridge.utils.constants import AUTO_LANGUAGE, ErrorKind, HealthStatus, LanguageFamily, TextComplexity
from lingobridge.utils.exceptions import ProviderError, ProviderTimeoutError
from lingobridge.utils.logger.custom_logging import LoggerMixin


@dataclass(frozen=True)
class ProviderHealth:
    """Result of one health probe. Immutable; the monitor swaps whole snapshots."""
    provider_id: str
    status: HealthStatus = HealthStatus.HEALTHY
    available: bool = True
    last_check: Optional[datetime] = None
    last_error: Optional[str] = None
    latency_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "provider_id": self.provider_id,
            "status": self.status.value,
            "available": self.available,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "last_error": self.last_error,
            "latency_ms": self.latency_ms,
        }


class TranslationProvider(ABC, LoggerMixin):
    """
    Uniform interface to one external translation backend.

    Subclasses declare their capabilities as class attributes; the router
    reads them and never looks at concrete provider types.
    """

    provider_id: str = ""
    # Empty set: the backend accepts any language
    supported_languages: FrozenSet[str] = frozenset()
    # Price per character (input + output), in `currency`
    cost_per_unit: Decimal = Decimal("0")
    currency: str = "EUR"
    # Router bonus points (0..25) per language family and complexity bucket
    language_affinity: Dict[LanguageFamily, int] = {}
    complexity_fit: Dict[TextComplexity, int] = {}
    # 0..1, used for the premium tier
    quality_score: float = 0.9
    # Reported on every successful translation
    confidence: float = 0.9
    # Longer texts skip this provider
    max_text_length: int = 10_000
    # In-flight calls before the router treats the provider as saturated
    max_concurrent: int = 100

    def __init__(self, api_key: str, model_name: str = "", degraded_latency_ms: float = 3000.0):
        super().__init__()
        if not api_key:
            raise ValueError(f"API key is required for provider '{self.provider_id}'")
        self.api_key = api_key
        self.model_name = model_name
        self.degraded_latency_ms = degraded_latency_ms

    # ========================================================================
    # CONTRACT
    # ========================================================================

    @abstractmethod
    async def initialize(self) -> None:
        """Create clients; called once at startup."""

    @abstractmethod
    async def translate(self, request: TranslationRequest) -> TranslationResponse:
        """
        Translate `request.text`. `request.context` already carries the
        merged conversation context.

        Raises:
            ProviderError: fatal for auth / malformed requests, transient otherwise
        """

    @abstractmethod
    async def detect_language(self, text: str) -> LanguageDetectionResult:
        """Raises ProviderError like translate."""

    @abstractmethod
    async def _probe(self) -> None:
        """Cheapest authenticated call the backend offers; raises on failure."""

    async def close(self) -> None:
        pass

    # ========================================================================
    # SHARED BEHAVIOUR
    # ========================================================================

    def supports_language_pair(self, source_lang: str, target_lang: str) -> bool:
        if not self.supported_languages:
            return True
        target_ok = self._base_code(target_lang) in self.supported_languages
        if source_lang == AUTO_LANGUAGE:
            return target_ok
        return target_ok and self._base_code(source_lang) in self.supported_languages

    @staticmethod
    def _base_code(code: str) -> str:
        return code.split("-", 1)[0]

    def compute_cost(self, input_chars: int, output_chars: int) -> TranslationCost:
        units = input_chars + output_chars
        return TranslationCost(
            amount=quantize_money(self.cost_per_unit * units),
            currency=self.currency,
            units_used=units,
        )

    def estimate_cost(self, text: str, target_lang: str) -> CostEstimate:
        """Assumes the translation is about as long as the source."""
        cost = self.compute_cost(len(text), len(text))
        return CostEstimate(amount=cost.amount, currency=cost.currency, units=cost.units_used)

    async def health_check(self) -> ProviderHealth:
        started = time.perf_counter()
        checked_at = datetime.now(timezone.utc)
        try:
            await self._probe()
        except ProviderError as e:
            return ProviderHealth(
                provider_id=self.provider_id,
                status=HealthStatus.UNHEALTHY,
                # Bad credentials will not fix themselves between polls
                available=not e.fatal,
                last_check=checked_at,
                last_error=str(e),
            )
        except Exception as e:
            return ProviderHealth(
                provider_id=self.provider_id,
                status=HealthStatus.UNHEALTHY,
                available=True,
                last_check=checked_at,
                last_error=f"{type(e).__name__}: {e}",
            )

        latency_ms = (time.perf_counter() - started) * 1000
        status = HealthStatus.DEGRADED if latency_ms > self.degraded_latency_ms else HealthStatus.HEALTHY
        return ProviderHealth(
            provider_id=self.provider_id,
            status=status,
            available=True,
            last_check=checked_at,
            latency_ms=round(latency_ms, 1),
        )

    def _build_response(
        self,
        request: TranslationRequest,
        translated_text: str,
        source_lang: Optional[str] = None,
        model: Optional[str] = None,
    ) -> TranslationResponse:
        return TranslationResponse(
            translated_text=translated_text,
            original_text=request.text,
            source_lang=source_lang or request.source_lang,
            target_lang=request.target_lang,
            confidence=self.confidence,
            provider=self.provider_id,
            model=model or self.model_name,
            cost=self.compute_cost(len(request.text), len(translated_text)),
        )


class HttpTranslationProvider(TranslationProvider):
    """Base for backends spoken to directly over HTTP with httpx."""

    base_url: str = ""

    def __init__(self, api_key: str, model_name: str = "", timeout: float = 30.0, **kwargs):
        super().__init__(api_key, model_name, **kwargs)
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    def _default_headers(self) -> Dict[str, str]:
        return {}

    async def initialize(self) -> None:
        await self._get_client()
        self.logger.info(f"Initialized {self.provider_id} provider at {self.base_url}")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._default_headers(),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request, mapping transport and status failures onto ProviderError."""
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(self.provider_id, self.timeout) from e
        except httpx.HTTPStatusError as e:
            raise ProviderError.from_status(
                self.provider_id, e.response.status_code, e.response.text[:200]
            ) from e
        except httpx.TransportError as e:
            raise ProviderError(self.provider_id, f"transport error: {e}", kind=ErrorKind.TRANSIENT) from e
