import time
from decimal import Decimal
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

from lingobridge.providers.base_provider import TranslationProvider
from lingobridge.providers.health_monitor import ProviderHealthStore
from lingobridge.routing.provider_stats import ProviderStats
from lingobridge.routing.scoring import (
    ProviderScore,
    ScoringWeights,
    classify_complexity,
    language_family,
    score_provider,
)
from lingobridge.translation.models import (
    CostEstimate,
    LanguageDetectionResult,
    TranslationRequest,
    TranslationResponse,
)
from lingobridge.utils.circuit_breaker import CircuitBreaker
from lingobridge.utils.exceptions import AllProvidersFailedError, CircuitOpenError, ProviderError
from lingobridge.utils.logger.custom_logging import LoggerMixin


class TranslationRouter(LoggerMixin):
    """
    Scores configured providers per request and walks the ranking until one
    succeeds.

    Candidates must support the language pair and the text length, be
    reported available by the health monitor, be admitted by their circuit,
    have fewer than `max_concurrent` calls in flight and, when the request
    sets max_cost, have an estimate within the cap. Ranking is a pure
    function of the request, the health snapshot, the circuit states and
    the in-flight counts, so identical inputs always select the same
    provider.

    Args:
        providers: Providers in registration order (the tie-breaker)
        circuit_breaker: Shared per-provider circuit breaker
        health_store: Snapshot written by the health monitor
        weights: Scoring weights
        call_timeout: Default per-attempt timeout in seconds
        request_deadline: Default aggregate deadline in seconds
        max_concurrent: In-flight cap per provider id, overriding the provider's own
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        providers: Sequence[TranslationProvider],
        circuit_breaker: CircuitBreaker,
        health_store: ProviderHealthStore,
        weights: Optional[ScoringWeights] = None,
        call_timeout: float = 15.0,
        request_deadline: float = 30.0,
        max_concurrent: Optional[Dict[str, int]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self._providers: Dict[str, TranslationProvider] = {}
        self.circuit_breaker = circuit_breaker
        self.health_store = health_store
        self.weights = weights or ScoringWeights()
        self.call_timeout = call_timeout
        self.request_deadline = request_deadline
        self._clock = clock
        self._max_concurrent = dict(max_concurrent or {})
        self._stats: Dict[str, ProviderStats] = {}
        for provider in providers:
            self.register_provider(provider)

    # ========================================================================
    # REGISTRY
    # ========================================================================

    def register_provider(self, provider: TranslationProvider) -> None:
        if provider.provider_id in self._providers:
            raise ValueError(f"Provider '{provider.provider_id}' is already registered")
        self._providers[provider.provider_id] = provider
        self._stats[provider.provider_id] = ProviderStats(
            provider.provider_id,
            max_concurrent=self._max_concurrent.get(provider.provider_id, provider.max_concurrent),
        )

    @property
    def providers(self) -> List[TranslationProvider]:
        return list(self._providers.values())

    def get_provider(self, provider_id: str) -> Optional[TranslationProvider]:
        return self._providers.get(provider_id)

    def get_provider_stats(self, provider_id: str) -> Dict[str, Any]:
        """Load, success rate and latency of one provider since startup."""
        return self._stats[provider_id].to_dict()

    # ========================================================================
    # SELECTION
    # ========================================================================

    def rank_providers(self, request: TranslationRequest) -> List[ProviderScore]:
        """Eligible providers, best first."""
        family = language_family(request.source_lang, request.target_lang)
        complexity = classify_complexity(request.text, request.context, self.weights)

        eligible = []
        for index, provider in enumerate(self._providers.values()):
            if not provider.supports_language_pair(request.source_lang, request.target_lang):
                continue
            if len(request.text) > provider.max_text_length:
                continue
            if self._stats[provider.provider_id].saturated:
                continue
            if not self.health_store.get(provider.provider_id).available:
                continue
            if not self.circuit_breaker.is_call_permitted(provider.provider_id):
                continue
            estimate = provider.estimate_cost(request.text, request.target_lang).amount
            if request.max_cost is not None and estimate > request.max_cost:
                continue
            eligible.append((index, provider, estimate))

        if not eligible:
            return []

        cheapest = min(estimate for _, _, estimate in eligible)
        scores = [
            score_provider(
                provider,
                self.health_store.get(provider.provider_id),
                family=family,
                complexity=complexity,
                quality_tier=request.quality_tier,
                estimated_cost=estimate,
                cheapest_cost=cheapest,
                registration_index=index,
                weights=self.weights,
            )
            for index, provider, estimate in eligible
        ]
        scores.sort(key=lambda s: (-s.score, s.registration_index))
        return scores

    def select_provider(self, request: TranslationRequest) -> TranslationProvider:
        """
        Raises:
            AllProvidersFailedError: no provider is eligible
        """
        ranking = self.rank_providers(request)
        if not ranking:
            raise AllProvidersFailedError()
        best = ranking[0]
        self.logger.debug(f"[ROUTER] Selected {best.provider_id} score={best.score} {best.breakdown}")
        return best.provider

    def deadline_in(self, seconds: float) -> float:
        """Absolute deadline on the router's clock, for translate_with_fallback."""
        return self._clock() + seconds

    def estimate_cost(self, request: TranslationRequest) -> CostEstimate:
        """Estimate of the provider that would be selected; zero when none is eligible."""
        ranking = self.rank_providers(request)
        if not ranking:
            return CostEstimate(amount=Decimal("0"), units=0)
        return ranking[0].provider.estimate_cost(request.text, request.target_lang)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def translate_with_fallback(
        self,
        request: TranslationRequest,
        deadline: Optional[float] = None,
    ) -> TranslationResponse:
        """
        Try providers in ranking order until one succeeds.

        Fatal errors skip the provider for this request only; transient
        errors and open circuits fall through to the next candidate. No new
        attempt starts once `deadline` (a value of the router's clock) has
        passed, and each attempt's timeout is capped by the time left.

        Raises:
            AllProvidersFailedError: every candidate failed or the deadline expired
        """
        if deadline is None:
            deadline = self._clock() + self.request_deadline
        call_timeout = request.timeout_ms / 1000 if request.timeout_ms else self.call_timeout

        ranking = self.rank_providers(request)
        if not ranking:
            self.logger.warning(
                f"[ROUTER] No eligible provider for {request.source_lang}->{request.target_lang}"
            )
            raise AllProvidersFailedError()

        errors: Dict[str, Exception] = {}
        attempts: List[str] = []

        for candidate in ranking:
            provider = candidate.provider
            remaining = deadline - self._clock()
            if remaining <= 0:
                self.logger.warning(
                    f"[ROUTER] Deadline exceeded after {len(attempts)} attempts: {attempts}"
                )
                raise AllProvidersFailedError(errors, deadline_exceeded=True)

            stats = self._stats[provider.provider_id]
            if stats.saturated:
                self.logger.info(f"[ROUTER] {provider.provider_id} saturated ({stats.in_flight} in flight), trying next provider")
                continue

            attempts.append(provider.provider_id)
            stats.in_flight += 1
            started = time.perf_counter()
            try:
                response = await self.circuit_breaker.call(
                    provider.provider_id,
                    partial(provider.translate, request),
                    timeout=min(call_timeout, remaining),
                )
            except CircuitOpenError as e:
                errors[provider.provider_id] = e
                self.logger.info(f"[ROUTER] {provider.provider_id} circuit open, trying next provider")
                continue
            except ProviderError as e:
                errors[provider.provider_id] = e
                stats.record_failure()
                if e.fatal:
                    self.logger.error(f"[ROUTER] {provider.provider_id} fatal error, skipped for this request: {e}")
                else:
                    self.logger.warning(f"[ROUTER] {provider.provider_id} transient error, falling back: {e}")
                continue
            finally:
                stats.in_flight -= 1

            stats.record_success((time.perf_counter() - started) * 1000)

            response.metadata.attempts = attempts
            if len(attempts) > 1:
                self.logger.info(f"[ROUTER] Served by {provider.provider_id} after fallback {attempts}")
            return response

        self.logger.error(f"[ROUTER] All providers failed: {list(errors)}")
        raise AllProvidersFailedError(errors)

    async def detect_language_with_fallback(self, text: str) -> Optional[LanguageDetectionResult]:
        """Ask providers in registration order; None when none could tell."""
        for provider in self._providers.values():
            if not self.health_store.get(provider.provider_id).available:
                continue
            if not self.circuit_breaker.is_call_permitted(provider.provider_id):
                continue
            try:
                return await self.circuit_breaker.call(
                    provider.provider_id,
                    partial(provider.detect_language, text),
                    timeout=self.call_timeout,
                )
            except (CircuitOpenError, ProviderError) as e:
                self.logger.warning(f"[ROUTER] Language detection via {provider.provider_id} failed: {e}")
        return None
