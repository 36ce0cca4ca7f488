"""
Unit tests for TranslationRouter

Selection is checked against fixed health / circuit snapshots; fallback
against fake providers that fail in controlled ways.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import FakeClock, FakeProvider
from lingobridge.providers.base_provider import ProviderHealth
from lingobridge.providers.health_monitor import ProviderHealthStore
from lingobridge.routing.scoring import ScoringWeights, classify_complexity, language_family
from lingobridge.routing.translation_router import TranslationRouter
from lingobridge.translation.models import TranslationRequest
from lingobridge.utils.circuit_breaker import CircuitBreaker
from lingobridge.utils.constants import ErrorKind, HealthStatus, LanguageFamily, QualityTier, TextComplexity
from lingobridge.utils.exceptions import AllProvidersFailedError, ProviderError


# ============================================================================
# TEST FIXTURES
# ============================================================================

def european_specialist(provider_id="deepl", **kwargs):
    return FakeProvider(
        provider_id,
        language_affinity={LanguageFamily.EUROPEAN: 25, LanguageFamily.ASIAN: 5},
        complexity_fit={TextComplexity.SIMPLE: 25, TextComplexity.MEDIUM: 20},
        **kwargs,
    )


def generalist(provider_id="openai", **kwargs):
    return FakeProvider(
        provider_id,
        language_affinity={LanguageFamily.EUROPEAN: 10, LanguageFamily.ASIAN: 20},
        complexity_fit={TextComplexity.SIMPLE: 20, TextComplexity.MEDIUM: 20},
        **kwargs,
    )


@pytest.fixture
def health_store():
    return ProviderHealthStore()


@pytest.fixture
def breaker():
    return CircuitBreaker(failure_threshold=2, reset_timeout=60.0)


def make_router(providers, breaker, health_store, **kwargs):
    return TranslationRouter(providers, breaker, health_store, **kwargs)


def publish(store, *entries):
    store.publish({
        provider_id: ProviderHealth(
            provider_id=provider_id,
            status=status,
            available=available,
            last_check=datetime.now(timezone.utc),
        )
        for provider_id, status, available in entries
    })


# ============================================================================
# CLASSIFIERS
# ============================================================================

class TestClassifiers:

    def test_complexity_buckets(self):
        assert classify_complexity("Hello world") == TextComplexity.SIMPLE
        assert classify_complexity("Hello world", context="earlier chat") == TextComplexity.MEDIUM
        assert classify_complexity("x" * 120) == TextComplexity.MEDIUM
        assert classify_complexity("x" * 501) == TextComplexity.COMPLEX
        assert classify_complexity("restart the API") == TextComplexity.COMPLEX
        assert classify_complexity("hi", context="c" * 501) == TextComplexity.COMPLEX

    def test_language_families(self):
        assert language_family("en", "es") == LanguageFamily.EUROPEAN
        assert language_family("auto", "de") == LanguageFamily.EUROPEAN
        assert language_family("en", "ja") == LanguageFamily.ASIAN
        assert language_family("zh", "en") == LanguageFamily.ASIAN
        assert language_family("ar", "en") == LanguageFamily.OTHER


# ============================================================================
# SELECTION
# ============================================================================

class TestSelection:

    def test_prefers_specialist_for_european_pairs(self, breaker, health_store):
        router = make_router([generalist(), european_specialist()], breaker, health_store)
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="es")

        assert router.select_provider(request).provider_id == "deepl"

    def test_prefers_generalist_for_asian_pairs(self, breaker, health_store):
        router = make_router([european_specialist(), generalist()], breaker, health_store)
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="ja")

        assert router.select_provider(request).provider_id == "openai"

    def test_selection_is_deterministic(self, breaker, health_store):
        router = make_router([generalist(), european_specialist()], breaker, health_store)
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="fr")

        first = router.select_provider(request)
        assert all(router.select_provider(request) is first for _ in range(10))

    def test_ties_go_to_registration_order(self, breaker, health_store):
        router = make_router([FakeProvider("first"), FakeProvider("second")], breaker, health_store)
        request = TranslationRequest(text="Hello world", target_lang="es")

        ranking = router.rank_providers(request)
        assert ranking[0].score == ranking[1].score
        assert [s.provider_id for s in ranking] == ["first", "second"]

    def test_health_changes_the_winner(self, breaker, health_store):
        router = make_router([european_specialist(), generalist()], breaker, health_store)
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="es")
        publish(
            health_store,
            ("deepl", HealthStatus.UNHEALTHY, True),
            ("openai", HealthStatus.HEALTHY, True),
        )

        assert router.select_provider(request).provider_id == "openai"

    def test_unavailable_providers_are_excluded(self, breaker, health_store):
        router = make_router([european_specialist(), generalist()], breaker, health_store)
        publish(health_store, ("deepl", HealthStatus.UNHEALTHY, False))
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="es")

        assert [s.provider_id for s in router.rank_providers(request)] == ["openai"]

    def test_open_circuits_are_excluded(self, breaker, health_store):
        router = make_router([european_specialist(), generalist()], breaker, health_store)
        breaker.force_open("deepl")
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="es")

        assert router.select_provider(request).provider_id == "openai"

    def test_unsupported_pairs_are_excluded(self, breaker, health_store):
        limited = european_specialist(supported_languages={"en", "de", "es"})
        router = make_router([limited, generalist()], breaker, health_store)
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="th")

        assert [s.provider_id for s in router.rank_providers(request)] == ["openai"]

    def test_max_cost_filters_expensive_providers(self, breaker, health_store):
        cheap = FakeProvider("cheap", cost_per_unit=Decimal("0.00001"))
        pricey = european_specialist(cost_per_unit=Decimal("0.001"))
        router = make_router([pricey, cheap], breaker, health_store)
        request = TranslationRequest(text="Hello world", target_lang="es", max_cost=Decimal("0.001"))

        assert [s.provider_id for s in router.rank_providers(request)] == ["cheap"]

    def test_economy_tier_rewards_cheaper_providers(self, breaker, health_store):
        cheap = FakeProvider("cheap", cost_per_unit=Decimal("0.00001"))
        pricey = FakeProvider("pricey", cost_per_unit=Decimal("0.00004"))
        router = make_router([pricey, cheap], breaker, health_store)

        balanced = TranslationRequest(text="Hello world", target_lang="es")
        economy = TranslationRequest(text="Hello world", target_lang="es", quality_tier=QualityTier.ECONOMY)

        assert router.select_provider(balanced).provider_id == "pricey"
        ranking = router.rank_providers(economy)
        assert ranking[0].provider_id == "cheap"
        assert ranking[0].breakdown["cost"] == 20
        assert ranking[1].breakdown["cost"] == 5

    def test_premium_tier_rewards_quality(self, breaker, health_store):
        router = make_router(
            [FakeProvider("ok", quality_score=0.8), FakeProvider("best", quality_score=0.98)],
            breaker,
            health_store,
        )
        request = TranslationRequest(text="Hello world", target_lang="es", quality_tier=QualityTier.PREMIUM)

        assert router.select_provider(request).provider_id == "best"

    def test_weights_are_configurable(self, breaker, health_store):
        weights = ScoringWeights(max_affinity=0, max_complexity=0)
        router = make_router([generalist(), european_specialist()], breaker, health_store, weights=weights)
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="es")

        # Only health counts, so registration order decides
        assert router.select_provider(request).provider_id == "openai"

    def test_no_candidates_raises(self, breaker, health_store):
        router = make_router([], breaker, health_store)
        with pytest.raises(AllProvidersFailedError):
            router.select_provider(TranslationRequest(text="Hello", target_lang="es"))

    def test_duplicate_registration_is_rejected(self, breaker, health_store):
        router = make_router([FakeProvider("a")], breaker, health_store)
        with pytest.raises(ValueError):
            router.register_provider(FakeProvider("a"))

    def test_texts_over_the_provider_limit_are_excluded(self, breaker, health_store):
        short = FakeProvider("short")
        short.max_text_length = 100
        router = make_router([short, FakeProvider("long")], breaker, health_store)
        request = TranslationRequest(text="word " * 40, target_lang="es")

        assert [s.provider_id for s in router.rank_providers(request)] == ["long"]

    def test_concurrency_limit_can_be_overridden(self, breaker, health_store):
        router = make_router(
            [european_specialist(), generalist()], breaker, health_store, max_concurrent={"openai": 3}
        )

        assert router.get_provider_stats("openai")["max_concurrent"] == 3
        assert router.get_provider_stats("deepl")["max_concurrent"] == 100

    @pytest.mark.asyncio
    async def test_saturated_providers_are_excluded(self, breaker, health_store):
        busy = european_specialist(delay=0.2)
        router = make_router([busy, generalist()], breaker, health_store, max_concurrent={"deepl": 1})
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="es")

        in_flight = asyncio.create_task(router.translate_with_fallback(request))
        await asyncio.sleep(0.05)

        assert router.get_provider_stats("deepl")["in_flight"] == 1
        assert [s.provider_id for s in router.rank_providers(request)] == ["openai"]
        second = await router.translate_with_fallback(request)
        assert second.provider == "openai"

        first = await in_flight
        assert first.provider == "deepl"
        assert router.get_provider_stats("deepl")["in_flight"] == 0
        assert [s.provider_id for s in router.rank_providers(request)][0] == "deepl"


# ============================================================================
# FALLBACK
# ============================================================================

class TestFallback:

    @pytest.mark.asyncio
    async def test_transient_error_falls_back(self, breaker, health_store):
        failing = european_specialist(fail_with=ProviderError("deepl", "HTTP 503", kind=ErrorKind.TRANSIENT))
        backup = generalist()
        router = make_router([failing, backup], breaker, health_store)
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="es")

        response = await router.translate_with_fallback(request)

        assert response.provider == "openai"
        assert response.metadata.attempts == ["deepl", "openai"]
        assert breaker.snapshot("deepl").failure_count == 1

    @pytest.mark.asyncio
    async def test_fatal_error_skips_without_counting(self, breaker, health_store):
        failing = european_specialist(fail_with=ProviderError("deepl", "HTTP 401", kind=ErrorKind.FATAL))
        router = make_router([failing, generalist()], breaker, health_store)
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="es")

        response = await router.translate_with_fallback(request)

        assert response.provider == "openai"
        assert breaker.snapshot("deepl").failure_count == 0

    @pytest.mark.asyncio
    async def test_exhaustion_carries_every_error(self, breaker, health_store):
        router = make_router(
            [
                FakeProvider("a", fail_with=ProviderError("a", "HTTP 500")),
                FakeProvider("b", fail_with=ProviderError("b", "HTTP 502")),
            ],
            breaker,
            health_store,
        )

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await router.translate_with_fallback(TranslationRequest(text="Hello", target_lang="es"))

        assert set(exc_info.value.errors) == {"a", "b"}
        assert exc_info.value.deadline_exceeded is False

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, breaker, health_store):
        slow = FakeProvider("slow", delay=5.0)
        router = make_router([slow, FakeProvider("fast")], breaker, health_store)
        request = TranslationRequest(text="Hello", target_lang="es", timeout_ms=20)

        response = await router.translate_with_fallback(request)

        assert response.provider == "fast"
        assert breaker.snapshot("slow").failure_count == 1

    @pytest.mark.asyncio
    async def test_no_attempt_after_deadline(self, breaker, health_store):
        clock = FakeClock()
        first = FakeProvider("first", fail_with=ProviderError("first", "HTTP 503"))
        second = FakeProvider("second")
        router = make_router([first, second], breaker, health_store, clock=clock)

        original = first.translate

        async def fail_slowly(request):
            clock.advance(31)
            return await original(request)

        first.translate = fail_slowly

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await router.translate_with_fallback(TranslationRequest(text="Hello", target_lang="es"))

        assert exc_info.value.deadline_exceeded is True
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_repeated_failures_open_the_circuit(self, breaker, health_store):
        failing = FakeProvider("flaky", fail_with=ProviderError("flaky", "HTTP 503"))
        router = make_router([failing, FakeProvider("stable")], breaker, health_store)
        request = TranslationRequest(text="Hello", target_lang="es")

        for _ in range(3):
            await router.translate_with_fallback(request)

        # Two failures open the circuit; the third request never reaches the provider
        assert len(failing.calls) == 2

    @pytest.mark.asyncio
    async def test_outcomes_are_recorded_per_provider(self, breaker, health_store):
        failing = european_specialist(fail_with=ProviderError("deepl", "HTTP 503"))
        router = make_router([failing, generalist()], breaker, health_store)
        request = TranslationRequest(text="Hello world", source_lang="en", target_lang="es")

        await router.translate_with_fallback(request)
        await router.translate_with_fallback(request)

        deepl = router.get_provider_stats("deepl")
        assert deepl["total_requests"] == 2
        assert deepl["failed_requests"] == 2
        assert deepl["success_rate"] == 0.0
        openai = router.get_provider_stats("openai")
        assert openai["total_requests"] == 2
        assert openai["success_rate"] == 1.0
        assert openai["average_latency_ms"] >= 0
        assert openai["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_detect_language_falls_back(self, breaker, health_store):
        router = make_router(
            [FakeProvider("a", fail_with=ProviderError("a", "HTTP 503")), FakeProvider("b")],
            breaker,
            health_store,
        )
        result = await router.detect_language_with_fallback("Hello there")

        assert result.language == "en"
        assert result.source == "b"
