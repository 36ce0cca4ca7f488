"""
End-to-end tests for TranslationEngine

Fake providers, a stub detector, an in-memory cache and an in-memory SQLite
ledger; nothing leaves the process.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeProvider, make_engine
from lingobridge.billing.ledger import CreditLedger
from lingobridge.cache.translation_cache import make_cache_key
from lingobridge.database.models import CachedTranslation
from lingobridge.services import translation_engine
from lingobridge.services.translation_engine import same_language
from lingobridge.translation.models import TranslationRequest
from lingobridge.utils.circuit_breaker import CircuitBreaker
from lingobridge.utils.exceptions import (
    InsufficientCreditsError,
    LedgerWriteError,
    ProviderError,
    TranslationValidationError,
)


def hello(**overrides):
    fields = dict(text="Hello world", source_lang="auto", target_lang="es", workspace_id="ws-1")
    fields.update(overrides)
    return TranslationRequest(**fields)


# ============================================================================
# LANGUAGE MATCHING
# ============================================================================

class TestSameLanguage:

    def test_identical_codes(self):
        assert same_language("en", "en")
        assert same_language("pt-br", "pt-br")

    def test_bare_code_matches_regional_variant(self):
        assert same_language("en", "en-us")
        assert same_language("en-gb", "en")

    def test_different_regions_are_different_languages(self):
        assert not same_language("pt-br", "pt-pt")
        assert not same_language("en", "es")


# ============================================================================
# REQUEST PATH
# ============================================================================

class TestTranslate:

    @pytest.mark.asyncio
    async def test_translates_debits_and_tracks(self, engine, providers):
        response = await engine.translate(hello(request_id="req-1"))

        assert response.translated_text == "es:Hello world"
        assert response.source_lang == "en"
        assert response.provider == "alpha"
        assert response.metadata.request_id == "req-1"
        assert response.metadata.cache_hit is False
        # (11 + 14) characters at 0.00002
        assert response.cost.amount == Decimal("0.0005")
        assert await engine.ledger.get_balance("ws-1") == Decimal("2.9995")

        await engine.usage_tracker.flush()
        usage = await engine.usage_tracker.get_daily_usage("ws-1")
        assert usage["translation_count"] == 1
        assert usage["providers"] == {"alpha": 1}

    @pytest.mark.asyncio
    async def test_repeat_is_served_from_cache_without_charge(self, engine, providers):
        first = await engine.translate(hello(request_id="req-1"))
        second = await engine.translate(hello(request_id="req-2"))

        assert second.translated_text == first.translated_text
        assert second.provider == first.provider
        assert second.metadata.cache_hit is True
        assert second.metadata.request_id == "req-2"
        assert second.cost.amount == Decimal("0")
        assert len(providers[0].calls) == 1
        assert len(await engine.ledger.get_transactions("ws-1")) == 2

        await engine.cache.drain()
        await engine.usage_tracker.flush()
        usage = await engine.usage_tracker.get_daily_usage("ws-1")
        assert usage["translation_count"] == 2
        assert usage["cache_hits"] == 1
        assert Decimal(usage["total_cost"]) == Decimal("0.0005")

    @pytest.mark.asyncio
    async def test_resolved_source_shares_the_cache(self, engine, providers):
        await engine.translate(hello())
        response = await engine.translate(hello(source_lang="en"))

        assert response.metadata.cache_hit is True
        assert len(providers[0].calls) == 1

    @pytest.mark.asyncio
    async def test_accepts_plain_dicts(self, engine):
        response = await engine.translate({"text": "Hello world", "target_lang": "ES", "workspace_id": "ws-1"})
        assert response.target_lang == "es"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"text": "", "target_lang": "es"},
        {"text": "   ", "target_lang": "es"},
        {"text": "Hello", "target_lang": "auto"},
        {"text": "Hello", "target_lang": "spanish!"},
        {"text": "x" * 10_001, "target_lang": "es"},
    ])
    async def test_rejects_malformed_requests(self, engine, providers, payload):
        with pytest.raises(TranslationValidationError):
            await engine.translate(payload)
        assert providers[0].calls == []

    @pytest.mark.asyncio
    async def test_same_language_is_a_free_no_op(self, engine, providers):
        response = await engine.translate(hello(source_lang="en", target_lang="en-us"))

        assert response.translated_text == "Hello world"
        assert response.provider == "none"
        assert response.confidence == 1.0
        assert response.cost.amount == Decimal("0")
        assert providers[0].calls == []

        await engine.usage_tracker.flush()
        assert (await engine.usage_tracker.get_daily_usage("ws-1"))["translation_count"] == 1

    @pytest.mark.asyncio
    async def test_detected_source_equal_to_target_is_a_no_op(self, engine, providers):
        response = await engine.translate(hello(target_lang="en"))

        assert response.provider == "none"
        assert response.source_lang == "en"
        assert providers[0].calls == []

    @pytest.mark.asyncio
    async def test_insufficient_credits_never_reach_a_provider(self, session_manager, providers, detector):
        ledger = CreditLedger(session_manager, starting_balance=Decimal("0"))
        engine = make_engine(session_manager, providers, detector, ledger=ledger)

        with pytest.raises(InsufficientCreditsError):
            await engine.translate(hello())

        assert providers[0].calls == []
        assert providers[1].calls == []

    @pytest.mark.asyncio
    async def test_fallback_is_charged_at_the_serving_provider(self, session_manager, detector):
        failing = FakeProvider("alpha", fail_with=ProviderError("alpha", "HTTP 503"))
        backup = FakeProvider("beta", cost_per_unit=Decimal("0.00004"))
        engine = make_engine(session_manager, [failing, backup], detector)

        response = await engine.translate(hello())

        assert response.provider == "beta"
        assert response.metadata.attempts == ["alpha", "beta"]
        assert response.cost.amount == Decimal("0.001")
        assert await engine.ledger.get_balance("ws-1") == Decimal("2.999")

    @pytest.mark.asyncio
    async def test_failed_debit_is_logged_for_reconciliation(self, engine, monkeypatch):
        reconciliation = MagicMock()
        monkeypatch.setattr(translation_engine, "reconciliation_logger", reconciliation)
        engine.ledger.deduct_credits = AsyncMock(side_effect=LedgerWriteError("ledger unavailable"))

        response = await engine.translate(hello(request_id="req-1"))

        assert response.translated_text == "es:Hello world"
        reconciliation.error.assert_called_once()
        assert "req-1" in reconciliation.error.call_args.args[0]

    @pytest.mark.asyncio
    async def test_reused_request_id_does_not_skip_billing(self, engine, providers):
        await engine.translate(hello(text="Hello world", request_id="r"))
        await engine.translate(hello(text="Good morning", request_id="r"))
        await engine.translate(hello(text="Good night", request_id="r", workspace_id="ws-2"))

        assert len(providers[0].calls) == 3
        debits = [t for t in await engine.ledger.get_transactions("ws-1") if t["type"] == "debit"]
        assert len(debits) == 2
        other = [t for t in await engine.ledger.get_transactions("ws-2") if t["type"] == "debit"]
        assert len(other) == 1

        await engine.usage_tracker.flush()
        assert (await engine.usage_tracker.get_daily_usage("ws-1"))["translation_count"] == 2
        assert (await engine.usage_tracker.get_daily_usage("ws-2"))["translation_count"] == 1

    @pytest.mark.asyncio
    async def test_conflicting_debit_replay_is_logged_for_reconciliation(self, engine, monkeypatch):
        reconciliation = MagicMock()
        monkeypatch.setattr(translation_engine, "reconciliation_logger", reconciliation)
        key = "r:" + make_cache_key("Hello world", "auto", "es")[:translation_engine.FINGERPRINT_LENGTH]
        await engine.ledger.deduct_credits("ws-1", Decimal("0.25"), description="Earlier booking", request_id=key)

        response = await engine.translate(hello(request_id="r"))

        assert response.translated_text == "es:Hello world"
        assert await engine.ledger.get_balance("ws-1") == Decimal("2.75")
        reconciliation.error.assert_called_once()
        assert "IdempotencyConflictError" in reconciliation.error.call_args.args[0]


# ============================================================================
# CONVERSATION CONTEXT
# ============================================================================

class TestChannelContext:

    @pytest.mark.asyncio
    async def test_channel_history_reaches_the_provider(self, engine, providers):
        await engine.translate(hello(
            text="We deploy the `worker_pool` behind the API gateway tonight",
            channel_id="C1",
            user_id="U1",
        ))
        await engine.translate(hello(text="Is it ready?", channel_id="C1", user_id="U2", context="Thread: deploys"))

        first, second = providers[0].calls
        assert first.context is None
        assert second.context.startswith("Thread: deploys")
        assert "U1: We deploy the `worker_pool`" in second.context
        assert "Technical terms: API, worker_pool" in second.context
        assert engine.context_manager.get_participants("C1") == {"U1", "U2"}

    @pytest.mark.asyncio
    async def test_channel_context_does_not_split_the_cache(self, engine, providers):
        await engine.translate(hello(channel_id="C1"))
        await engine.translate(hello(channel_id="C2"))

        assert len(providers[0].calls) == 1


# ============================================================================
# DEGRADED MODE
# ============================================================================

class TestDegradedMode:

    @pytest.mark.asyncio
    async def test_original_text_when_nothing_is_cached(self, session_manager, providers, detector):
        breaker = CircuitBreaker()
        engine = make_engine(session_manager, providers, detector, circuit_breaker=breaker)
        breaker.force_open("alpha")
        breaker.force_open("beta")

        response = await engine.translate(hello())

        assert response.translated_text == "Hello world"
        assert response.provider == "none"
        assert response.confidence == 0.0
        assert response.metadata.degraded is True
        assert response.cost.amount == Decimal("0")
        assert await engine.ledger.get_balance("ws-1") == Decimal("3.00")

        await engine.usage_tracker.flush()
        assert (await engine.usage_tracker.get_daily_usage("ws-1"))["error_count"] == 1

    @pytest.mark.asyncio
    async def test_stale_cache_entry_is_served(self, session_manager, providers, detector):
        breaker = CircuitBreaker()
        engine = make_engine(session_manager, providers, detector, circuit_breaker=breaker)
        await engine.translate(hello())
        await engine.cache.drain()

        # Expire both tiers
        keys = [make_cache_key("Hello world", lang, "es") for lang in ("auto", "en")]
        for key in keys:
            await engine.cache.store.delete(key)
        with session_manager.create_session() as session:
            for entry in session.query(CachedTranslation).all():
                entry.expires_at = datetime.utcnow() - timedelta(hours=1)

        breaker.force_open("alpha")
        breaker.force_open("beta")
        response = await engine.translate(hello())

        assert response.translated_text == "es:Hello world"
        assert response.provider == "alpha"
        assert response.metadata.degraded is True
        assert response.metadata.cache_hit is True
        assert response.cost.amount == Decimal("0")
        assert len(providers[0].calls) == 1


# ============================================================================
# DETECTION, STATUS AND LIFECYCLE
# ============================================================================

class TestEngineServices:

    @pytest.mark.asyncio
    async def test_detect_language(self, engine, detector):
        result = await engine.detect_language("Hello there")

        assert result.language == "en"
        detector.detect.assert_awaited_once()

    def test_provider_status(self, session_manager, providers, detector):
        breaker = CircuitBreaker()
        engine = make_engine(session_manager, providers, detector, circuit_breaker=breaker)
        breaker.force_open("beta")

        status = {entry["provider_id"]: entry for entry in engine.get_provider_status()}

        assert status["alpha"]["status"] == "healthy"
        assert status["alpha"]["circuit"]["state"] == "closed"
        assert status["beta"]["circuit"]["state"] == "open"
        assert status["alpha"]["load"]["in_flight"] == 0
        assert status["alpha"]["load"]["success_rate"] == 1.0

    @pytest.mark.asyncio
    async def test_start_and_stop(self, engine, providers):
        await engine.start()
        assert all(p.initialized for p in providers)
        assert {"context-sweep", "cache-cleanup"} <= set(engine.background_tasks.scheduled_jobs)

        await engine.translate(hello())
        await engine.stop()

        assert all(p.closed for p in providers)
        assert engine.background_tasks.scheduled_jobs == []
        assert engine.background_tasks.running_tasks == {}
        assert engine.usage_tracker.pending == 0
