"""
Shared fixtures: fake providers, an in-memory SQLite ledger database and a
fully wired engine with no network access.
"""

import os

# Before any lingobridge import: no log files, quiet console, local-only stores
os.environ.setdefault("LOG_FILES", "false")
os.environ.setdefault("LOG_CONSOLE", "false")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from lingobridge.billing.ledger import CreditLedger
from lingobridge.billing.usage_tracker import UsageTracker
from lingobridge.cache.stores import MemoryCacheStore
from lingobridge.cache.translation_cache import TranslationCache
from lingobridge.database.session_manager import SessionManager
from lingobridge.providers.base_provider import TranslationProvider
from lingobridge.providers.health_monitor import ProviderHealthStore
from lingobridge.routing.translation_router import TranslationRouter
from lingobridge.services.translation_engine import TranslationEngine
from lingobridge.translation.context_manager import ContextManager
from lingobridge.translation.models import LanguageDetectionResult, TranslationRequest, TranslationResponse
from lingobridge.utils.circuit_breaker import CircuitBreaker
from lingobridge.utils.constants import LanguageFamily, TextComplexity


# ============================================================================
# FAKES
# ============================================================================

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(TranslationProvider):
    """
    In-memory provider. Translates to "<target>:<text>" unless `fail_with`
    is set, in which case every call raises it.
    """

    def __init__(
        self,
        provider_id: str = "fake",
        cost_per_unit: Decimal = Decimal("0.00002"),
        supported_languages=frozenset(),
        language_affinity: Optional[Dict[LanguageFamily, int]] = None,
        complexity_fit: Optional[Dict[TextComplexity, int]] = None,
        quality_score: float = 0.9,
        fail_with: Optional[BaseException] = None,
        delay: float = 0.0,
    ):
        self.provider_id = provider_id
        super().__init__(api_key="test-key", model_name=f"{provider_id}-model")
        self.cost_per_unit = cost_per_unit
        self.supported_languages = frozenset(supported_languages)
        self.language_affinity = language_affinity or {}
        self.complexity_fit = complexity_fit or {}
        self.quality_score = quality_score
        self.fail_with = fail_with
        self.delay = delay
        self.probe_error: Optional[BaseException] = None
        self.calls: List[TranslationRequest] = []
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def translate(self, request: TranslationRequest) -> TranslationResponse:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return self._build_response(request, f"{request.target_lang}:{request.text}")

    async def detect_language(self, text: str) -> LanguageDetectionResult:
        if self.fail_with is not None:
            raise self.fail_with
        return LanguageDetectionResult(language="en", confidence=0.8, source=self.provider_id)

    async def _probe(self) -> None:
        if self.probe_error is not None:
            raise self.probe_error


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_manager():
    manager = SessionManager("sqlite:///:memory:")
    manager.create_all()
    yield manager
    manager.close()


@pytest.fixture
def detector():
    """Language detector stub that always answers English."""
    stub = MagicMock()
    stub.detect = AsyncMock(return_value=LanguageDetectionResult(language="en", confidence=0.99))
    return stub


def make_engine(
    session_manager: SessionManager,
    providers: List[TranslationProvider],
    detector,
    circuit_breaker: Optional[CircuitBreaker] = None,
    ledger: Optional[CreditLedger] = None,
) -> TranslationEngine:
    circuit_breaker = circuit_breaker or CircuitBreaker()
    router = TranslationRouter(providers, circuit_breaker, ProviderHealthStore())
    return TranslationEngine(
        router=router,
        cache=TranslationCache(MemoryCacheStore(), session_manager),
        context_manager=ContextManager(),
        ledger=ledger or CreditLedger(session_manager),
        usage_tracker=UsageTracker(session_manager, batch_size=10, flush_interval=0.05),
        language_detector=detector,
    )


@pytest.fixture
def providers():
    return [FakeProvider("alpha"), FakeProvider("beta")]


@pytest.fixture
def engine(session_manager, providers, detector):
    return make_engine(session_manager, providers, detector)
