"""
Translation Engine - the request path that ties everything together

    cache -> channel context -> source detection -> same-language no-op
          -> funds pre-check -> router with fallback -> cache put
          -> debit -> usage event

Only the router (via degraded mode) and the ledger produce failures here;
provider and circuit errors never reach the caller. When every provider
fails the engine answers with a stale cached translation or the original
text, flagged `metadata.degraded`, and charges nothing.
"""

import time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from lingobridge.billing.ledger import CreditLedger
from lingobridge.billing.notifier import BillingNotifier
from lingobridge.billing.payment_gateway import HttpPaymentGateway, PaymentGateway
from lingobridge.billing.usage_tracker import UsageEvent, UsageTracker
from lingobridge.cache.stores import MemoryCacheStore, RedisCacheStore
from lingobridge.cache.translation_cache import TranslationCache, make_cache_key
from lingobridge.core.logging import RequestContext
from lingobridge.database.session_manager import SessionManager
from lingobridge.providers.base_provider import TranslationProvider
from lingobridge.providers.health_monitor import HealthMonitor, ProviderHealthStore
from lingobridge.providers.provider_factory import ProviderFactory
from lingobridge.routing.scoring import ScoringWeights
from lingobridge.routing.translation_router import TranslationRouter
from lingobridge.services.background_tasks import BackgroundTaskManager
from lingobridge.translation.context_manager import ChannelMessage, ContextManager
from lingobridge.translation.language_detector import LanguageDetector
from lingobridge.translation.models import (
    LanguageDetectionResult,
    ResponseMetadata,
    TranslationCost,
    TranslationRequest,
    TranslationResponse,
)
from lingobridge.utils.circuit_breaker import CircuitBreaker
from lingobridge.utils.config import Settings
from lingobridge.utils.constants import AUTO_LANGUAGE, UNKNOWN_LANGUAGE
from lingobridge.utils.exceptions import (
    AllProvidersFailedError,
    IdempotencyConflictError,
    InsufficientCreditsError,
    LedgerWriteError,
    TranslationValidationError,
)
from lingobridge.utils.logger.custom_logging import LoggerMixin, get_logger


NO_PROVIDER = "none"

# Hex digits of the request fingerprint appended to debit keys
FINGERPRINT_LENGTH = 16

reconciliation_logger = get_logger("lingobridge.billing.reconciliation")


def same_language(source_lang: str, target_lang: str) -> bool:
    """`en` matches `en-us`; `pt-br` and `pt-pt` are different languages."""
    if source_lang == target_lang:
        return True
    source_base, _, source_region = source_lang.partition("-")
    target_base, _, target_region = target_lang.partition("-")
    return source_base == target_base and not (source_region and target_region)


class TranslationEngine(LoggerMixin):

    def __init__(
        self,
        router: TranslationRouter,
        cache: TranslationCache,
        context_manager: ContextManager,
        ledger: CreditLedger,
        usage_tracker: UsageTracker,
        language_detector: LanguageDetector,
        health_monitor: Optional[HealthMonitor] = None,
        background_tasks: Optional[BackgroundTaskManager] = None,
        session_manager: Optional[SessionManager] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        request_deadline: float = 30.0,
        context_sweep_interval: float = 60.0,
        cache_warmup_min_hits: int = 5,
        cache_warmup_limit: int = 1000,
        cache_cleanup_interval: float = 24 * 60 * 60,
    ):
        super().__init__()
        self.router = router
        self.cache = cache
        self.context_manager = context_manager
        self.ledger = ledger
        self.usage_tracker = usage_tracker
        self.language_detector = language_detector
        self.health_monitor = health_monitor
        self.background_tasks = background_tasks or BackgroundTaskManager()
        self.session_manager = session_manager
        self.payment_gateway = payment_gateway
        self.request_deadline = request_deadline
        self.context_sweep_interval = context_sweep_interval
        self.cache_warmup_min_hits = cache_warmup_min_hits
        self.cache_warmup_limit = cache_warmup_limit
        self.cache_cleanup_interval = cache_cleanup_interval
        self._started = False

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> None:
        if self._started:
            return
        for provider in self.router.providers:
            try:
                await provider.initialize()
            except Exception as e:
                self.logger.error(f"[ENGINE] Failed to initialize {provider.provider_id}: {e}")

        if self.health_monitor is not None and self.health_monitor.providers:
            self.background_tasks.schedule_periodic(
                "health-poller", self.health_monitor.poll_once, self.health_monitor.interval
            )
        self.background_tasks.schedule_periodic(
            "context-sweep", self._sweep_contexts, self.context_sweep_interval, run_immediately=False
        )
        self.background_tasks.schedule_periodic(
            "cache-cleanup", self.cache.cleanup_expired, self.cache_cleanup_interval, run_immediately=False
        )
        self.background_tasks.schedule_once_nowait(
            "cache-warmup",
            lambda: self.cache.warm_up(self.cache_warmup_min_hits, self.cache_warmup_limit),
        )
        self.usage_tracker.start()
        self._started = True
        self.logger.info(f"[ENGINE] Started with providers {[p.provider_id for p in self.router.providers]}")

    async def stop(self) -> None:
        await self.background_tasks.shutdown()
        await self.usage_tracker.stop()
        await self.cache.close()
        for provider in self.router.providers:
            try:
                await provider.close()
            except Exception as e:
                self.logger.warning(f"[ENGINE] Error closing {provider.provider_id}: {e}")
        if self.payment_gateway is not None:
            await self.payment_gateway.close()
        if self.session_manager is not None:
            self.session_manager.close()
        self._started = False
        self.logger.info("[ENGINE] Stopped")

    async def _sweep_contexts(self) -> None:
        self.context_manager.evict_inactive()

    # ========================================================================
    # TRANSLATION
    # ========================================================================

    async def translate(self, request: Union[TranslationRequest, Dict[str, Any]]) -> TranslationResponse:
        """
        Raises:
            TranslationValidationError: malformed request
            InsufficientCreditsError: the workspace cannot pay; no provider was called
            LedgerWriteError: the ledger was unreachable before any provider call
        """
        request = self._validate(request)
        async with RequestContext(request_id=request.request_id):
            return await self._translate(request)

    @staticmethod
    def _validate(request: Union[TranslationRequest, Dict[str, Any]]) -> TranslationRequest:
        if isinstance(request, TranslationRequest):
            return request
        try:
            return TranslationRequest.model_validate(request)
        except ValidationError as e:
            raise TranslationValidationError(str(e)) from e

    async def _translate(self, request: TranslationRequest) -> TranslationResponse:
        started = time.perf_counter()
        deadline = self.router.deadline_in(self.request_deadline)

        channel_context = ""
        if request.channel_id:
            channel_context = await self.context_manager.get_context(request.channel_id)
            await self.context_manager.add_message(
                request.channel_id,
                ChannelMessage(
                    text=request.text,
                    user_id=request.user_id,
                    message_id=request.message_id,
                    timestamp=time.time(),
                ),
            )

        cache_keys = [make_cache_key(request.text, request.source_lang, request.target_lang, request.context)]
        cached = await self.cache.get(cache_keys[0])
        if cached is not None:
            return self._finish_cache_hit(request, cached, started)

        source_lang = request.source_lang
        if source_lang == AUTO_LANGUAGE:
            detection = await self.detect_language(request.text)
            if detection.language != UNKNOWN_LANGUAGE:
                source_lang = detection.language
                cache_keys.append(
                    make_cache_key(request.text, source_lang, request.target_lang, request.context)
                )
                cached = await self.cache.get(cache_keys[1])
                if cached is not None:
                    return self._finish_cache_hit(request, cached, started)

        if source_lang != AUTO_LANGUAGE and same_language(source_lang, request.target_lang):
            return self._finish_no_op(request, source_lang, started)

        merged_context = "\n".join(part for part in (request.context, channel_context) if part) or None
        routed = request.model_copy(update={"source_lang": source_lang, "context": merged_context})

        estimate = self.router.estimate_cost(routed)
        await self.ledger.ensure_funds(request.workspace_id, estimate.amount)

        try:
            response = await self.router.translate_with_fallback(routed, deadline=deadline)
        except AllProvidersFailedError as e:
            return await self._finish_degraded(request, source_lang, cache_keys, e, started)

        for key in cache_keys:
            await self.cache.put(key, response)

        await self._charge(request, response, fingerprint=cache_keys[0])

        response.metadata = response.metadata.model_copy(update={
            "request_id": request.request_id,
            "duration_ms": self._elapsed_ms(started),
            "cache_hit": False,
            "degraded": False,
        })
        self._track(request, response, status="success")
        return response

    async def _charge(self, request: TranslationRequest, response: TranslationResponse, fingerprint: str) -> None:
        """
        Debit the actual cost. The translation has already happened, so a
        failed debit is logged as a reconciliation item instead of failing
        the request.

        The debit key binds the caller's request id to the request content:
        a retried request is booked once, a reused id with other text is a
        new booking.
        """
        amount = response.cost.amount
        if amount <= 0:
            return
        description = f"Translation {response.source_lang}->{response.target_lang} via {response.provider}"
        try:
            await self.ledger.deduct_credits(
                request.workspace_id,
                amount,
                description=description,
                request_id=f"{request.request_id}:{fingerprint[:FINGERPRINT_LENGTH]}",
            )
        except (LedgerWriteError, InsufficientCreditsError, IdempotencyConflictError) as e:
            reconciliation_logger.error(
                f"[RECONCILIATION] Unbilled translation workspace={request.workspace_id} "
                f"request_id={request.request_id} amount={amount} {response.cost.currency} "
                f"provider={response.provider} reason={type(e).__name__}: {e}"
            )

    def _finish_cache_hit(
        self,
        request: TranslationRequest,
        cached: TranslationResponse,
        started: float,
    ) -> TranslationResponse:
        response = cached.model_copy(update={
            # Paid for by the request that filled the cache
            "cost": cached.cost.model_copy(update={"amount": Decimal("0")}),
            "metadata": ResponseMetadata(
                request_id=request.request_id,
                duration_ms=self._elapsed_ms(started),
                cache_hit=True,
            ),
        })
        self.logger.debug(f"[ENGINE] Cache hit {response.source_lang}->{response.target_lang}")
        self._track(request, response, status="success")
        return response

    def _finish_no_op(self, request: TranslationRequest, source_lang: str, started: float) -> TranslationResponse:
        response = TranslationResponse(
            translated_text=request.text,
            original_text=request.text,
            source_lang=source_lang,
            target_lang=request.target_lang,
            confidence=1.0,
            provider=NO_PROVIDER,
            model=NO_PROVIDER,
            cost=TranslationCost(currency=self.ledger.currency),
            metadata=ResponseMetadata(request_id=request.request_id, duration_ms=self._elapsed_ms(started)),
        )
        self._track(request, response, status="success")
        return response

    async def _finish_degraded(
        self,
        request: TranslationRequest,
        source_lang: str,
        cache_keys: List[str],
        error: AllProvidersFailedError,
        started: float,
    ) -> TranslationResponse:
        self.logger.warning(f"[ENGINE] Degraded response for request {request.request_id}: {error}")

        stale = None
        for key in cache_keys:
            stale = await self.cache.get_stale(key)
            if stale is not None:
                break

        metadata = ResponseMetadata(
            request_id=request.request_id,
            duration_ms=self._elapsed_ms(started),
            cache_hit=stale is not None,
            degraded=True,
            attempts=list(error.errors),
        )
        if stale is not None:
            response = stale.model_copy(update={
                "cost": stale.cost.model_copy(update={"amount": Decimal("0")}),
                "metadata": metadata,
            })
        else:
            response = TranslationResponse(
                translated_text=request.text,
                original_text=request.text,
                source_lang=source_lang,
                target_lang=request.target_lang,
                confidence=0.0,
                provider=NO_PROVIDER,
                model=NO_PROVIDER,
                cost=TranslationCost(currency=self.ledger.currency),
                metadata=metadata,
            )
        self._track(request, response, status="degraded")
        return response

    def _track(self, request: TranslationRequest, response: TranslationResponse, status: str) -> None:
        self.usage_tracker.track_usage(
            UsageEvent(
                workspace_id=request.workspace_id,
                user_id=request.user_id,
                channel_id=request.channel_id,
                message_id=request.message_id,
                request_id=request.request_id,
                source_lang=response.source_lang,
                target_lang=response.target_lang,
                provider=None if response.provider == NO_PROVIDER else response.provider,
                model=None if response.model == NO_PROVIDER else response.model,
                characters=len(request.text),
                tokens_used=response.cost.units_used,
                cost=response.cost.amount if not response.metadata.cache_hit else Decimal("0"),
                response_time_ms=int(response.metadata.duration_ms),
                cache_hit=response.metadata.cache_hit,
                status=status,
            )
        )

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)

    # ========================================================================
    # DETECTION / STATUS
    # ========================================================================

    async def detect_language(self, text: str) -> LanguageDetectionResult:
        """Local detection first, then providers; "und" when nobody can tell."""
        return await self.language_detector.detect(text, fallback=self.router.detect_language_with_fallback)

    def get_provider_status(self) -> List[Dict[str, Any]]:
        return [
            {
                **self.router.health_store.get(provider.provider_id).to_dict(),
                "circuit": self.router.circuit_breaker.snapshot(provider.provider_id).to_dict(),
                "load": self.router.get_provider_stats(provider.provider_id),
            }
            for provider in self.router.providers
        ]


# ============================================================================
# WIRING
# ============================================================================

def build_engine(settings: Settings, providers: Optional[List[TranslationProvider]] = None) -> TranslationEngine:
    """Build the engine and its collaborators from configuration."""
    session_manager = SessionManager(settings.DATABASE_URL, settings.DB_POOL_SIZE, settings.DB_MAX_OVERFLOW)
    session_manager.create_all()

    if settings.CACHE_BACKEND == "redis":
        store = RedisCacheStore(
            RedisCacheStore.make_url(settings.REDIS_HOST, settings.REDIS_PORT, settings.REDIS_DB, settings.REDIS_PASSWORD)
        )
    else:
        store = MemoryCacheStore(max_entries=settings.CACHE_MAX_ENTRIES)
    cache = TranslationCache(store, session_manager, ttl=settings.CACHE_TTL_TRANSLATION)

    if providers is None:
        providers = ProviderFactory.create_from_settings(settings)
    circuit_breaker = CircuitBreaker(
        failure_threshold=settings.CB_FAILURE_THRESHOLD,
        reset_timeout=settings.CB_RESET_TIMEOUT_MS / 1000,
        success_threshold=settings.CB_SUCCESS_THRESHOLD,
        half_open_max_requests=settings.CB_HALF_OPEN_MAX_REQUESTS,
        call_timeout=settings.CB_CALL_TIMEOUT_MS / 1000,
    )
    health_store = ProviderHealthStore()
    health_monitor = HealthMonitor(providers, health_store, interval=settings.HEALTH_CHECK_INTERVAL_SECONDS)
    router = TranslationRouter(
        providers,
        circuit_breaker,
        health_store,
        weights=ScoringWeights(**settings.ROUTING_WEIGHTS),
        max_concurrent=settings.PROVIDER_MAX_CONCURRENT,
        call_timeout=settings.CB_CALL_TIMEOUT_MS / 1000,
        request_deadline=settings.REQUEST_DEADLINE_MS / 1000,
    )

    payment_gateway = None
    if settings.PAYMENT_API_URL:
        payment_gateway = HttpPaymentGateway(settings.PAYMENT_API_URL, settings.PAYMENT_API_KEY)
    ledger = CreditLedger(
        session_manager,
        currency=settings.BILLING_CURRENCY,
        starting_balance=settings.FREEMIUM_STARTING_BALANCE,
        payment_gateway=payment_gateway,
        notifier=BillingNotifier(),
        auto_recharge=settings.AUTO_RECHARGE_ENABLED,
        recharge_threshold=settings.AUTO_RECHARGE_THRESHOLD,
        recharge_amount=settings.AUTO_RECHARGE_AMOUNT,
        write_retries=settings.LEDGER_WRITE_RETRIES,
    )
    usage_tracker = UsageTracker(
        session_manager,
        batch_size=settings.USAGE_FLUSH_BATCH_SIZE,
        flush_interval=settings.USAGE_FLUSH_INTERVAL_SECONDS,
    )
    context_manager = ContextManager(
        max_messages=settings.CONTEXT_MAX_MESSAGES,
        inactivity_timeout=settings.CONTEXT_INACTIVITY_TIMEOUT_SECONDS,
    )

    return TranslationEngine(
        router=router,
        cache=cache,
        context_manager=context_manager,
        ledger=ledger,
        usage_tracker=usage_tracker,
        language_detector=LanguageDetector(),
        health_monitor=health_monitor,
        session_manager=session_manager,
        payment_gateway=payment_gateway,
        request_deadline=settings.REQUEST_DEADLINE_MS / 1000,
        context_sweep_interval=settings.CONTEXT_SWEEP_INTERVAL_SECONDS,
        cache_warmup_min_hits=settings.CACHE_WARMUP_MIN_HITS,
        cache_warmup_limit=settings.CACHE_WARMUP_LIMIT,
    )
