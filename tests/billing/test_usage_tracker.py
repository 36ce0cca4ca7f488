import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from lingobridge.billing.usage_tracker import UsageEvent, UsageTracker


def usage_event(**overrides):
    fields = dict(
        workspace_id="ws-1",
        user_id="U1",
        source_lang="en",
        target_lang="es",
        provider="deepl",
        model="deepl-v2",
        characters=11,
        cost=Decimal("0.000525"),
        response_time_ms=120,
    )
    fields.update(overrides)
    return UsageEvent(**fields)


async def wait_for_usage(tracker, workspace_id="ws-1", expected=1, attempts=100):
    for _ in range(attempts):
        usage = await tracker.get_daily_usage(workspace_id)
        if usage and usage["translation_count"] >= expected:
            return usage
        await asyncio.sleep(0.02)
    return await tracker.get_daily_usage(workspace_id)


# ============================================================================
# EXPLICIT FLUSH
# ============================================================================

class TestFlush:

    @pytest.mark.asyncio
    async def test_flush_writes_records_and_daily_rollup(self, session_manager):
        tracker = UsageTracker(session_manager)
        tracker.track_usage(usage_event())
        tracker.track_usage(usage_event(user_id="U2", cache_hit=True, provider="openai", cost=Decimal("0")))
        tracker.track_usage(usage_event(target_lang="de", status="degraded", provider="none"))

        assert tracker.pending == 3
        assert await tracker.flush() == 3
        assert tracker.pending == 0

        usage = await tracker.get_daily_usage("ws-1")
        assert usage["translation_count"] == 3
        assert usage["unique_users"] == 2
        assert usage["total_characters"] == 33
        assert Decimal(usage["total_cost"]) == Decimal("0.00105")
        assert usage["cache_hits"] == 1
        assert usage["cache_hit_rate"] == pytest.approx(0.3333)
        assert usage["error_count"] == 1
        assert usage["language_pairs"] == {"en-es": 2, "en-de": 1}
        assert usage["providers"] == {"deepl": 1, "openai": 1, "none": 1}

    @pytest.mark.asyncio
    async def test_redelivered_events_count_once(self, session_manager):
        tracker = UsageTracker(session_manager)
        event = usage_event(id="req-1")
        tracker.track_usage(event)
        tracker.track_usage(event)

        await tracker.flush()
        tracker.track_usage(event)
        await tracker.flush()

        usage = await tracker.get_daily_usage("ws-1")
        assert usage["translation_count"] == 1

    @pytest.mark.asyncio
    async def test_rollup_accumulates_across_batches(self, session_manager):
        tracker = UsageTracker(session_manager)
        tracker.track_usage(usage_event(response_time_ms=100))
        await tracker.flush()
        tracker.track_usage(usage_event(user_id="U2", response_time_ms=300, provider="openai"))
        tracker.track_usage(usage_event(response_time_ms=200, cache_hit=True, cost=Decimal("0")))
        await tracker.flush()

        usage = await tracker.get_daily_usage("ws-1")
        assert usage["translation_count"] == 3
        assert usage["unique_users"] == 2
        assert usage["avg_response_time_ms"] == 200.0
        assert Decimal(usage["total_cost"]) == Decimal("0.00105")
        assert usage["cache_hit_rate"] == pytest.approx(0.3333)
        assert usage["providers"] == {"deepl": 2, "openai": 1}
        assert usage["language_pairs"] == {"en-es": 3}

    @pytest.mark.asyncio
    async def test_failed_batch_is_kept_for_retry(self, session_manager):
        tracker = UsageTracker(session_manager)
        tracker.track_usage(usage_event())
        tracker.track_usage(usage_event())

        broken = MagicMock()
        broken.run = AsyncMock(side_effect=RuntimeError("database unavailable"))
        tracker.session_manager = broken

        assert await tracker.flush() == 0
        assert tracker.pending == 2

        tracker.session_manager = session_manager
        assert await tracker.flush() == 2
        assert (await tracker.get_daily_usage("ws-1"))["translation_count"] == 2

    @pytest.mark.asyncio
    async def test_full_queue_drops_events(self, session_manager):
        tracker = UsageTracker(session_manager, max_queue_size=2)
        for _ in range(3):
            tracker.track_usage(usage_event())

        assert tracker.pending == 2
        assert tracker.dropped == 1

    @pytest.mark.asyncio
    async def test_usage_range(self, session_manager):
        tracker = UsageTracker(session_manager)
        today = datetime.utcnow()
        yesterday = today - timedelta(days=1)
        tracker.track_usage(usage_event(created_at=yesterday))
        tracker.track_usage(usage_event(created_at=today))
        tracker.track_usage(usage_event(created_at=today))
        await tracker.flush()

        days = await tracker.get_usage_range("ws-1", yesterday.date(), today.date())

        assert [d["translation_count"] for d in days] == [1, 2]
        assert await tracker.get_daily_usage("other-ws") is None


# ============================================================================
# BACKGROUND FLUSHER
# ============================================================================

class TestBackgroundFlusher:

    @pytest.mark.asyncio
    async def test_full_batch_is_written_without_waiting_for_interval(self, session_manager):
        tracker = UsageTracker(session_manager, batch_size=2, flush_interval=60)
        tracker.start()
        try:
            tracker.track_usage(usage_event())
            tracker.track_usage(usage_event())

            usage = await wait_for_usage(tracker, expected=2)
            assert usage["translation_count"] == 2
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_partial_batch_is_written_after_interval(self, session_manager):
        tracker = UsageTracker(session_manager, batch_size=100, flush_interval=0.05)
        tracker.start()
        try:
            tracker.track_usage(usage_event())

            usage = await wait_for_usage(tracker, expected=1)
            assert usage["translation_count"] == 1
        finally:
            await tracker.stop()

    @pytest.mark.asyncio
    async def test_stop_writes_pending_events(self, session_manager):
        tracker = UsageTracker(session_manager, batch_size=100, flush_interval=60)
        tracker.start()
        tracker.track_usage(usage_event())
        tracker.track_usage(usage_event())
        await asyncio.sleep(0)

        await tracker.stop()

        assert tracker.pending == 0
        assert (await tracker.get_daily_usage("ws-1"))["translation_count"] == 2
