import asyncio
import uuid
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from lingobridge.database.repository.usage_repository import UsageRepository
from lingobridge.database.session_manager import SessionManager
from lingobridge.utils.logger.custom_logging import LoggerMixin


class UsageEvent(BaseModel):
    """One translation, billed or not. `id` makes re-delivered events harmless."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    workspace_id: str
    user_id: Optional[str] = None
    channel_id: Optional[str] = None
    message_id: Optional[str] = None
    request_id: Optional[str] = None
    source_lang: Optional[str] = None
    target_lang: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    characters: int = 0
    tokens_used: int = 0
    cost: Decimal = Decimal("0")
    response_time_ms: int = 0
    cache_hit: bool = False
    status: str = "success"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class UsageTracker(LoggerMixin):
    """
    Buffered usage recording.

    `track_usage` never blocks a translation: events go onto a bounded
    asyncio.Queue and a single background flusher writes them in batches,
    as soon as `batch_size` events are waiting or `flush_interval` seconds
    after the first one, whichever comes first. A batch that fails to write
    is kept and retried with the next one.

    Args:
        session_manager: Usage database
        batch_size: Events per write
        flush_interval: Max seconds an event waits before being written
        max_queue_size: Events beyond this are dropped with an error log
        retry_delay: Pause after a failed write
    """

    def __init__(
        self,
        session_manager: SessionManager,
        batch_size: int = 100,
        flush_interval: float = 5.0,
        max_queue_size: int = 10_000,
        retry_delay: float = 1.0,
    ):
        super().__init__()
        self.session_manager = session_manager
        self.batch_size = max(1, batch_size)
        self.flush_interval = flush_interval
        self.retry_delay = retry_delay
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._buffer: List[UsageEvent] = []
        self._write_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0

    # ========================================================================
    # PRODUCER SIDE
    # ========================================================================

    def track_usage(self, event: UsageEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            self.logger.error(
                f"[USAGE] Queue full, dropped usage event {event.id} for {event.workspace_id}"
            )

    @property
    def pending(self) -> int:
        return self._queue.qsize() + len(self._buffer)

    # ========================================================================
    # FLUSHER
    # ========================================================================

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="usage-flusher")

    async def stop(self) -> None:
        """Stop the flusher and write whatever is still pending."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()

    async def _run(self) -> None:
        while True:
            await self._fill_buffer()
            async with self._write_lock:
                batch, self._buffer = self._buffer, []
                try:
                    written = await self._write_batch(batch) if batch else True
                except asyncio.CancelledError:
                    # Rewriting a batch that did commit is harmless, ids are unique
                    self._buffer = batch + self._buffer
                    raise
            if not written:
                await asyncio.sleep(self.retry_delay)

    async def _fill_buffer(self) -> None:
        loop = asyncio.get_running_loop()
        if not self._buffer:
            self._buffer.append(await self._queue.get())
        deadline = loop.time() + self.flush_interval
        while len(self._buffer) < self.batch_size:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                self._buffer.append(await asyncio.wait_for(self._queue.get(), timeout=remaining))
            except asyncio.TimeoutError:
                break

    async def flush(self) -> int:
        """
        Write everything queued right now.

        Returns:
            Number of events written; stops at the first failed batch
        """
        written = 0
        async with self._write_lock:
            while True:
                batch, self._buffer = self._buffer, []
                while len(batch) < self.batch_size and not self._queue.empty():
                    batch.append(self._queue.get_nowait())
                if not batch:
                    break
                if not await self._write_batch(batch):
                    break
                written += len(batch)
        return written

    async def _write_batch(self, batch: List[UsageEvent]) -> bool:
        records = [event.model_dump() for event in batch]

        def _persist() -> int:
            with self.session_manager.create_session() as session:
                repository = UsageRepository(session)
                inserted = repository.insert_records_ignore_existing(records)
                by_day: Dict[Tuple[str, date], List[Dict[str, Any]]] = defaultdict(list)
                for record in inserted:
                    by_day[(record["workspace_id"], record["created_at"].date())].append(record)
                for (workspace_id, day), day_records in sorted(by_day.items()):
                    repository.add_to_daily_aggregate(workspace_id, day, day_records)
                return len(inserted)

        try:
            inserted = await self.session_manager.run(_persist)
        except Exception as e:
            # Keep the batch; ids make the retry idempotent
            self._buffer = batch + self._buffer
            self.logger.error(f"[USAGE] Failed to write {len(batch)} usage events, will retry: {e}")
            return False

        self.logger.debug(f"[USAGE] Wrote {inserted}/{len(batch)} usage events")
        return True

    # ========================================================================
    # READS
    # ========================================================================

    async def get_daily_usage(self, workspace_id: str, day: Optional[date] = None) -> Optional[Dict[str, Any]]:
        day = day or datetime.utcnow().date()

        def _load() -> Optional[Dict[str, Any]]:
            with self.session_manager.create_session() as session:
                aggregate = UsageRepository(session).get_daily_aggregate(workspace_id, day)
                return aggregate.to_dict() if aggregate else None

        return await self.session_manager.run(_load)

    async def get_usage_range(self, workspace_id: str, start: date, end: date) -> List[Dict[str, Any]]:
        def _load() -> List[Dict[str, Any]]:
            with self.session_manager.create_session() as session:
                return [a.to_dict() for a in UsageRepository(session).list_daily_aggregates(workspace_id, start, end)]

        return await self.session_manager.run(_load)
