import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List

from lingobridge.utils.logger.custom_logging import LoggerMixin


@dataclass(frozen=True)
class LowBalanceEvent:
    workspace_id: str
    balance: Decimal
    threshold: Decimal
    currency: str = "EUR"
    created_at: datetime = field(default_factory=datetime.utcnow)


class BillingNotifier(LoggerMixin):
    """
    In-process pub/sub for billing events. Every subscriber gets its own
    bounded queue; a full queue drops the event for that subscriber only.
    """

    def __init__(self, max_queue_size: int = 100):
        super().__init__()
        self.max_queue_size = max_queue_size
        self._subscribers: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: LowBalanceEvent) -> None:
        self.logger.warning(
            f"[BILLING] Low balance for {event.workspace_id}: {event.balance} {event.currency} "
            f"(threshold {event.threshold})"
        )
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.logger.warning(f"[BILLING] Subscriber queue full, dropped event for {event.workspace_id}")
