import asyncio
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Mapping, Sequence

from lingobridge.providers.base_provider import ProviderHealth, TranslationProvider
from lingobridge.utils.constants import HealthStatus
from lingobridge.utils.logger.custom_logging import LoggerMixin


class ProviderHealthStore:
    """
    Latest health snapshot per provider.

    Written by one poller, read by every request. A poll replaces the whole
    read-only mapping in a single assignment, so readers never observe a
    half-updated map and need no lock. Providers that have not been polled
    yet are reported healthy and available.
    """

    def __init__(self):
        self._snapshot: Mapping[str, ProviderHealth] = MappingProxyType({})

    def get(self, provider_id: str) -> ProviderHealth:
        return self._snapshot.get(provider_id) or ProviderHealth(provider_id=provider_id)

    def snapshot(self) -> Mapping[str, ProviderHealth]:
        return self._snapshot

    def publish(self, health: Mapping[str, ProviderHealth]) -> None:
        self._snapshot = MappingProxyType(dict(health))


class HealthMonitor(LoggerMixin):
    """Polls every provider concurrently and publishes one snapshot per round."""

    def __init__(
        self,
        providers: Sequence[TranslationProvider],
        store: ProviderHealthStore,
        interval: float = 60.0,
        check_timeout: float = 10.0,
    ):
        super().__init__()
        self.providers = list(providers)
        self.store = store
        self.interval = interval
        self.check_timeout = check_timeout

    async def _check(self, provider: TranslationProvider) -> ProviderHealth:
        try:
            return await asyncio.wait_for(provider.health_check(), timeout=self.check_timeout)
        except asyncio.TimeoutError:
            return ProviderHealth(
                provider_id=provider.provider_id,
                status=HealthStatus.UNHEALTHY,
                available=True,
                last_check=datetime.now(timezone.utc),
                last_error=f"health check timed out after {self.check_timeout:.1f}s",
            )

    async def poll_once(self) -> Dict[str, ProviderHealth]:
        results = await asyncio.gather(*(self._check(p) for p in self.providers))
        health = {result.provider_id: result for result in results}

        previous = self.store.snapshot()
        for provider_id, current in health.items():
            before = previous.get(provider_id)
            if before is None or before.status != current.status or before.available != current.available:
                log = self.logger.info if current.status == HealthStatus.HEALTHY else self.logger.warning
                log(
                    f"[HEALTH] {provider_id}: {current.status.value} "
                    f"(available={current.available}, error={current.last_error})"
                )

        self.store.publish(health)
        return health
