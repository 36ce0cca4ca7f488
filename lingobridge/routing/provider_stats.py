from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class ProviderStats:
    """Live counters for one provider, kept by the router."""
    provider_id: str
    max_concurrent: int
    in_flight: int = 0
    total_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: float = 0.0

    @property
    def saturated(self) -> bool:
        return self.in_flight >= self.max_concurrent

    @property
    def success_rate(self) -> float:
        if not self.total_requests:
            return 1.0
        return round((self.total_requests - self.failed_requests) / self.total_requests, 4)

    @property
    def average_latency_ms(self) -> float:
        succeeded = self.total_requests - self.failed_requests
        return round(self.total_latency_ms / succeeded, 2) if succeeded else 0.0

    def record_success(self, latency_ms: float) -> None:
        self.total_requests += 1
        self.total_latency_ms += latency_ms

    def record_failure(self) -> None:
        self.total_requests += 1
        self.failed_requests += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "in_flight": self.in_flight,
            "max_concurrent": self.max_concurrent,
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "success_rate": self.success_rate,
            "average_latency_ms": self.average_latency_ms,
        }
