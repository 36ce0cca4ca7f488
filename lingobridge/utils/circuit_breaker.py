import asyncio
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from lingobridge.utils.exceptions import CircuitOpenError, ProviderError, ProviderTimeoutError
from lingobridge.utils.logger.custom_logging import LoggerMixin

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"       # Normal - calls pass through
    OPEN = "open"           # Failing - calls rejected
    HALF_OPEN = "half_open" # Testing - limited trial calls allowed


@dataclass(frozen=True)
class CircuitStats:
    """
    Immutable snapshot of one provider's circuit.

    The breaker never mutates a snapshot; every transition builds a new one
    and swaps it into the map, so readers always see a consistent record.
    Timestamps come from the breaker's clock (monotonic by default).
    """
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_at: Optional[float] = None
    last_success_at: Optional[float] = None
    next_attempt_at: Optional[float] = None
    half_open_in_flight: int = 0
    total_requests: int = 0
    total_rejections: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_at": self.last_failure_at,
            "last_success_at": self.last_success_at,
            "next_attempt_at": self.next_attempt_at,
            "total_requests": self.total_requests,
            "total_rejections": self.total_rejections,
        }


class CircuitBreaker(LoggerMixin):
    """
    Per-provider circuit breaker.

    - CLOSED: each transient failure increments failure_count, a success
      resets it; reaching failure_threshold opens the circuit and schedules
      next_attempt_at = now + reset_timeout.
    - OPEN: calls are rejected with CircuitOpenError until next_attempt_at,
      then the circuit moves to HALF_OPEN.
    - HALF_OPEN: at most half_open_max_requests trial calls run at once;
      success_threshold successes close the circuit, any failure reopens it.

    Only transient failures are counted. Fatal provider errors point at
    configuration problems, not unavailability, and leave the circuit alone.

    Args:
        failure_threshold: Consecutive transient failures before opening
        reset_timeout: Seconds before a trial call is allowed (OPEN -> HALF_OPEN)
        success_threshold: Trial successes needed to close the circuit
        half_open_max_requests: Concurrent trial calls allowed in HALF_OPEN
        call_timeout: Default per-call timeout in seconds for `call`
        clock: Time source, injectable for tests
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        success_threshold: int = 2,
        half_open_max_requests: int = 1,
        call_timeout: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.success_threshold = success_threshold
        self.half_open_max_requests = half_open_max_requests
        self.call_timeout = call_timeout
        self._clock = clock
        self._circuits: Dict[str, CircuitStats] = {}
        self._lock = threading.RLock()

    # ========================================================================
    # READ SIDE
    # ========================================================================

    def snapshot(self, provider_id: str) -> CircuitStats:
        """Current snapshot; lock-free read of an immutable record."""
        return self._circuits.get(provider_id) or CircuitStats()

    def get_state(self, provider_id: str) -> CircuitState:
        return self.snapshot(provider_id).state

    def is_call_permitted(self, provider_id: str) -> bool:
        """
        Would a call be let through right now? Does not reserve a trial slot,
        so the router can filter candidates without side effects.
        """
        circuit = self.snapshot(provider_id)
        if circuit.state == CircuitState.CLOSED:
            return True
        if circuit.state == CircuitState.OPEN:
            return self._clock() >= (circuit.next_attempt_at or 0.0)
        return circuit.half_open_in_flight < self.half_open_max_requests

    def get_retry_after(self, provider_id: str) -> float:
        """Seconds until an OPEN circuit allows a trial call, 0 otherwise."""
        circuit = self.snapshot(provider_id)
        if circuit.state != CircuitState.OPEN or circuit.next_attempt_at is None:
            return 0.0
        return max(0.0, circuit.next_attempt_at - self._clock())

    def get_stats(self, provider_id: Optional[str] = None) -> Dict[str, Any]:
        if provider_id:
            return {provider_id: self.snapshot(provider_id).to_dict()}
        return {name: circuit.to_dict() for name, circuit in dict(self._circuits).items()}

    # ========================================================================
    # STATE TRANSITIONS
    # ========================================================================

    def allow_request(self, provider_id: str) -> bool:
        """
        Admit or reject a call. Admission in HALF_OPEN reserves a trial slot
        that must be released by record_success/record_failure/release.
        """
        with self._lock:
            circuit = self.snapshot(provider_id)
            now = self._clock()

            if circuit.state == CircuitState.OPEN:
                if now < (circuit.next_attempt_at or 0.0):
                    self._circuits[provider_id] = replace(
                        circuit, total_rejections=circuit.total_rejections + 1
                    )
                    return False
                circuit = replace(
                    circuit,
                    state=CircuitState.HALF_OPEN,
                    success_count=0,
                    half_open_in_flight=0,
                )
                self.logger.info(f"[CIRCUIT_BREAKER] {provider_id}: OPEN -> HALF_OPEN (testing recovery)")

            if circuit.state == CircuitState.HALF_OPEN:
                if circuit.half_open_in_flight >= self.half_open_max_requests:
                    self._circuits[provider_id] = replace(
                        circuit, total_rejections=circuit.total_rejections + 1
                    )
                    return False
                circuit = replace(circuit, half_open_in_flight=circuit.half_open_in_flight + 1)

            self._circuits[provider_id] = replace(circuit, total_requests=circuit.total_requests + 1)
            return True

    def record_success(self, provider_id: str) -> None:
        with self._lock:
            circuit = self.snapshot(provider_id)
            now = self._clock()

            if circuit.state == CircuitState.HALF_OPEN:
                successes = circuit.success_count + 1
                if successes >= self.success_threshold:
                    self._circuits[provider_id] = replace(
                        circuit,
                        state=CircuitState.CLOSED,
                        failure_count=0,
                        success_count=0,
                        next_attempt_at=None,
                        half_open_in_flight=0,
                        last_success_at=now,
                    )
                    self.logger.info(
                        f"[CIRCUIT_BREAKER] {provider_id}: HALF_OPEN -> CLOSED "
                        f"(recovered after {successes} successes)"
                    )
                    return
                self._circuits[provider_id] = replace(
                    circuit,
                    success_count=successes,
                    half_open_in_flight=max(0, circuit.half_open_in_flight - 1),
                    last_success_at=now,
                )
                return

            self._circuits[provider_id] = replace(
                circuit,
                failure_count=0,
                success_count=circuit.success_count + 1,
                last_success_at=now,
            )

    def record_failure(self, provider_id: str, error: Optional[BaseException] = None) -> None:
        """Count a transient failure."""
        with self._lock:
            circuit = self.snapshot(provider_id)
            now = self._clock()

            if circuit.state == CircuitState.HALF_OPEN:
                self._open(provider_id, circuit, now)
                self.logger.warning(
                    f"[CIRCUIT_BREAKER] {provider_id}: HALF_OPEN -> OPEN (recovery test failed). Error: {error}"
                )
                return

            failures = circuit.failure_count + 1
            circuit = replace(circuit, failure_count=failures, last_failure_at=now)

            if circuit.state == CircuitState.CLOSED and failures >= self.failure_threshold:
                self._open(provider_id, circuit, now)
                self.logger.warning(
                    f"[CIRCUIT_BREAKER] {provider_id}: CLOSED -> OPEN "
                    f"(threshold {self.failure_threshold} failures reached). Error: {error}"
                )
                return

            self._circuits[provider_id] = circuit

    def release(self, provider_id: str) -> None:
        """Free a HALF_OPEN trial slot without counting an outcome."""
        with self._lock:
            circuit = self.snapshot(provider_id)
            if circuit.state == CircuitState.HALF_OPEN and circuit.half_open_in_flight > 0:
                self._circuits[provider_id] = replace(
                    circuit, half_open_in_flight=circuit.half_open_in_flight - 1
                )

    def _open(self, provider_id: str, circuit: CircuitStats, now: float) -> None:
        self._circuits[provider_id] = replace(
            circuit,
            state=CircuitState.OPEN,
            success_count=0,
            half_open_in_flight=0,
            last_failure_at=now,
            next_attempt_at=now + self.reset_timeout,
        )

    # ========================================================================
    # GUARDED CALL
    # ========================================================================

    async def call(
        self,
        provider_id: str,
        func: Callable[[], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run `func()` through the circuit, raced against `timeout` seconds.

        Raises:
            CircuitOpenError: the circuit rejected the call; func is not invoked
            ProviderTimeoutError: the call exceeded the timeout (counted)
            ProviderError: re-raised from func; counted only when transient
        """
        if not self.allow_request(provider_id):
            raise CircuitOpenError(provider_id, self.get_retry_after(provider_id))

        timeout = self.call_timeout if timeout is None else timeout
        try:
            result = await asyncio.wait_for(func(), timeout=timeout)
        except asyncio.TimeoutError as e:
            self.record_failure(provider_id, e)
            raise ProviderTimeoutError(provider_id, timeout) from e
        except ProviderError as e:
            if e.transient:
                self.record_failure(provider_id, e)
            else:
                self.release(provider_id)
            raise
        except asyncio.CancelledError:
            self.release(provider_id)
            raise
        except Exception as e:
            # Unclassified adapter bugs are treated as unavailability
            self.record_failure(provider_id, e)
            raise ProviderError(provider_id, f"{type(e).__name__}: {e}") from e

        self.record_success(provider_id)
        return result

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    def reset(self, provider_id: Optional[str] = None) -> None:
        with self._lock:
            if provider_id:
                self._circuits.pop(provider_id, None)
                self.logger.info(f"[CIRCUIT_BREAKER] Reset circuit for {provider_id}")
            else:
                self._circuits = {}
                self.logger.info("[CIRCUIT_BREAKER] Reset all circuits")

    def force_open(self, provider_id: str) -> None:
        """Open a circuit for maintenance; it recovers after reset_timeout like any other."""
        with self._lock:
            self._open(provider_id, self.snapshot(provider_id), self._clock())
            self.logger.info(f"[CIRCUIT_BREAKER] Force opened circuit for {provider_id}")

    def force_close(self, provider_id: str) -> None:
        with self._lock:
            self._circuits[provider_id] = replace(
                self.snapshot(provider_id),
                state=CircuitState.CLOSED,
                failure_count=0,
                success_count=0,
                next_attempt_at=None,
                half_open_in_flight=0,
            )
            self.logger.info(f"[CIRCUIT_BREAKER] Force closed circuit for {provider_id}")
