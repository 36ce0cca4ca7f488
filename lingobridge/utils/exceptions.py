"""
Engine error taxonomy.

Provider and circuit breaker errors are always intercepted by the router and
turned into fallback decisions. Only the router (AllProvidersFailedError, which
the engine converts into a degraded response) and the ledger
(InsufficientCreditsError, LedgerWriteError) produce errors a caller can see,
plus TranslationValidationError for malformed input.
"""

from decimal import Decimal
from typing import Dict, Optional

from lingobridge.utils.constants import ErrorKind


class LingoBridgeError(Exception):
    """Base class for all engine errors"""


class TranslationValidationError(LingoBridgeError, ValueError):
    """Request rejected before any provider or ledger interaction"""


class ProviderError(LingoBridgeError):
    """Failure reported by a provider adapter"""

    def __init__(
        self,
        provider_id: str,
        message: str,
        kind: ErrorKind = ErrorKind.TRANSIENT,
        status_code: Optional[int] = None,
    ):
        self.provider_id = provider_id
        self.kind = kind
        self.status_code = status_code
        super().__init__(f"[{provider_id}] {message}")

    @property
    def transient(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT

    @property
    def fatal(self) -> bool:
        return self.kind == ErrorKind.FATAL

    @classmethod
    def from_status(cls, provider_id: str, status_code: int, message: str) -> "ProviderError":
        """Classify an HTTP status: 401/403/400/404/422 are fatal, the rest transient."""
        fatal_codes = {400, 401, 403, 404, 422}
        kind = ErrorKind.FATAL if status_code in fatal_codes else ErrorKind.TRANSIENT
        return cls(provider_id, f"HTTP {status_code}: {message}", kind=kind, status_code=status_code)


class ProviderTimeoutError(ProviderError):
    def __init__(self, provider_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(provider_id, f"call timed out after {timeout:.2f}s", kind=ErrorKind.TRANSIENT)


class CircuitOpenError(LingoBridgeError):
    """Raised when the circuit for a provider rejects the call"""

    def __init__(self, provider_id: str, retry_after: float):
        self.provider_id = provider_id
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker open for '{provider_id}'. "
            f"Retry after {retry_after:.1f} seconds"
        )


class AllProvidersFailedError(LingoBridgeError):
    """Every candidate provider failed, was skipped, or the deadline expired"""

    def __init__(self, errors: Optional[Dict[str, Exception]] = None, deadline_exceeded: bool = False):
        self.errors = dict(errors or {})
        self.deadline_exceeded = deadline_exceeded
        detail = ", ".join(f"{pid}: {err}" for pid, err in self.errors.items()) or "no candidates"
        reason = "deadline exceeded" if deadline_exceeded else "providers exhausted"
        super().__init__(f"Translation failed ({reason}): {detail}")


class WorkspaceNotFoundError(LingoBridgeError):
    def __init__(self, workspace_id: str):
        self.workspace_id = workspace_id
        super().__init__(f"Workspace '{workspace_id}' has no credit account")


class InsufficientCreditsError(LingoBridgeError):
    """User-actionable: the workspace cannot pay for the request"""

    def __init__(self, workspace_id: str, required: Decimal, available: Decimal):
        self.workspace_id = workspace_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits for workspace '{workspace_id}': "
            f"required {required}, available {available}"
        )


class LedgerWriteError(LingoBridgeError):
    """The ledger store could not commit a balance change"""


class PaymentError(LingoBridgeError):
    """The external payment API failed or declined a recharge"""


class IdempotencyConflictError(LingoBridgeError):
    """A debit key was reused for a different amount or description"""

    def __init__(self, workspace_id: str, idempotency_key: str, booked_amount: Decimal, amount: Decimal):
        self.workspace_id = workspace_id
        self.idempotency_key = idempotency_key
        self.booked_amount = booked_amount
        self.amount = amount
        super().__init__(
            f"Debit key '{idempotency_key}' of workspace '{workspace_id}' was booked for "
            f"{booked_amount}, replay asked for {amount}"
        )
