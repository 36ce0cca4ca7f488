"""
Prepaid credit ledger.

Every balance change is one SQLAlchemy transaction that locks the account
row, appends a CreditTransaction and updates the balance, so the ledger and
the balance can never disagree. Debits for the same workspace are also
serialized in-process by a per-workspace asyncio.Lock; together with the row
lock this makes concurrent debits atomic: with balance B and N concurrent
debits of a, exactly min(N, floor(B / a)) succeed.
"""

import asyncio
import uuid
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError

from lingobridge.billing.notifier import BillingNotifier, LowBalanceEvent
from lingobridge.billing.payment_gateway import PaymentGateway
from lingobridge.database.repository.credits_repository import CreditsRepository
from lingobridge.database.session_manager import SessionManager
from lingobridge.translation.models import quantize_money
from lingobridge.utils.constants import TransactionType
from lingobridge.utils.exceptions import (
    IdempotencyConflictError,
    InsufficientCreditsError,
    LedgerWriteError,
    PaymentError,
    WorkspaceNotFoundError,
)
from lingobridge.utils.logger.custom_logging import LoggerMixin, get_logger

T = TypeVar("T")

reconciliation_logger = get_logger("lingobridge.billing.reconciliation")


class CreditAccount(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workspace_id: str
    balance: Decimal
    currency: str
    plan: str
    auto_recharge: bool
    recharge_threshold: Decimal
    recharge_amount: Decimal


class TransactionResult(BaseModel):
    success: bool
    balance: Decimal
    transaction: Optional[Dict[str, Any]] = None
    recharged: bool = False
    # True when the request id had already been debited; nothing new was booked
    duplicate: bool = False


class CreditLedger(LoggerMixin):
    """
    Args:
        session_manager: Ledger database
        currency: Billing currency of new accounts
        starting_balance: Freemium balance booked when an account is created
        payment_gateway: Needed for recharges; None disables them
        notifier: Receives LowBalanceEvent after debits below the threshold
        auto_recharge / recharge_threshold / recharge_amount: Defaults for new accounts
        write_retries: Attempts per storage write before LedgerWriteError
        retry_base_delay: First back-off delay in seconds, doubled per attempt
    """

    def __init__(
        self,
        session_manager: SessionManager,
        currency: str = "EUR",
        starting_balance: Decimal = Decimal("3.00"),
        payment_gateway: Optional[PaymentGateway] = None,
        notifier: Optional[BillingNotifier] = None,
        auto_recharge: bool = False,
        recharge_threshold: Decimal = Decimal("1.00"),
        recharge_amount: Decimal = Decimal("10.00"),
        write_retries: int = 3,
        retry_base_delay: float = 0.1,
    ):
        super().__init__()
        self.session_manager = session_manager
        self.currency = currency
        self.starting_balance = quantize_money(starting_balance)
        self.payment_gateway = payment_gateway
        self.notifier = notifier or BillingNotifier()
        self.default_auto_recharge = auto_recharge
        self.default_recharge_threshold = quantize_money(recharge_threshold)
        self.default_recharge_amount = quantize_money(recharge_amount)
        self.write_retries = max(1, write_retries)
        self.retry_base_delay = retry_base_delay
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, workspace_id: str) -> asyncio.Lock:
        return self._locks.setdefault(workspace_id, asyncio.Lock())

    # ========================================================================
    # STORAGE PLUMBING
    # ========================================================================

    async def _write(self, func: Callable[..., T], *args) -> T:
        """
        Run a ledger write on the DB executor, retrying storage failures with
        exponential back-off. Business errors (insufficient credits, unknown
        workspace) are raised on the first attempt.
        """
        delay = self.retry_base_delay
        for attempt in range(1, self.write_retries + 1):
            try:
                return await self.session_manager.run(func, *args)
            except SQLAlchemyError as e:
                if attempt == self.write_retries:
                    self.logger.error(f"[LEDGER] Write failed after {attempt} attempts: {e}")
                    raise LedgerWriteError(f"Ledger write failed: {e}") from e
                self.logger.warning(f"[LEDGER] Write attempt {attempt} failed, retrying in {delay:.2f}s: {e}")
                await asyncio.sleep(delay)
                delay *= 2

    async def _read(self, func: Callable[..., T], *args) -> T:
        try:
            return await self.session_manager.run(func, *args)
        except SQLAlchemyError as e:
            raise LedgerWriteError(f"Ledger read failed: {e}") from e

    def _get_or_create_sync(self, repository: CreditsRepository, workspace_id: str, for_update: bool = False):
        account = repository.get_account(workspace_id, for_update=for_update)
        if account is None:
            account = repository.create_account(
                workspace_id,
                starting_balance=self.starting_balance,
                currency=self.currency,
                auto_recharge=self.default_auto_recharge,
                recharge_threshold=self.default_recharge_threshold,
                recharge_amount=self.default_recharge_amount,
            )
        return account

    def _find_replay(
        self,
        repository: CreditsRepository,
        account,
        transaction_type: TransactionType,
        idempotency_key: Optional[str],
        amount: Decimal,
        description: str,
    ) -> Optional[TransactionResult]:
        """
        The first booking under `idempotency_key`, when this is a replay of it.

        Raises:
            IdempotencyConflictError: the key was booked for another type, amount or description
        """
        if not idempotency_key:
            return None
        existing = repository.find_transaction_by_key(account.workspace_id, idempotency_key)
        if existing is None:
            return None
        if (
            existing.type != transaction_type.value
            or Decimal(existing.amount) != amount
            or (existing.description or "") != (description or "")
        ):
            raise IdempotencyConflictError(account.workspace_id, idempotency_key, Decimal(existing.amount), amount)
        return TransactionResult(
            success=True,
            balance=Decimal(account.balance),
            transaction=existing.to_dict(),
            duplicate=True,
        )

    def _debit_sync(
        self,
        workspace_id: str,
        amount: Decimal,
        description: str,
        request_id: Optional[str],
    ) -> TransactionResult:
        with self.session_manager.create_session() as session:
            repository = CreditsRepository(session)
            account = self._get_or_create_sync(repository, workspace_id, for_update=True)

            replay = self._find_replay(repository, account, TransactionType.DEBIT, request_id, amount, description)
            if replay is not None:
                return replay

            balance_before = Decimal(account.balance)
            if balance_before < amount:
                raise InsufficientCreditsError(workspace_id, required=amount, available=balance_before)

            balance_after = quantize_money(balance_before - amount)
            transaction = repository.append_transaction(
                workspace_id=workspace_id,
                type=TransactionType.DEBIT,
                amount=amount,
                balance_before=balance_before,
                balance_after=balance_after,
                description=description,
                idempotency_key=request_id,
            )
            account.balance = balance_after
            return TransactionResult(success=True, balance=balance_after, transaction=transaction.to_dict())

    def _credit_sync(
        self,
        workspace_id: str,
        amount: Decimal,
        description: str,
        payment_reference: Optional[str],
    ) -> TransactionResult:
        with self.session_manager.create_session() as session:
            repository = CreditsRepository(session)
            account = self._get_or_create_sync(repository, workspace_id, for_update=True)

            replay = self._find_replay(repository, account, TransactionType.CREDIT, payment_reference, amount, description)
            if replay is not None:
                return replay

            balance_before = Decimal(account.balance)
            balance_after = quantize_money(balance_before + amount)
            transaction = repository.append_transaction(
                workspace_id=workspace_id,
                type=TransactionType.CREDIT,
                amount=amount,
                balance_before=balance_before,
                balance_after=balance_after,
                description=description,
                payment_reference=payment_reference,
                idempotency_key=payment_reference,
            )
            account.balance = balance_after
            return TransactionResult(success=True, balance=balance_after, transaction=transaction.to_dict())

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    async def get_or_create_account(self, workspace_id: str) -> CreditAccount:
        def _load() -> CreditAccount:
            with self.session_manager.create_session() as session:
                account = self._get_or_create_sync(CreditsRepository(session), workspace_id)
                return CreditAccount.model_validate(account)

        return await self._write(_load)

    async def get_account(self, workspace_id: str) -> CreditAccount:
        """
        Raises:
            WorkspaceNotFoundError: the workspace never used the service
        """
        def _load() -> Optional[CreditAccount]:
            with self.session_manager.create_session() as session:
                account = CreditsRepository(session).get_account(workspace_id)
                return CreditAccount.model_validate(account) if account else None

        account = await self._read(_load)
        if account is None:
            raise WorkspaceNotFoundError(workspace_id)
        return account

    async def get_balance(self, workspace_id: str) -> Decimal:
        return (await self.get_account(workspace_id)).balance

    async def check_balance(self, workspace_id: str, estimated_cost: Decimal) -> bool:
        account = await self.get_or_create_account(workspace_id)
        return account.balance >= quantize_money(estimated_cost)

    async def configure_auto_recharge(
        self,
        workspace_id: str,
        enabled: bool,
        threshold: Optional[Decimal] = None,
        amount: Optional[Decimal] = None,
    ) -> CreditAccount:
        if amount is not None and amount <= 0:
            raise ValueError("Recharge amount must be positive")

        def _update() -> CreditAccount:
            with self.session_manager.create_session() as session:
                repository = CreditsRepository(session)
                self._get_or_create_sync(repository, workspace_id)
                account = repository.update_auto_recharge(
                    workspace_id,
                    enabled,
                    threshold=quantize_money(threshold) if threshold is not None else None,
                    amount=quantize_money(amount) if amount is not None else None,
                )
                return CreditAccount.model_validate(account)

        async with self._lock_for(workspace_id):
            account = await self._write(_update)
        self.logger.info(
            f"[LEDGER] Auto-recharge for {workspace_id}: enabled={enabled} "
            f"threshold={account.recharge_threshold} amount={account.recharge_amount}"
        )
        return account

    # ========================================================================
    # BALANCE CHANGES
    # ========================================================================

    async def deduct_credits(
        self,
        workspace_id: str,
        amount: Decimal,
        description: str = "Translation",
        request_id: Optional[str] = None,
    ) -> TransactionResult:
        """
        Debit `amount`. Replaying a `request_id` returns the original booking.

        Raises:
            ValueError: negative amount
            InsufficientCreditsError: balance too low and no recharge possible
            LedgerWriteError: storage kept failing
        """
        amount = quantize_money(amount)
        if amount < 0:
            raise ValueError("Debit amount must not be negative")

        async with self._lock_for(workspace_id):
            recharged = False
            try:
                result = await self._write(self._debit_sync, workspace_id, amount, description, request_id)
            except InsufficientCreditsError:
                account = await self.get_or_create_account(workspace_id)
                if not self._can_recharge(account):
                    self.logger.info(f"[LEDGER] Insufficient credits for {workspace_id}: need {amount}, have {account.balance}")
                    raise
                # One recharge, one retry
                try:
                    await self._recharge_locked(workspace_id, account.recharge_amount, reason="insufficient balance")
                except PaymentError as e:
                    raise InsufficientCreditsError(workspace_id, required=amount, available=account.balance) from e
                recharged = True
                result = await self._write(self._debit_sync, workspace_id, amount, description, request_id)

            if result.duplicate:
                self.logger.info(f"[LEDGER] Duplicate debit ignored for request {request_id}")
                return result

            self.logger.debug(f"[LEDGER] Debited {amount} from {workspace_id}, balance {result.balance}")
            recharged = await self._after_debit(workspace_id, result.balance) or recharged
            if recharged:
                result = result.model_copy(update={"recharged": True, "balance": await self._current_balance(workspace_id)})
            return result

    async def add_credits(
        self,
        workspace_id: str,
        amount: Decimal,
        description: str = "Manual credit",
        payment_reference: Optional[str] = None,
    ) -> TransactionResult:
        amount = quantize_money(amount)
        if amount <= 0:
            raise ValueError("Credit amount must be positive")
        async with self._lock_for(workspace_id):
            result = await self._write(self._credit_sync, workspace_id, amount, description, payment_reference)
        if result.duplicate:
            self.logger.info(f"[LEDGER] Duplicate credit ignored for payment {payment_reference}")
        else:
            self.logger.info(f"[LEDGER] Credited {amount} to {workspace_id}, balance {result.balance}")
        return result

    async def recharge_credits(self, workspace_id: str, amount: Optional[Decimal] = None) -> TransactionResult:
        """
        Charge the payment gateway and book the credit.

        Raises:
            PaymentError: no gateway, gateway failure or declined charge
        """
        async with self._lock_for(workspace_id):
            if amount is None:
                amount = (await self.get_or_create_account(workspace_id)).recharge_amount
            return await self._recharge_locked(workspace_id, quantize_money(amount), reason="manual recharge")

    async def ensure_funds(self, workspace_id: str, estimated_cost: Decimal) -> Decimal:
        """
        Pre-check before a provider is called. Recharges when the account
        allows it.

        Returns:
            The balance available for the request

        Raises:
            InsufficientCreditsError: balance below the estimate and no recharge possible
        """
        estimated_cost = quantize_money(estimated_cost)
        async with self._lock_for(workspace_id):
            account = await self.get_or_create_account(workspace_id)
            if account.balance >= estimated_cost:
                return account.balance
            if not self._can_recharge(account):
                raise InsufficientCreditsError(workspace_id, required=estimated_cost, available=account.balance)
            try:
                result = await self._recharge_locked(workspace_id, account.recharge_amount, reason="pre-check")
            except PaymentError as e:
                self.logger.warning(f"[LEDGER] Recharge before request failed for {workspace_id}: {e}")
                raise InsufficientCreditsError(workspace_id, required=estimated_cost, available=account.balance) from e
            if result.balance < estimated_cost:
                raise InsufficientCreditsError(workspace_id, required=estimated_cost, available=result.balance)
            return result.balance

    def _can_recharge(self, account: CreditAccount) -> bool:
        return account.auto_recharge and self.payment_gateway is not None and account.recharge_amount > 0

    async def _recharge_locked(self, workspace_id: str, amount: Decimal, reason: str) -> TransactionResult:
        """Caller holds the workspace lock."""
        if self.payment_gateway is None:
            raise PaymentError("No payment gateway configured")
        if amount <= 0:
            raise PaymentError("Recharge amount must be positive")

        payment = await self.payment_gateway.charge(
            workspace_id, amount, self.currency, idempotency_key=uuid.uuid4().hex
        )
        if not payment.success:
            self.logger.warning(f"[LEDGER] Recharge declined for {workspace_id}: {payment.error}")
            raise PaymentError(f"Recharge declined: {payment.error}")

        try:
            # The payment id keys the credit, so booking it again after an outage is safe
            result = await self._write(
                self._credit_sync, workspace_id, amount, f"Auto-recharge ({reason})", payment.payment_id
            )
        except LedgerWriteError as e:
            reconciliation_logger.error(
                f"[RECONCILIATION] Uncredited payment workspace={workspace_id} "
                f"payment_id={payment.payment_id} amount={amount} {self.currency} reason={e}"
            )
            raise
        self.logger.info(f"[LEDGER] Recharged {workspace_id} with {amount} ({reason}), payment {payment.payment_id}")
        return result.model_copy(update={"recharged": True})

    async def _after_debit(self, workspace_id: str, balance: Decimal) -> bool:
        """Recharge or notify when the balance fell under the threshold. Returns True on recharge."""
        account = await self.get_or_create_account(workspace_id)
        if balance >= account.recharge_threshold:
            return False

        if self._can_recharge(account):
            try:
                await self._recharge_locked(workspace_id, account.recharge_amount, reason="low balance")
                return True
            except (PaymentError, LedgerWriteError) as e:
                self.logger.error(f"[LEDGER] Low-balance recharge failed for {workspace_id}: {e}")

        self.notifier.publish(
            LowBalanceEvent(
                workspace_id=workspace_id,
                balance=balance,
                threshold=account.recharge_threshold,
                currency=account.currency,
            )
        )
        return False

    async def _current_balance(self, workspace_id: str) -> Decimal:
        return (await self.get_or_create_account(workspace_id)).balance

    # ========================================================================
    # AUDIT
    # ========================================================================

    async def get_transactions(self, workspace_id: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        def _load() -> List[Dict[str, Any]]:
            with self.session_manager.create_session() as session:
                return [t.to_dict() for t in CreditsRepository(session).list_transactions(workspace_id, limit, offset)]

        return await self._read(_load)

    async def verify_ledger(self, workspace_id: str) -> Dict[str, Any]:
        """
        Replay the workspace's transactions from zero and compare with the
        stored balance. Also checks that every row links to the previous one.
        """
        def _replay() -> Dict[str, Any]:
            with self.session_manager.create_session() as session:
                repository = CreditsRepository(session)
                account = repository.get_account(workspace_id)
                if account is None:
                    raise WorkspaceNotFoundError(workspace_id)

                running = Decimal("0")
                problems: List[str] = []
                transactions = repository.all_transactions(workspace_id)
                for t in transactions:
                    before, after, amount = Decimal(t.balance_before), Decimal(t.balance_after), Decimal(t.amount)
                    if before != running:
                        problems.append(f"{t.transaction_id}: balance_before {before} != {running}")
                    sign = -1 if t.type == TransactionType.DEBIT.value else 1
                    if after != before + sign * amount:
                        problems.append(f"{t.transaction_id}: balance_after {after} != {before} {'-' if sign < 0 else '+'} {amount}")
                    running = after

                stored = Decimal(account.balance)
                if running != stored:
                    problems.append(f"replayed balance {running} != stored balance {stored}")
                return {
                    "workspace_id": workspace_id,
                    "consistent": not problems,
                    "balance": stored,
                    "replayed_balance": running,
                    "transaction_count": len(transactions),
                    "problems": problems,
                }

        result = await self._read(_replay)
        if not result["consistent"]:
            self.logger.error(f"[LEDGER] Inconsistent ledger for {workspace_id}: {result['problems']}")
        return result
