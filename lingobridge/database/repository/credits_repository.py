"""
Credits Repository - Database operations for workspace balances

Handles:
- Credit accounts (one row per workspace)
- The append-only transaction ledger

All methods run inside the caller's session; the ledger owns the transaction
boundary so a balance update and its ledger row commit together.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from lingobridge.database.models.billing import CreditTransaction, WorkspaceCredits
from lingobridge.utils.constants import TransactionType
from lingobridge.utils.logger.custom_logging import LoggerMixin


class CreditsRepository(LoggerMixin):

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    # ========================================================================
    # ACCOUNTS
    # ========================================================================

    def get_account(self, workspace_id: str, for_update: bool = False) -> Optional[WorkspaceCredits]:
        """
        Args:
            for_update: Lock the row until the session commits (SELECT ... FOR UPDATE;
                a no-op on SQLite, where the single DB worker serializes writes)
        """
        stmt = select(WorkspaceCredits).where(WorkspaceCredits.workspace_id == workspace_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def create_account(
        self,
        workspace_id: str,
        starting_balance: Decimal,
        currency: str,
        plan: str = "freemium",
        auto_recharge: bool = False,
        recharge_threshold: Decimal = Decimal("0"),
        recharge_amount: Decimal = Decimal("0"),
    ) -> WorkspaceCredits:
        """Create the account and book the starting balance as its first credit."""
        account = WorkspaceCredits(
            workspace_id=workspace_id,
            balance=starting_balance,
            currency=currency,
            plan=plan,
            auto_recharge=auto_recharge,
            recharge_threshold=recharge_threshold,
            recharge_amount=recharge_amount,
        )
        self.session.add(account)
        self.session.flush()

        if starting_balance > 0:
            self.append_transaction(
                workspace_id=workspace_id,
                type=TransactionType.CREDIT,
                amount=starting_balance,
                balance_before=Decimal("0"),
                balance_after=starting_balance,
                description=f"{plan} starting balance",
            )
        self.logger.info(f"[CREDITS] Created account {workspace_id} with {starting_balance} {currency}")
        return account

    def update_auto_recharge(
        self,
        workspace_id: str,
        enabled: bool,
        threshold: Optional[Decimal] = None,
        amount: Optional[Decimal] = None,
    ) -> Optional[WorkspaceCredits]:
        account = self.get_account(workspace_id, for_update=True)
        if account is None:
            return None
        account.auto_recharge = enabled
        if threshold is not None:
            account.recharge_threshold = threshold
        if amount is not None:
            account.recharge_amount = amount
        self.session.flush()
        return account

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    def find_transaction_by_key(self, workspace_id: str, idempotency_key: str) -> Optional[CreditTransaction]:
        stmt = select(CreditTransaction).where(
            CreditTransaction.workspace_id == workspace_id,
            CreditTransaction.idempotency_key == idempotency_key,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def append_transaction(
        self,
        workspace_id: str,
        type: TransactionType,
        amount: Decimal,
        balance_before: Decimal,
        balance_after: Decimal,
        description: Optional[str] = None,
        payment_reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CreditTransaction:
        transaction = CreditTransaction(
            workspace_id=workspace_id,
            type=type.value,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            description=description,
            payment_reference=payment_reference,
            idempotency_key=idempotency_key,
        )
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def list_transactions(self, workspace_id: str, limit: int = 50, offset: int = 0) -> List[CreditTransaction]:
        """Newest first."""
        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.workspace_id == workspace_id)
            .order_by(CreditTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.execute(stmt).scalars())

    def all_transactions(self, workspace_id: str) -> List[CreditTransaction]:
        """Oldest first, in booking order."""
        stmt = (
            select(CreditTransaction)
            .where(CreditTransaction.workspace_id == workspace_id)
            .order_by(CreditTransaction.id.asc())
        )
        return list(self.session.execute(stmt).scalars())
