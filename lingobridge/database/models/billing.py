"""
Ledger and usage tables.

Tables:
- workspace_credits:      one row per workspace, the current balance
- credit_transactions:    append-only ledger; replaying it rebuilds the balance
- usage_records:          one row per translation event
- daily_usage_aggregates: per workspace and day rollups of usage_records
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, Numeric, String, UniqueConstraint,
)

from lingobridge.database.models.base import Base


MONEY = Numeric(14, 6)


class WorkspaceCredits(Base):
    __tablename__ = "workspace_credits"

    workspace_id = Column(String(128), primary_key=True)
    balance = Column(MONEY, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="EUR")
    plan = Column(String(32), nullable=False, default="freemium")

    auto_recharge = Column(Boolean, nullable=False, default=False)
    recharge_threshold = Column(MONEY, nullable=False, default=0)
    recharge_amount = Column(MONEY, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("workspace_id", "idempotency_key", name="uq_credit_transactions_workspace_key"),
    )

    # Autoincrement id gives the replay order
    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(32), unique=True, nullable=False, default=lambda: uuid.uuid4().hex)
    workspace_id = Column(String(128), ForeignKey("workspace_credits.workspace_id"), nullable=False, index=True)

    type = Column(String(16), nullable=False)
    # Values: 'debit', 'credit'
    amount = Column(MONEY, nullable=False)
    balance_before = Column(MONEY, nullable=False)
    balance_after = Column(MONEY, nullable=False)
    description = Column(String(255), nullable=True)
    payment_reference = Column(String(128), nullable=True)
    # Debit: request id plus request fingerprint. Credit: payment id.
    # Unique per workspace; a replay finds its first booking here
    idempotency_key = Column(String(160), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "workspace_id": self.workspace_id,
            "type": self.type,
            "amount": str(self.amount),
            "balance_before": str(self.balance_before),
            "balance_after": str(self.balance_after),
            "description": self.description,
            "payment_reference": self.payment_reference,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class UsageRecord(Base):
    __tablename__ = "usage_records"

    id = Column(String(64), primary_key=True)
    workspace_id = Column(String(128), nullable=False, index=True)
    user_id = Column(String(128), nullable=True)
    channel_id = Column(String(128), nullable=True)
    message_id = Column(String(128), nullable=True)
    request_id = Column(String(128), nullable=True)

    source_lang = Column(String(16), nullable=True)
    target_lang = Column(String(16), nullable=True)
    provider = Column(String(32), nullable=True)
    model = Column(String(128), nullable=True)

    characters = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    cost = Column(MONEY, nullable=False, default=0)
    response_time_ms = Column(Integer, nullable=False, default=0)
    cache_hit = Column(Boolean, nullable=False, default=False)
    status = Column(String(16), nullable=False, default="success")
    # Values: 'success', 'degraded', 'error'

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class DailyUsageAggregate(Base):
    __tablename__ = "daily_usage_aggregates"
    __table_args__ = (UniqueConstraint("workspace_id", "day", name="uq_daily_usage_workspace_day"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    workspace_id = Column(String(128), nullable=False, index=True)
    day = Column(Date, nullable=False)

    translation_count = Column(Integer, nullable=False, default=0)
    unique_users = Column(Integer, nullable=False, default=0)
    total_characters = Column(Integer, nullable=False, default=0)
    total_cost = Column(MONEY, nullable=False, default=0)
    cache_hits = Column(Integer, nullable=False, default=0)
    cache_hit_rate = Column(Float, nullable=False, default=0.0)
    total_response_time_ms = Column(Integer, nullable=False, default=0)
    avg_response_time_ms = Column(Float, nullable=False, default=0.0)
    error_count = Column(Integer, nullable=False, default=0)
    # {"en-es": 12, ...} and {"deepl": 10, ...}
    language_pairs = Column(JSON, nullable=False, default=dict)
    providers = Column(JSON, nullable=False, default=dict)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "workspace_id": self.workspace_id,
            "day": self.day.isoformat(),
            "translation_count": self.translation_count,
            "unique_users": self.unique_users,
            "total_characters": self.total_characters,
            "total_cost": str(self.total_cost),
            "cache_hits": self.cache_hits,
            "cache_hit_rate": self.cache_hit_rate,
            "avg_response_time_ms": self.avg_response_time_ms,
            "error_count": self.error_count,
            "language_pairs": dict(self.language_pairs or {}),
            "providers": dict(self.providers or {}),
        }
