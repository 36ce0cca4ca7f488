from lingobridge.database.models.base import Base
from lingobridge.database.models.billing import (
    CreditTransaction,
    DailyUsageAggregate,
    UsageRecord,
    WorkspaceCredits,
)
from lingobridge.database.models.translation_cache import CachedTranslation

__all__ = [
    "Base",
    "WorkspaceCredits",
    "CreditTransaction",
    "UsageRecord",
    "DailyUsageAggregate",
    "CachedTranslation",
]
