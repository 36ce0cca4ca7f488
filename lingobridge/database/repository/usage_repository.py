"""
Usage Repository - usage events and their daily rollups

Rollups are updated incrementally from each inserted batch; only the
distinct-user count is asked of the database, since it cannot be summed.
"""

from collections import Counter
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session

from lingobridge.database.models.billing import DailyUsageAggregate, UsageRecord
from lingobridge.utils.logger.custom_logging import LoggerMixin


class UsageRepository(LoggerMixin):

    def __init__(self, session: Session):
        super().__init__()
        self.session = session

    def insert_records_ignore_existing(self, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Insert usage rows, skipping ids that are already stored so a retried
        batch never double counts.

        Returns:
            The records that were inserted
        """
        records = list(records)
        if not records:
            return []

        ids = [r["id"] for r in records]
        existing = set(
            self.session.execute(select(UsageRecord.id).where(UsageRecord.id.in_(ids))).scalars()
        )
        inserted = []
        for record in records:
            if record["id"] in existing:
                continue
            self.session.add(UsageRecord(**record))
            existing.add(record["id"])
            inserted.append(record)
        self.session.flush()
        return inserted

    def add_to_daily_aggregate(
        self,
        workspace_id: str,
        day: date,
        records: List[Dict[str, Any]],
    ) -> DailyUsageAggregate:
        """Fold freshly inserted records of one workspace and day into its rollup."""
        aggregate = self.get_daily_aggregate(workspace_id, day)
        if aggregate is None:
            aggregate = DailyUsageAggregate(
                workspace_id=workspace_id,
                day=day,
                translation_count=0,
                total_characters=0,
                total_cost=Decimal("0"),
                cache_hits=0,
                total_response_time_ms=0,
                error_count=0,
                language_pairs={},
                providers={},
            )
            self.session.add(aggregate)

        aggregate.translation_count += len(records)
        aggregate.total_characters += sum(r.get("characters") or 0 for r in records)
        aggregate.total_cost = Decimal(aggregate.total_cost) + sum(
            (Decimal(r.get("cost") or 0) for r in records), Decimal("0")
        )
        aggregate.cache_hits += sum(1 for r in records if r.get("cache_hit"))
        aggregate.total_response_time_ms += sum(r.get("response_time_ms") or 0 for r in records)
        aggregate.error_count += sum(1 for r in records if r.get("status", "success") != "success")

        count = aggregate.translation_count
        aggregate.cache_hit_rate = round(aggregate.cache_hits / count, 4) if count else 0.0
        aggregate.avg_response_time_ms = round(aggregate.total_response_time_ms / count, 2) if count else 0.0

        # JSON columns only persist on reassignment
        pairs = Counter(aggregate.language_pairs or {})
        pairs.update(f"{r.get('source_lang')}-{r.get('target_lang')}" for r in records)
        aggregate.language_pairs = dict(pairs)
        providers = Counter(aggregate.providers or {})
        providers.update(r["provider"] for r in records if r.get("provider"))
        aggregate.providers = dict(providers)

        aggregate.unique_users = self._count_unique_users(workspace_id, day)
        aggregate.updated_at = datetime.utcnow()

        self.session.flush()
        return aggregate

    def _count_unique_users(self, workspace_id: str, day: date) -> int:
        start = datetime.combine(day, time.min)
        stmt = select(func.count(distinct(UsageRecord.user_id))).where(
            UsageRecord.workspace_id == workspace_id,
            UsageRecord.user_id.is_not(None),
            UsageRecord.created_at >= start,
            UsageRecord.created_at < start + timedelta(days=1),
        )
        return self.session.execute(stmt).scalar_one()

    def get_daily_aggregate(self, workspace_id: str, day: date) -> Optional[DailyUsageAggregate]:
        stmt = select(DailyUsageAggregate).where(
            DailyUsageAggregate.workspace_id == workspace_id,
            DailyUsageAggregate.day == day,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_daily_aggregates(self, workspace_id: str, start: date, end: date) -> List[DailyUsageAggregate]:
        """Inclusive date range, oldest first."""
        stmt = (
            select(DailyUsageAggregate)
            .where(
                DailyUsageAggregate.workspace_id == workspace_id,
                DailyUsageAggregate.day >= start,
                DailyUsageAggregate.day <= end,
            )
            .order_by(DailyUsageAggregate.day.asc())
        )
        return list(self.session.execute(stmt).scalars())
