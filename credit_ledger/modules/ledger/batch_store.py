"""Durable storage of credit batches."""

from collections import Counter
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from credit_ledger.core.base import BaseService
from credit_ledger.database.models import CreditBatch, OwnerType, SourceType
from credit_ledger.modules.ledger.holds import scope_totals
from credit_ledger.modules.ledger.owners import Owner


def fifo_key(batch: CreditBatch) -> tuple:
    """Nearest expiry first, then insertion order, then id."""
    return (batch.expires_at, batch.granted_at, str(batch.id))


class BatchStore(BaseService):
    """CRUD for credit batches. No business rules live here."""

    async def create(
        self,
        owner: Owner,
        amount: int,
        source_type: SourceType,
        expires_at: datetime,
        granted_at: datetime,
        feature_key: str | None = None,
        source_reference_id: str | None = None,
        description: str | None = None,
    ) -> CreditBatch:
        batch = CreditBatch(
            owner_type=owner.owner_type,
            owner_id=owner.owner_id,
            feature_key=feature_key,
            source_type=source_type,
            source_reference_id=source_reference_id,
            description=description,
            original_amount=amount,
            remaining_amount=amount,
            granted_at=granted_at,
            expires_at=expires_at,
            is_expired=False,
        )
        self.db.add(batch)
        await self.flush()
        return batch

    async def get(self, batch_id: UUID) -> CreditBatch | None:
        return await self.db.get(CreditBatch, batch_id)

    def _usable_clauses(self, owner: Owner, feature_key: str | None, now: datetime):
        scope = (
            CreditBatch.feature_key.is_(None)
            if feature_key is None
            else or_(
                CreditBatch.feature_key == feature_key,
                CreditBatch.feature_key.is_(None),
            )
        )
        return and_(
            *owner.filter(CreditBatch),
            CreditBatch.is_expired.is_(False),
            CreditBatch.expires_at > now,
            CreditBatch.remaining_amount > 0,
            scope,
        )

    async def lock_usable(
        self, owner: Owner, feature_key: str | None, now: datetime
    ) -> list[CreditBatch]:
        """Lock the batches a consume may draw from, in FIFO order.

        Rows are locked in id order so two writers touching the same batches
        always acquire them in the same sequence.
        """
        stmt = (
            select(CreditBatch)
            .where(self._usable_clauses(owner, feature_key, now))
            .order_by(CreditBatch.id)
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        return sorted(result.scalars().all(), key=fifo_key)

    async def list_usable(
        self, owner: Owner, feature_key: str | None, now: datetime
    ) -> list[CreditBatch]:
        stmt = (
            select(CreditBatch)
            .where(self._usable_clauses(owner, feature_key, now))
            .order_by(
                CreditBatch.expires_at, CreditBatch.granted_at, CreditBatch.id
            )
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def live_totals(self, owner: Owner, now: datetime) -> Counter:
        """Live remaining credit per scope (feature key, ``None`` for general)."""
        stmt = (
            select(CreditBatch.feature_key, func.sum(CreditBatch.remaining_amount))
            .where(
                *owner.filter(CreditBatch),
                CreditBatch.is_expired.is_(False),
                CreditBatch.expires_at > now,
                CreditBatch.remaining_amount > 0,
            )
            .group_by(CreditBatch.feature_key)
        )
        result = await self.db.execute(stmt)
        return scope_totals(result.all())

    async def lock_due_for_expiry(self, owner: Owner, now: datetime) -> list[CreditBatch]:
        stmt = (
            select(CreditBatch)
            .where(
                *owner.filter(CreditBatch),
                CreditBatch.is_expired.is_(False),
                CreditBatch.expires_at < now,
            )
            .order_by(CreditBatch.id)
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def owners_due_for_expiry(self, now: datetime) -> list[Owner]:
        stmt = (
            select(CreditBatch.owner_type, CreditBatch.owner_id)
            .where(CreditBatch.is_expired.is_(False), CreditBatch.expires_at < now)
            .distinct()
        )
        result = await self.db.execute(stmt)
        return [Owner(owner_type, owner_id) for owner_type, owner_id in result.all()]

    async def outstanding_rollover(
        self, owner: Owner, feature_key: str | None, now: datetime
    ) -> int:
        """Rollover credit still live for an owner/feature."""
        feature_clause = (
            CreditBatch.feature_key.is_(None)
            if feature_key is None
            else CreditBatch.feature_key == feature_key
        )
        stmt = select(func.coalesce(func.sum(CreditBatch.remaining_amount), 0)).where(
            *owner.filter(CreditBatch),
            CreditBatch.source_type == SourceType.ROLLOVER,
            CreditBatch.is_expired.is_(False),
            CreditBatch.expires_at > now,
            feature_clause,
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def list_for_owner(
        self,
        owner: Owner,
        include_expired: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CreditBatch], int]:
        clauses = list(owner.filter(CreditBatch))
        if not include_expired:
            clauses.append(CreditBatch.is_expired.is_(False))

        count_stmt = select(func.count(CreditBatch.id)).where(*clauses)
        total = (await self.db.execute(count_stmt)).scalar_one()

        stmt = (
            select(CreditBatch)
            .where(*clauses)
            .order_by(CreditBatch.expires_at, CreditBatch.granted_at, CreditBatch.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), int(total)

    async def all_for_owner(self, owner: Owner) -> list[CreditBatch]:
        stmt = select(CreditBatch).where(*owner.filter(CreditBatch))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def stats_by_owner_type(self, now: datetime) -> dict[OwnerType, dict]:
        """Active batch count and totals per owner type."""
        stmt = (
            select(
                CreditBatch.owner_type,
                func.count(CreditBatch.id),
                func.coalesce(func.sum(CreditBatch.remaining_amount), 0),
                func.coalesce(func.sum(CreditBatch.original_amount), 0),
            )
            .where(
                CreditBatch.is_expired.is_(False),
                CreditBatch.expires_at > now,
                CreditBatch.remaining_amount > 0,
            )
            .group_by(CreditBatch.owner_type)
        )
        result = await self.db.execute(stmt)
        stats = {
            owner_type: {"active_batches": 0, "total_remaining": 0, "total_original": 0}
            for owner_type in OwnerType
        }
        for owner_type, count, remaining, original in result.all():
            stats[OwnerType(owner_type)] = {
                "active_batches": int(count),
                "total_remaining": int(remaining),
                "total_original": int(original),
            }
        return stats

    async def count_archivable(self, now: datetime, older_than_days: int) -> int:
        """Zero-balance batches old enough to archive. Never deleted here."""
        cutoff = now - timedelta(days=older_than_days)
        stmt = select(func.count(CreditBatch.id)).where(
            CreditBatch.remaining_amount == 0,
            CreditBatch.granted_at < cutoff,
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())
