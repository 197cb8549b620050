"""Append-only audit trail: consumption entries and credit transactions."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from credit_ledger.core.base import BaseService
from credit_ledger.database.models import (
    ConsumptionLogEntry,
    CreditBatch,
    CreditTransaction,
    TransactionType,
)
from credit_ledger.modules.ledger.owners import Owner


class ConsumptionLog(BaseService):
    """Writes and reads the ledger's audit rows. Rows are never updated."""

    async def append_transaction(
        self,
        owner: Owner,
        amount: int,
        balance_after: int,
        transaction_type: TransactionType,
        created_at: datetime,
        batch_id: UUID | None = None,
        reservation_id: UUID | None = None,
        description: str | None = None,
        details: dict | None = None,
        idempotency_key: str | None = None,
    ) -> CreditTransaction:
        transaction = CreditTransaction(
            owner_type=owner.owner_type,
            owner_id=owner.owner_id,
            amount=amount,
            balance_after=balance_after,
            transaction_type=transaction_type,
            batch_id=batch_id,
            reservation_id=reservation_id,
            description=description,
            details=details or {},
            idempotency_key=idempotency_key,
            created_at=created_at,
        )
        self.db.add(transaction)
        await self.flush()
        return transaction

    def append_entry(
        self,
        owner: Owner,
        batch: CreditBatch,
        transaction_id: UUID,
        quantity: int,
        action_type: str,
        consumed_at: datetime,
        feature_key: str | None = None,
        action_reference_id: str | None = None,
    ) -> ConsumptionLogEntry:
        entry = ConsumptionLogEntry(
            owner_type=owner.owner_type,
            owner_id=owner.owner_id,
            batch_id=batch.id,
            transaction_id=transaction_id,
            feature_key=feature_key,
            action_type=action_type,
            action_reference_id=action_reference_id,
            quantity=quantity,
            consumed_at=consumed_at,
        )
        self.db.add(entry)
        return entry

    async def find_by_idempotency_key(
        self, owner: Owner, idempotency_key: str
    ) -> CreditTransaction | None:
        stmt = select(CreditTransaction).where(
            *owner.filter(CreditTransaction),
            CreditTransaction.idempotency_key == idempotency_key,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def entries_for_transaction(
        self, transaction_id: UUID
    ) -> list[ConsumptionLogEntry]:
        stmt = select(ConsumptionLogEntry).where(
            ConsumptionLogEntry.transaction_id == transaction_id
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_transactions(
        self, owner: Owner, limit: int = 50, offset: int = 0
    ) -> tuple[list[CreditTransaction], int]:
        count_stmt = select(func.count(CreditTransaction.id)).where(
            *owner.filter(CreditTransaction)
        )
        total = (await self.db.execute(count_stmt)).scalar_one()

        stmt = (
            select(CreditTransaction)
            .where(*owner.filter(CreditTransaction))
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), int(total)

    async def list_entries(
        self, owner: Owner, limit: int = 50, offset: int = 0
    ) -> tuple[list[ConsumptionLogEntry], int]:
        count_stmt = select(func.count(ConsumptionLogEntry.id)).where(
            *owner.filter(ConsumptionLogEntry)
        )
        total = (await self.db.execute(count_stmt)).scalar_one()

        stmt = (
            select(ConsumptionLogEntry)
            .where(*owner.filter(ConsumptionLogEntry))
            .order_by(ConsumptionLogEntry.consumed_at.desc(), ConsumptionLogEntry.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), int(total)

    async def total_consumed(self, owner: Owner) -> int:
        stmt = select(func.coalesce(func.sum(ConsumptionLogEntry.quantity), 0)).where(
            *owner.filter(ConsumptionLogEntry)
        )
        return int((await self.db.execute(stmt)).scalar_one())

    async def transaction_sum(self, owner: Owner) -> int:
        stmt = select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            *owner.filter(CreditTransaction)
        )
        return int((await self.db.execute(stmt)).scalar_one())
