"""Materialized per-owner balance."""

from datetime import datetime

from sqlalchemy import select

from credit_ledger.core.base import BaseService
from credit_ledger.database.models import CreditBalance
from credit_ledger.modules.ledger.owners import Owner


class BalanceCache(BaseService):
    """Reads and adjusts the cached balance row of an owner.

    Mutations must happen in the same transaction as the batch changes they
    reflect; ``lock`` takes the owner's row lock for that purpose.
    """

    async def get(self, owner: Owner) -> CreditBalance | None:
        stmt = select(CreditBalance).where(*owner.filter(CreditBalance))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def lock(self, owner: Owner) -> CreditBalance | None:
        stmt = (
            select(CreditBalance)
            .where(*owner.filter(CreditBalance))
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def lock_or_create(self, owner: Owner) -> CreditBalance:
        balance = await self.lock(owner)
        if balance is None:
            # A racing insert fails on uq_balances_owner and the unit is retried
            balance = CreditBalance(
                owner_type=owner.owner_type,
                owner_id=owner.owner_id,
                available_credits=0,
                reserved_credits=0,
                total_consumed=0,
                total_received=0,
                total_expired=0,
            )
            self.db.add(balance)
            await self.flush()
        return balance

    # Every adjustment stamps updated_at with the unit of work's clock

    @staticmethod
    def apply_grant(balance: CreditBalance, amount: int, at: datetime) -> None:
        balance.updated_at = at
        balance.available_credits += amount
        balance.total_received += amount

    @staticmethod
    def apply_consume(balance: CreditBalance, amount: int, at: datetime) -> None:
        balance.updated_at = at
        balance.available_credits -= amount
        balance.total_consumed += amount

    @staticmethod
    def apply_expiry(balance: CreditBalance, forfeited: int, at: datetime) -> None:
        balance.updated_at = at
        balance.available_credits -= forfeited
        balance.total_expired += forfeited

    @staticmethod
    def apply_hold(balance: CreditBalance, amount: int, at: datetime) -> None:
        balance.updated_at = at
        balance.available_credits -= amount
        balance.reserved_credits += amount

    @staticmethod
    def apply_release(balance: CreditBalance, amount: int, at: datetime) -> None:
        balance.updated_at = at
        balance.available_credits += amount
        balance.reserved_credits -= amount
