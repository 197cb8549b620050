"""Storage of credit reservations (holds)."""

from collections import Counter
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from credit_ledger.core.base import BaseService
from credit_ledger.database.models import CreditReservation, ReservationStatus
from credit_ledger.modules.ledger.holds import scope_totals
from credit_ledger.modules.ledger.owners import Owner


class ReservationStore(BaseService):
    async def create(
        self,
        owner: Owner,
        amount: int,
        expires_at: datetime,
        created_at: datetime,
        feature_key: str | None = None,
        action_type: str | None = None,
        action_reference_id: str | None = None,
    ) -> CreditReservation:
        reservation = CreditReservation(
            owner_type=owner.owner_type,
            owner_id=owner.owner_id,
            amount=amount,
            feature_key=feature_key,
            action_type=action_type,
            action_reference_id=action_reference_id,
            status=ReservationStatus.ACTIVE,
            expires_at=expires_at,
            created_at=created_at,
        )
        self.db.add(reservation)
        await self.flush()
        return reservation

    async def get(self, reservation_id: UUID) -> CreditReservation | None:
        return await self.db.get(CreditReservation, reservation_id)

    async def lock(self, reservation_id: UUID) -> CreditReservation | None:
        stmt = (
            select(CreditReservation)
            .where(CreditReservation.id == reservation_id)
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_for_action(
        self, owner: Owner, action_type: str | None, action_reference_id: str
    ) -> CreditReservation | None:
        """Active or committed reservation already taken for an action."""
        stmt = (
            select(CreditReservation)
            .where(
                *owner.filter(CreditReservation),
                CreditReservation.action_type == action_type,
                CreditReservation.action_reference_id == action_reference_id,
                CreditReservation.status.in_(
                    [ReservationStatus.ACTIVE, ReservationStatus.COMMITTED]
                ),
            )
            .order_by(CreditReservation.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def lock_overdue(self, owner: Owner, now: datetime) -> list[CreditReservation]:
        stmt = (
            select(CreditReservation)
            .where(
                *owner.filter(CreditReservation),
                CreditReservation.status == ReservationStatus.ACTIVE,
                CreditReservation.expires_at <= now,
            )
            .order_by(CreditReservation.id)
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def owners_with_overdue(self, now: datetime) -> list[Owner]:
        stmt = (
            select(CreditReservation.owner_type, CreditReservation.owner_id)
            .where(
                CreditReservation.status == ReservationStatus.ACTIVE,
                CreditReservation.expires_at <= now,
            )
            .distinct()
        )
        result = await self.db.execute(stmt)
        return [Owner(owner_type, owner_id) for owner_type, owner_id in result.all()]

    async def active_total(self, owner: Owner) -> int:
        stmt = select(func.coalesce(func.sum(CreditReservation.amount), 0)).where(
            *owner.filter(CreditReservation),
            CreditReservation.status == ReservationStatus.ACTIVE,
        )
        return int((await self.db.execute(stmt)).scalar_one())

    async def active_by_scope(self, owner: Owner) -> Counter:
        """Held credit per scope across the owner's active reservations."""
        stmt = (
            select(CreditReservation.feature_key, func.sum(CreditReservation.amount))
            .where(
                *owner.filter(CreditReservation),
                CreditReservation.status == ReservationStatus.ACTIVE,
            )
            .group_by(CreditReservation.feature_key)
        )
        result = await self.db.execute(stmt)
        return scope_totals(result.all())

    @staticmethod
    def resolve(
        reservation: CreditReservation,
        status: ReservationStatus,
        resolved_at: datetime,
        transaction_id: UUID | None = None,
    ) -> None:
        reservation.status = status
        reservation.resolved_at = resolved_at
        if transaction_id is not None:
            reservation.transaction_id = transaction_id
