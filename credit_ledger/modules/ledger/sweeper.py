"""Scheduled expiry of credit batches and abandoned reservations."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.database.models import ReservationStatus, TransactionType
from credit_ledger.modules.ledger.balance_cache import BalanceCache
from credit_ledger.modules.ledger.batch_store import BatchStore
from credit_ledger.modules.ledger.consumption_log import ConsumptionLog
from credit_ledger.modules.ledger.owners import Owner
from credit_ledger.modules.ledger.reservations import ReservationStore
from credit_ledger.modules.ledger.results import ReservationSweepResult, SweepResult
from credit_ledger.modules.ledger.unit_of_work import OwnerScopedService


class ExpirySweeper(OwnerScopedService):
    """Retires batches past their expiry, one owner per unit of work.

    Guarded by the ``is_expired`` flag and a per-batch idempotency key, so a
    crashed or repeated sweep forfeits each batch exactly once. A failing
    owner is logged and counted; the sweep carries on with the rest.
    """

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or self.clock()
        async with self.session_factory() as session:
            owners = await BatchStore(session).owners_due_for_expiry(now)

        expired_count = 0
        credits_forfeited = 0
        owners_processed = 0
        owners_failed = 0

        for owner in owners:
            try:
                count, forfeited = await self.run_for_owner(
                    owner, lambda session, owner=owner: self._expire_owner(session, owner, now)
                )
            except Exception:
                owners_failed += 1
                self.logger.error(
                    "Expiry sweep failed for owner", owner=owner.key, exc_info=True
                )
                continue

            owners_processed += 1
            expired_count += count
            credits_forfeited += forfeited

        result = SweepResult(
            expired_count=expired_count,
            credits_forfeited=credits_forfeited,
            owners_processed=owners_processed,
            owners_failed=owners_failed,
        )
        self.logger.info(
            "Expiry sweep completed",
            expired_count=expired_count,
            credits_forfeited=credits_forfeited,
            owners_processed=owners_processed,
            owners_failed=owners_failed,
        )
        return result

    async def _expire_owner(
        self, session: AsyncSession, owner: Owner, now: datetime
    ) -> tuple[int, int]:
        balance = await BalanceCache(session).lock_or_create(owner)
        batches = await BatchStore(session).lock_due_for_expiry(owner, now)
        log = ConsumptionLog(session)

        forfeited_total = 0
        for batch in batches:
            forfeited = batch.remaining_amount
            batch.is_expired = True
            batch.expired_at = now
            # remaining_amount stays frozen for history
            if forfeited == 0:
                continue

            BalanceCache.apply_expiry(balance, forfeited, now)
            forfeited_total += forfeited
            await log.append_transaction(
                owner,
                amount=-forfeited,
                balance_after=balance.available_credits,
                transaction_type=TransactionType.EXPIRY,
                created_at=now,
                batch_id=batch.id,
                description="Credits expired",
                details={
                    "expires_at": batch.expires_at.isoformat(),
                    "feature_key": batch.feature_key,
                },
                idempotency_key=f"expiry:{batch.id}",
            )

        if batches:
            self.logger.debug(
                "Batches expired",
                owner=owner.key,
                batches=len(batches),
                forfeited=forfeited_total,
            )
        return len(batches), forfeited_total

    async def expire_reservations(
        self, now: datetime | None = None
    ) -> ReservationSweepResult:
        """Release active holds whose TTL has passed."""
        now = now or self.clock()
        async with self.session_factory() as session:
            owners = await ReservationStore(session).owners_with_overdue(now)

        reservations_expired = 0
        credits_released = 0
        owners_failed = 0

        for owner in owners:
            try:
                count, released = await self.run_for_owner(
                    owner,
                    lambda session, owner=owner: self._expire_holds(session, owner, now),
                )
            except Exception:
                owners_failed += 1
                self.logger.error(
                    "Reservation sweep failed for owner", owner=owner.key, exc_info=True
                )
                continue

            reservations_expired += count
            credits_released += released

        self.logger.info(
            "Reservation sweep completed",
            reservations_expired=reservations_expired,
            credits_released=credits_released,
            owners_failed=owners_failed,
        )
        return ReservationSweepResult(
            reservations_expired=reservations_expired,
            credits_released=credits_released,
            owners_failed=owners_failed,
        )

    async def _expire_holds(
        self, session: AsyncSession, owner: Owner, now: datetime
    ) -> tuple[int, int]:
        balance = await BalanceCache(session).lock_or_create(owner)
        reservations = await ReservationStore(session).lock_overdue(owner, now)

        released = 0
        for reservation in reservations:
            BalanceCache.apply_release(balance, reservation.amount, now)
            ReservationStore.resolve(reservation, ReservationStatus.EXPIRED, now)
            released += reservation.amount
        return len(reservations), released
