"""Offline reconciliation of the balance cache against the ledger rows."""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.modules.ledger.balance_cache import BalanceCache
from credit_ledger.modules.ledger.batch_store import BatchStore
from credit_ledger.modules.ledger.consumption_log import ConsumptionLog
from credit_ledger.modules.ledger.owners import Owner
from credit_ledger.modules.ledger.reservations import ReservationStore
from credit_ledger.modules.ledger.results import AuditReport, CreditStats
from credit_ledger.modules.ledger.unit_of_work import OwnerScopedService

_CACHED_FIELDS = {
    "available": "available_credits",
    "reserved": "reserved_credits",
    "received": "total_received",
    "consumed": "total_consumed",
    "expired": "total_expired",
}


class LedgerAuditor(OwnerScopedService):
    """Recomputes an owner's balance from batches, holds and the log.

    Checks both standing invariants: the cache matches the recomputed values,
    and the signed transaction amounts sum to received minus consumed minus
    expired.
    """

    async def _expected(self, session: AsyncSession, owner: Owner) -> dict[str, int]:
        batches = await BatchStore(session).all_for_owner(owner)
        reserved = await ReservationStore(session).active_total(owner)
        consumed = await ConsumptionLog(session).total_consumed(owner)

        live = sum(b.remaining_amount for b in batches if not b.is_expired)
        return {
            "available": live - reserved,
            "reserved": reserved,
            "received": sum(b.original_amount for b in batches),
            "consumed": consumed,
            "expired": sum(b.remaining_amount for b in batches if b.is_expired),
        }

    async def _audit(
        self, session: AsyncSession, owner: Owner, repair: bool
    ) -> AuditReport:
        cache = BalanceCache(session)
        balance = await (cache.lock_or_create(owner) if repair else cache.get(owner))
        expected = await self._expected(session, owner)
        cached = {
            name: getattr(balance, column) if balance is not None else 0
            for name, column in _CACHED_FIELDS.items()
        }
        transaction_sum = await ConsumptionLog(session).transaction_sum(owner)

        transactions_ok = transaction_sum == (
            expected["received"] - expected["consumed"] - expected["expired"]
        )
        consistent = transactions_ok and cached == expected

        repaired = False
        if repair and cached != expected:
            for name, column in _CACHED_FIELDS.items():
                setattr(balance, column, expected[name])
            balance.updated_at = self.clock()
            repaired = True

        return AuditReport(
            owner_type=owner.owner_type.value,
            owner_id=owner.owner_id,
            expected=expected,
            cached=cached,
            transaction_sum=transaction_sum,
            consistent=consistent,
            repaired=repaired,
        )

    async def reconcile(self, owner: Owner, repair: bool = False) -> AuditReport:
        if repair:
            report = await self.run_for_owner(
                owner, lambda session: self._audit(session, owner, True)
            )
        else:
            async with self.session_factory() as session:
                report = await self._audit(session, owner, False)

        if not report.consistent:
            self.logger.warning(
                "Ledger drift detected",
                owner=owner.key,
                drift=report.drift,
                transaction_sum=report.transaction_sum,
                repaired=report.repaired,
            )
        return report

    async def archivable_batches(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        async with self.session_factory() as session:
            return await BatchStore(session).count_archivable(
                now, self.settings.LEDGER_ARCHIVE_AFTER_DAYS
            )

    async def credit_stats(self, now: datetime | None = None) -> CreditStats:
        now = now or self.clock()
        async with self.session_factory() as session:
            stats = await BatchStore(session).stats_by_owner_type(now)
            archivable = await BatchStore(session).count_archivable(
                now, self.settings.LEDGER_ARCHIVE_AFTER_DAYS
            )

        remaining = sum(s["total_remaining"] for s in stats.values())
        original = sum(s["total_original"] for s in stats.values())
        utilization = round((original - remaining) / original * 100, 2) if original else 0.0

        return CreditStats(
            by_owner_type={owner_type.value: values for owner_type, values in stats.items()},
            utilization_rate=utilization,
            archivable_batches=archivable,
        )
