"""Per-owner, per-feature monthly usage counters."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.database.models import PlanAllowance, UsagePeriod
from credit_ledger.modules.ledger.errors import UnknownOwnerError, validate_amount
from credit_ledger.modules.ledger.owners import Owner, OwnerResolver
from credit_ledger.modules.ledger.periods import CALENDAR_ANCHOR, period_bounds
from credit_ledger.modules.ledger.results import QuotaExceeded, UsageResult, UsageSnapshot
from credit_ledger.modules.ledger.unit_of_work import OwnerScopedService


class UsagePeriodTracker(OwnerScopedService):
    """Counts "N uses per month" features against a plan's fixed allowance.

    Independent of credit batches: incrementing usage never touches the
    balance. Periods follow the allowance's stored anchor, or calendar months
    when the owner has no allowance for the feature.
    """

    async def _allowance(
        self, session: AsyncSession, owner: Owner, feature_key: str
    ) -> PlanAllowance | None:
        result = await session.execute(
            select(PlanAllowance).where(
                *owner.filter(PlanAllowance),
                PlanAllowance.feature_key == feature_key,
                PlanAllowance.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    def _period(self, allowance: PlanAllowance | None, at: datetime):
        anchor = allowance.period_anchor if allowance else CALENDAR_ANCHOR
        return period_bounds(anchor, at)

    async def increment_usage(
        self,
        owner: Owner,
        feature_key: str,
        amount: int = 1,
        enforce_limit: bool = False,
    ) -> UsageResult:
        amount = validate_amount(amount)

        async def operation(session: AsyncSession) -> UsageResult:
            if not await OwnerResolver(session).exists(owner):
                raise UnknownOwnerError(owner)

            now = self.clock()
            allowance = await self._allowance(session, owner, feature_key)
            start, end = self._period(allowance, now)

            result = await session.execute(
                select(UsagePeriod)
                .where(
                    *owner.filter(UsagePeriod),
                    UsagePeriod.feature_key == feature_key,
                    UsagePeriod.period_start == start,
                )
                .with_for_update()
            )
            period = result.scalar_one_or_none()
            if period is None:
                # A racing first use fails on the unique key and is retried
                period = UsagePeriod(
                    owner_type=owner.owner_type,
                    owner_id=owner.owner_id,
                    feature_key=feature_key,
                    period_start=start,
                    period_end=end,
                    credits_used=0,
                    created_at=now,
                )
                session.add(period)
                await session.flush()

            limit = allowance.monthly_allowance if allowance else None
            if enforce_limit and limit is not None and period.credits_used + amount > limit:
                return QuotaExceeded(
                    feature_key=feature_key,
                    requested=amount,
                    credits_used=period.credits_used,
                    allowance=limit,
                )

            period.credits_used += amount
            period.updated_at = now
            return UsageSnapshot(
                feature_key=feature_key,
                period_start=start,
                period_end=end,
                credits_used=period.credits_used,
                allowance=limit,
            )

        result = await self.run_for_owner(owner, operation)
        if isinstance(result, QuotaExceeded):
            self.logger.info(
                "Usage quota exceeded",
                owner=owner.key,
                feature_key=feature_key,
                requested=amount,
                credits_used=result.credits_used,
                allowance=result.allowance,
            )
        return result

    async def get_current_usage(self, owner: Owner, feature_key: str) -> UsageSnapshot:
        now = self.clock()
        async with self.session_factory() as session:
            if not await OwnerResolver(session).exists(owner):
                raise UnknownOwnerError(owner)
            allowance = await self._allowance(session, owner, feature_key)
            start, end = self._period(allowance, now)
            result = await session.execute(
                select(UsagePeriod.credits_used).where(
                    *owner.filter(UsagePeriod),
                    UsagePeriod.feature_key == feature_key,
                    UsagePeriod.period_start == start,
                )
            )
            credits_used = result.scalar_one_or_none() or 0

        return UsageSnapshot(
            feature_key=feature_key,
            period_start=start,
            period_end=end,
            credits_used=credits_used,
            allowance=allowance.monthly_allowance if allowance else None,
        )
