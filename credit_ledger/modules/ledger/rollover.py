"""Monthly rollover of unused plan allowance into expiring credit."""

import math
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.database.models import (
    PlanAllowance,
    RolloverRecord,
    SourceType,
    UsagePeriod,
)
from credit_ledger.modules.ledger.batch_store import BatchStore
from credit_ledger.modules.ledger.engine import LedgerEngine
from credit_ledger.modules.ledger.owners import Owner
from credit_ledger.modules.ledger.periods import add_months, last_closed_period
from credit_ledger.modules.ledger.results import RolloverRunResult
from credit_ledger.modules.ledger.unit_of_work import OwnerScopedService


class RolloverScheduler(OwnerScopedService):
    """Carries unused monthly allowance forward as ``rollover`` batches.

    One ``RolloverRecord`` is written per owner, feature and period even when
    nothing rolls over, so running the job twice for a period is a no-op.
    """

    def _engine(self) -> LedgerEngine:
        return LedgerEngine(
            self.session_factory,
            settings=self.settings,
            locks=self.locks,
            clock=self.clock,
        )

    def max_rollover(self, allowance: PlanAllowance) -> int:
        if allowance.max_rollover_credits is not None:
            return allowance.max_rollover_credits
        return math.floor(
            allowance.monthly_allowance * self.settings.LEDGER_ROLLOVER_MAX_FRACTION
        )

    async def run_rollover(self, period_end: datetime) -> RolloverRunResult:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PlanAllowance.id, PlanAllowance.owner_type, PlanAllowance.owner_id)
                .where(PlanAllowance.is_active.is_(True))
                .order_by(PlanAllowance.id)
            )
            allowances = [
                (allowance_id, Owner(owner_type, owner_id))
                for allowance_id, owner_type, owner_id in result.all()
            ]

        owners_processed = 0
        owners_skipped = 0
        owners_failed = 0
        credits_rolled = 0

        for allowance_id, owner in allowances:
            try:
                rolled = await self.run_for_owner(
                    owner,
                    lambda session, allowance_id=allowance_id, owner=owner: (
                        self._roll_allowance(session, allowance_id, owner, period_end)
                    ),
                )
            except Exception:
                owners_failed += 1
                self.logger.error(
                    "Rollover failed for owner",
                    owner=owner.key,
                    allowance_id=str(allowance_id),
                    exc_info=True,
                )
                continue

            if rolled is None:
                owners_skipped += 1
            else:
                owners_processed += 1
                credits_rolled += rolled

        self.logger.info(
            "Rollover run completed",
            period_end=period_end.isoformat(),
            owners_processed=owners_processed,
            owners_skipped=owners_skipped,
            owners_failed=owners_failed,
            credits_rolled=credits_rolled,
        )
        return RolloverRunResult(
            owners_processed=owners_processed,
            credits_rolled=credits_rolled,
            owners_skipped=owners_skipped,
            owners_failed=owners_failed,
        )

    async def _roll_allowance(
        self,
        session: AsyncSession,
        allowance_id: UUID,
        owner: Owner,
        period_end: datetime,
    ) -> int | None:
        """Roll one allowance's last closed period. ``None`` means skipped."""
        allowance = await session.get(PlanAllowance, allowance_id)
        start, end = last_closed_period(allowance.period_anchor, period_end)
        if start < allowance.period_anchor:
            return None

        existing = await session.execute(
            select(RolloverRecord.id).where(
                *owner.filter(RolloverRecord),
                RolloverRecord.feature_key == allowance.feature_key,
                RolloverRecord.period_start == start,
            )
        )
        if existing.scalar_one_or_none() is not None:
            return None

        usage = await session.execute(
            select(UsagePeriod.credits_used).where(
                *owner.filter(UsagePeriod),
                UsagePeriod.feature_key == allowance.feature_key,
                UsagePeriod.period_start == start,
            )
        )
        used = usage.scalar_one_or_none() or 0
        unused = max(0, allowance.monthly_allowance - used)

        # The cap covers rollover credit still outstanding from earlier periods
        outstanding = await BatchStore(session).outstanding_rollover(
            owner, allowance.batch_feature_key, end
        )
        rolled = max(0, min(unused, self.max_rollover(allowance) - outstanding))

        window = (
            allowance.rollover_window_months
            or self.settings.LEDGER_ROLLOVER_WINDOW_MONTHS
        )
        expires_at = add_months(end, window)
        now = self.clock()
        if expires_at <= now:
            rolled = 0

        record = RolloverRecord(
            owner_type=owner.owner_type,
            owner_id=owner.owner_id,
            feature_key=allowance.feature_key,
            period_start=start,
            last_period_end=end,
            rollover_credits=rolled,
            expires_at=expires_at,
            created_at=now,
        )
        if rolled > 0:
            grant = await self._engine().grant_in_session(
                session,
                owner,
                rolled,
                SourceType.ROLLOVER,
                expires_at=expires_at,
                granted_at=now,
                feature_key=allowance.batch_feature_key,
                source_reference_id=f"{allowance.feature_key}:{start.isoformat()}",
                description=f"Rollover of unused {allowance.feature_key} allowance",
                metadata={
                    "period_start": start.isoformat(),
                    "period_end": end.isoformat(),
                    "unused": unused,
                },
            )
            record.batch_id = grant.batch_id

        session.add(record)
        await session.flush()

        self.logger.debug(
            "Allowance rolled over",
            owner=owner.key,
            feature_key=allowance.feature_key,
            period_start=start.isoformat(),
            unused=unused,
            rolled=rolled,
        )
        return rolled
