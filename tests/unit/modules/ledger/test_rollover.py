"""Monthly rollover tests."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from credit_ledger.database.models import (
    CreditBatch,
    CreditTransaction,
    RolloverRecord,
    SourceType,
    TransactionType,
)
from tests.factories import PlanAllowanceFactory, UsagePeriodFactory

FEB_1 = datetime(2026, 2, 1, tzinfo=timezone.utc)
MAR_1 = datetime(2026, 3, 1, tzinfo=timezone.utc)


async def _rollover_batches(session_factory, owner) -> list[CreditBatch]:
    async with session_factory() as session:
        result = await session.execute(
            select(CreditBatch).where(
                *owner.filter(CreditBatch),
                CreditBatch.source_type == SourceType.ROLLOVER,
            )
        )
        return list(result.scalars().all())


async def _records(session_factory, owner) -> list[RolloverRecord]:
    async with session_factory() as session:
        result = await session.execute(
            select(RolloverRecord).where(*owner.filter(RolloverRecord))
        )
        return list(result.scalars().all())


class TestRolloverScheduler:
    @pytest.fixture
    def allowance(self, db_session, org_owner):
        """Create an allowance for the test organization."""

        async def _create(**kwargs):
            return await PlanAllowanceFactory.create_async(
                db_session,
                owner_type=org_owner.owner_type,
                owner_id=org_owner.owner_id,
                **kwargs,
            )

        return _create

    @pytest.fixture
    def usage(self, db_session, org_owner):
        async def _create(credits_used: int, feature_key: str = "credits"):
            return await UsagePeriodFactory.create_async(
                db_session,
                owner_type=org_owner.owner_type,
                owner_id=org_owner.owner_id,
                feature_key=feature_key,
                period_start=FEB_1,
                period_end=MAR_1,
                credits_used=credits_used,
            )

        return _create

    @pytest.mark.asyncio
    async def test_unused_allowance_rolls_into_expiring_batch(
        self, scheduler, allowance, usage, session_factory, org_owner, clock
    ):
        await allowance(monthly_allowance=100)
        await usage(80)

        result = await scheduler.run_rollover(clock())

        assert result.owners_processed == 1
        assert result.credits_rolled == 20
        [batch] = await _rollover_batches(session_factory, org_owner)
        assert batch.original_amount == 20
        assert batch.feature_key is None
        # Default window of three months after the period end
        assert batch.expires_at == datetime(2026, 6, 1, tzinfo=timezone.utc)

        async with session_factory() as session:
            transaction = (
                await session.execute(
                    select(CreditTransaction).where(
                        CreditTransaction.batch_id == batch.id
                    )
                )
            ).scalar_one()
            assert transaction.transaction_type == TransactionType.ROLLOVER.value
            assert transaction.amount == 20

        [record] = await _records(session_factory, org_owner)
        assert record.period_start == FEB_1
        assert record.last_period_end == MAR_1
        assert record.rollover_credits == 20
        assert record.batch_id == batch.id

    @pytest.mark.asyncio
    async def test_rollover_is_capped_at_half_the_allowance(
        self, scheduler, allowance, usage, clock
    ):
        await allowance(monthly_allowance=100)
        await usage(10)

        result = await scheduler.run_rollover(clock())

        assert result.credits_rolled == 50

    @pytest.mark.asyncio
    async def test_missing_usage_row_counts_as_unused(self, scheduler, allowance, clock):
        await allowance(monthly_allowance=30)

        result = await scheduler.run_rollover(clock())

        assert result.credits_rolled == 15

    @pytest.mark.asyncio
    async def test_explicit_cap_and_window(
        self, scheduler, allowance, usage, session_factory, org_owner, clock
    ):
        await allowance(
            monthly_allowance=100, max_rollover_credits=12, rollover_window_months=1
        )
        await usage(0)

        result = await scheduler.run_rollover(clock())

        assert result.credits_rolled == 12
        [batch] = await _rollover_batches(session_factory, org_owner)
        assert batch.expires_at == datetime(2026, 4, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_outstanding_rollover_counts_against_the_cap(
        self, scheduler, engine, allowance, usage, org_owner, clock
    ):
        await allowance(monthly_allowance=100)
        await usage(0)
        await engine.grant(
            org_owner,
            40,
            SourceType.ROLLOVER,
            expires_at=clock() + timedelta(days=30),
            source_reference_id="credits:earlier",
        )

        result = await scheduler.run_rollover(clock())

        assert result.credits_rolled == 10

    @pytest.mark.asyncio
    async def test_feature_allowance_rolls_into_feature_batch(
        self, scheduler, allowance, usage, session_factory, org_owner, clock
    ):
        await allowance(feature_key="exports", monthly_allowance=10)
        await usage(6, feature_key="exports")

        await scheduler.run_rollover(clock())

        [batch] = await _rollover_batches(session_factory, org_owner)
        assert batch.feature_key == "exports"
        assert batch.original_amount == 4

    @pytest.mark.asyncio
    async def test_second_run_for_same_period_is_a_no_op(
        self, scheduler, allowance, usage, session_factory, org_owner, clock
    ):
        await allowance(monthly_allowance=100)
        await usage(90)
        await scheduler.run_rollover(clock())

        again = await scheduler.run_rollover(clock())

        assert again.owners_processed == 0
        assert again.owners_skipped == 1
        assert again.credits_rolled == 0
        assert len(await _rollover_batches(session_factory, org_owner)) == 1

    @pytest.mark.asyncio
    async def test_fully_used_allowance_still_records_the_period(
        self, scheduler, allowance, usage, session_factory, org_owner, clock
    ):
        await allowance(monthly_allowance=100)
        await usage(100)

        result = await scheduler.run_rollover(clock())

        assert result.owners_processed == 1
        assert result.credits_rolled == 0
        assert await _rollover_batches(session_factory, org_owner) == []
        [record] = await _records(session_factory, org_owner)
        assert record.rollover_credits == 0
        assert record.batch_id is None
        assert (await scheduler.run_rollover(clock())).owners_skipped == 1

    @pytest.mark.asyncio
    async def test_period_before_anchor_is_skipped(
        self, scheduler, allowance, session_factory, org_owner, clock
    ):
        await allowance(monthly_allowance=100, period_anchor=MAR_1)

        result = await scheduler.run_rollover(clock())

        assert result.owners_skipped == 1
        assert await _records(session_factory, org_owner) == []

    @pytest.mark.asyncio
    async def test_window_already_past_rolls_nothing(
        self, scheduler, allowance, session_factory, org_owner
    ):
        await allowance(monthly_allowance=100, rollover_window_months=1)

        # Closes January, whose one-month window ended on March 1
        result = await scheduler.run_rollover(datetime(2026, 2, 10, tzinfo=timezone.utc))

        assert result.credits_rolled == 0
        assert await _rollover_batches(session_factory, org_owner) == []
        [record] = await _records(session_factory, org_owner)
        assert record.rollover_credits == 0

    @pytest.mark.asyncio
    async def test_inactive_allowance_is_ignored(self, scheduler, allowance, clock):
        await allowance(monthly_allowance=100, is_active=False)

        result = await scheduler.run_rollover(clock())

        assert result == type(result)()

    def test_max_rollover_defaults_to_half(self, scheduler):
        allowance = PlanAllowanceFactory.build(monthly_allowance=75)

        assert scheduler.max_rollover(allowance) == 37
