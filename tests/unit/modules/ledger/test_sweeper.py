"""Expiry sweep and reservation timeout tests."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from credit_ledger.database.models import (
    CreditBalance,
    CreditBatch,
    CreditReservation,
    CreditTransaction,
    ReservationStatus,
    TransactionType,
)


async def _balance(session_factory, owner) -> CreditBalance:
    async with session_factory() as session:
        result = await session.execute(
            select(CreditBalance).where(*owner.filter(CreditBalance))
        )
        return result.scalar_one()


async def _expiry_transactions(session_factory, owner) -> list[CreditTransaction]:
    async with session_factory() as session:
        result = await session.execute(
            select(CreditTransaction).where(
                *owner.filter(CreditTransaction),
                CreditTransaction.transaction_type == TransactionType.EXPIRY,
            )
        )
        return list(result.scalars().all())


class TestExpirySweep:
    @pytest.mark.asyncio
    async def test_sweep_forfeits_remaining_credit(
        self, sweeper, grant_batch, session_factory, user_owner, clock
    ):
        due = await grant_batch(user_owner, 5, days=1)
        await grant_batch(user_owner, 7, days=10)
        clock.advance(days=2)

        result = await sweeper.sweep()

        assert result.expired_count == 1
        assert result.credits_forfeited == 5
        assert result.owners_processed == 1
        assert result.owners_failed == 0

        balance = await _balance(session_factory, user_owner)
        assert balance.available_credits == 7
        assert balance.total_expired == 5

        async with session_factory() as session:
            batch = await session.get(CreditBatch, due.batch_id)
            assert batch.is_expired is True
            assert batch.expired_at == clock()
            # Remaining stays frozen for history
            assert batch.remaining_amount == 5

        [transaction] = await _expiry_transactions(session_factory, user_owner)
        assert transaction.amount == -5
        assert transaction.balance_after == 7
        assert transaction.batch_id == due.batch_id
        assert transaction.idempotency_key == f"expiry:{due.batch_id}"

    @pytest.mark.asyncio
    async def test_second_sweep_is_a_no_op(
        self, sweeper, grant_batch, session_factory, user_owner, clock
    ):
        await grant_batch(user_owner, 5, days=1)
        clock.advance(days=2)
        await sweeper.sweep()

        again = await sweeper.sweep()

        assert again.expired_count == 0
        assert again.credits_forfeited == 0
        assert again.owners_processed == 0
        assert len(await _expiry_transactions(session_factory, user_owner)) == 1
        assert (await _balance(session_factory, user_owner)).total_expired == 5

    @pytest.mark.asyncio
    async def test_fully_consumed_batch_is_flagged_without_transaction(
        self, sweeper, engine, grant_batch, session_factory, user_owner, clock
    ):
        grant = await grant_batch(user_owner, 5, days=1)
        await engine.consume(user_owner, 5)
        clock.advance(days=2)

        result = await sweeper.sweep()

        assert result.expired_count == 1
        assert result.credits_forfeited == 0
        assert await _expiry_transactions(session_factory, user_owner) == []
        async with session_factory() as session:
            assert (await session.get(CreditBatch, grant.batch_id)).is_expired is True

    @pytest.mark.asyncio
    async def test_batch_expiring_exactly_now_is_left_for_next_sweep(
        self, sweeper, grant_batch, user_owner, clock
    ):
        await grant_batch(user_owner, 5, days=1)

        result = await sweeper.sweep(now=clock() + timedelta(days=1))

        assert result.expired_count == 0

    @pytest.mark.asyncio
    async def test_failing_owner_does_not_stop_the_sweep(
        self, sweeper, grant_batch, session_factory, user_owner, org_owner, clock,
        monkeypatch,
    ):
        await grant_batch(user_owner, 5, days=1)
        await grant_batch(org_owner, 8, days=1)
        clock.advance(days=2)

        original = sweeper._expire_owner

        async def flaky_expire_owner(session, owner, now):
            if owner == user_owner:
                raise RuntimeError("boom")
            return await original(session, owner, now)

        monkeypatch.setattr(sweeper, "_expire_owner", flaky_expire_owner)

        result = await sweeper.sweep()

        assert result.owners_failed == 1
        assert result.owners_processed == 1
        assert result.credits_forfeited == 8
        # The failed owner's unit rolled back entirely
        assert (await _balance(session_factory, user_owner)).available_credits == 5
        assert (await _balance(session_factory, org_owner)).available_credits == 0


class TestReservationSweep:
    @pytest.mark.asyncio
    async def test_overdue_holds_are_released(
        self, sweeper, engine, grant_batch, session_factory, user_owner, clock
    ):
        await grant_batch(user_owner, 10)
        overdue = await engine.reserve(user_owner, 4, ttl=timedelta(minutes=1))
        fresh = await engine.reserve(user_owner, 2, ttl=timedelta(hours=1))
        clock.advance(minutes=5)

        result = await sweeper.expire_reservations()

        assert result.reservations_expired == 1
        assert result.credits_released == 4
        balance = await _balance(session_factory, user_owner)
        assert balance.reserved_credits == 2
        assert balance.available_credits == 8

        async with session_factory() as session:
            stored = await session.get(CreditReservation, overdue.reservation_id)
            assert stored.status == ReservationStatus.EXPIRED.value
            still_active = await session.get(CreditReservation, fresh.reservation_id)
            assert still_active.status == ReservationStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_nothing_overdue(self, sweeper, engine, grant_batch, user_owner):
        await grant_batch(user_owner, 10)
        await engine.reserve(user_owner, 4)

        result = await sweeper.expire_reservations()

        assert result.reservations_expired == 0
        assert result.credits_released == 0
