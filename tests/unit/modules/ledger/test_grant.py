"""Credit grant tests."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from credit_ledger.api.core.messages import MessageCode
from credit_ledger.database.models import (
    CreditBalance,
    CreditBatch,
    CreditTransaction,
    SourceType,
    TransactionType,
)
from credit_ledger.modules.ledger.errors import (
    InvalidAmountError,
    InvalidExpiryError,
    UnknownOwnerError,
)
from credit_ledger.modules.ledger.owners import Owner
from credit_ledger.modules.ledger.periods import NEVER_EXPIRES
from tests.factories import OrganizationFactory, UserFactory
from tests.utils.assertions import assert_ledger_exception


class TestGrant:
    """Batch creation, cache maintenance and grant validation."""

    @pytest.mark.asyncio
    async def test_grant_creates_batch_transaction_and_balance(
        self, engine, session_factory, user_owner, clock
    ):
        expires_at = clock() + timedelta(days=30)

        result = await engine.grant(
            user_owner,
            100,
            SourceType.PURCHASE,
            expires_at=expires_at,
            description="Starter pack",
            metadata={"order": "ord_1"},
        )

        assert result.success
        assert not result.replayed
        assert result.balance_after == 100

        async with session_factory() as session:
            batch = await session.get(CreditBatch, result.batch_id)
            assert batch.original_amount == 100
            assert batch.remaining_amount == 100
            assert batch.expires_at == expires_at
            assert batch.granted_at == clock()
            assert batch.feature_key is None
            assert batch.is_expired is False

            transaction = await session.get(CreditTransaction, result.transaction_id)
            assert transaction.amount == 100
            assert transaction.balance_after == 100
            assert transaction.transaction_type == TransactionType.GRANT.value
            assert transaction.batch_id == batch.id
            assert transaction.details["order"] == "ord_1"
            assert transaction.details["source_type"] == "purchase"

            balance = (
                await session.execute(
                    select(CreditBalance).where(*user_owner.filter(CreditBalance))
                )
            ).scalar_one()
            assert balance.available_credits == 100
            assert balance.total_received == 100
            assert balance.reserved_credits == 0

    @pytest.mark.asyncio
    async def test_grants_accumulate(self, grant_batch, org_owner):
        await grant_batch(org_owner, 40)
        second = await grant_batch(org_owner, 60, feature_key="exports")

        assert second.balance_after == 100

    @pytest.mark.asyncio
    async def test_never_expiring_grant_uses_far_future_date(
        self, engine, session_factory, user_owner
    ):
        result = await engine.grant(
            user_owner, 10, SourceType.PARTNER, expires_at=NEVER_EXPIRES
        )

        async with session_factory() as session:
            batch = await session.get(CreditBatch, result.batch_id)
            assert batch.expires_at == NEVER_EXPIRES

    @pytest.mark.asyncio
    async def test_replayed_grant_returns_original_batch(
        self, engine, session_factory, user_owner, clock
    ):
        expires_at = clock() + timedelta(days=30)
        first = await engine.grant(
            user_owner,
            50,
            SourceType.PURCHASE,
            expires_at=expires_at,
            source_reference_id="pi_123",
        )
        second = await engine.grant(
            user_owner,
            50,
            SourceType.PURCHASE,
            expires_at=expires_at,
            source_reference_id="pi_123",
        )

        assert second.replayed
        assert second.batch_id == first.batch_id
        assert second.transaction_id == first.transaction_id

        async with session_factory() as session:
            batches = (
                await session.execute(
                    select(CreditBatch).where(*user_owner.filter(CreditBatch))
                )
            ).scalars().all()
            assert len(batches) == 1

    @pytest.mark.asyncio
    async def test_same_reference_under_another_source_is_a_new_grant(
        self, engine, user_owner, clock
    ):
        expires_at = clock() + timedelta(days=30)
        first = await engine.grant(
            user_owner, 5, SourceType.PURCHASE, expires_at, source_reference_id="ref"
        )
        second = await engine.grant(
            user_owner, 5, SourceType.ADDON, expires_at, source_reference_id="ref"
        )

        assert not second.replayed
        assert second.batch_id != first.batch_id
        assert second.balance_after == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, 2.5, True, "10"])
    async def test_invalid_amount_raises(self, engine, user_owner, clock, amount):
        with pytest.raises(InvalidAmountError) as exc_info:
            await engine.grant(
                user_owner,
                amount,
                SourceType.MANUAL,
                expires_at=clock() + timedelta(days=1),
            )

        assert_ledger_exception(exc_info.value, MessageCode.INVALID_AMOUNT, 400)

    @pytest.mark.asyncio
    async def test_past_expiry_raises(self, engine, user_owner, clock):
        with pytest.raises(InvalidExpiryError):
            await engine.grant(
                user_owner, 10, SourceType.MANUAL, expires_at=clock() - timedelta(seconds=1)
            )

    @pytest.mark.asyncio
    async def test_naive_expiry_raises(self, engine, user_owner):
        with pytest.raises(InvalidExpiryError):
            await engine.grant(
                user_owner, 10, SourceType.MANUAL, expires_at=datetime(2030, 1, 1)
            )

    @pytest.mark.asyncio
    async def test_unknown_owner_raises_and_writes_nothing(
        self, engine, session_factory, clock
    ):
        ghost = Owner.user(uuid4())

        with pytest.raises(UnknownOwnerError) as exc_info:
            await engine.grant(
                ghost, 10, SourceType.MANUAL, expires_at=clock() + timedelta(days=1)
            )

        assert_ledger_exception(exc_info.value, MessageCode.UNKNOWN_OWNER, 404)
        async with session_factory() as session:
            rows = (await session.execute(select(CreditBatch))).scalars().all()
            assert rows == []

    @pytest.mark.asyncio
    async def test_user_and_organization_with_same_id_are_separate(
        self, engine, db_session, clock
    ):
        shared_id = uuid4()
        await OrganizationFactory.create_async(db_session, id=shared_id)
        await UserFactory.create_async(db_session, id=shared_id)
        expires_at = clock() + timedelta(days=10)

        await engine.grant(Owner.user(shared_id), 7, SourceType.MANUAL, expires_at)
        org_grant = await engine.grant(
            Owner.organization(shared_id), 3, SourceType.MANUAL, expires_at
        )

        assert org_grant.balance_after == 3
        user_view = await engine.get_available(Owner.user(shared_id))
        assert user_view.total_available == 7

    @pytest.mark.asyncio
    async def test_balance_updated_at_follows_ledger_clock(
        self, engine, grant_batch, session_factory, user_owner, clock
    ):
        async def updated_at():
            async with session_factory() as session:
                balance = (
                    await session.execute(
                        select(CreditBalance).where(*user_owner.filter(CreditBalance))
                    )
                ).scalar_one()
                return balance.updated_at

        await grant_batch(user_owner, 10)
        assert await updated_at() == clock()

        clock.advance(hours=3)
        await engine.consume(user_owner, 4)
        assert await updated_at() == clock()
