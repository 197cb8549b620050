"""Ledger endpoint tests."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from fastapi import status
from httpx import AsyncClient

from credit_ledger.api.core.messages import MessageCode
from credit_ledger.database.models import OwnerType
from credit_ledger.modules.ledger import maintenance
from tests.factories import PlanAllowanceFactory
from tests.utils.assertions import (
    ResponseHelper,
    assert_error_response,
    assert_success_response,
    assert_validation_error,
)

BASE = "/v1/ledger"


def _in_days(days: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def _owner_path(user, suffix: str) -> str:
    return f"{BASE}/owners/user/{user.id}/{suffix}"


@pytest_asyncio.fixture
async def funded_user(client: AsyncClient, test_user):
    """Test user holding 10 credits in a single 30-day batch."""
    response = await client.post(
        f"{BASE}/grants",
        json={
            "owner_type": "user",
            "owner_id": str(test_user.id),
            "amount": 10,
            "source_type": "purchase",
            "expires_at": _in_days(30),
        },
    )
    assert response.status_code == status.HTTP_201_CREATED
    return test_user


class TestGrantEndpoint:
    @pytest.mark.asyncio
    async def test_grant_credits(self, client: AsyncClient, test_user):
        response = await client.post(
            f"{BASE}/grants",
            json={
                "owner_type": "user",
                "owner_id": str(test_user.id),
                "amount": 25,
                "source_type": "plan_grant",
                "expires_at": _in_days(30),
                "source_reference_id": "sub_1:2026-10",
                "metadata": {"plan": "pro"},
            },
        )

        data = assert_success_response(
            response,
            MessageCode.CREDITS_GRANTED,
            status.HTTP_201_CREATED,
            {"balance_after": 25, "replayed": False},
        )
        assert data["batch_id"]
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_zero_amount_is_rejected(self, client: AsyncClient, test_user):
        response = await client.post(
            f"{BASE}/grants",
            json={
                "owner_type": "user",
                "owner_id": str(test_user.id),
                "amount": 0,
                "source_type": "purchase",
                "expires_at": _in_days(30),
            },
        )

        assert_error_response(response, MessageCode.INVALID_AMOUNT, 400)

    @pytest.mark.asyncio
    async def test_past_expiry_is_rejected(self, client: AsyncClient, test_user):
        response = await client.post(
            f"{BASE}/grants",
            json={
                "owner_type": "user",
                "owner_id": str(test_user.id),
                "amount": 5,
                "source_type": "purchase",
                "expires_at": _in_days(-1),
            },
        )

        assert_error_response(response, MessageCode.INVALID_EXPIRY, 400)

    @pytest.mark.asyncio
    async def test_unknown_owner(self, client: AsyncClient, test_user):
        response = await client.post(
            f"{BASE}/grants",
            json={
                "owner_type": "org",
                "owner_id": str(uuid4()),
                "amount": 5,
                "source_type": "purchase",
                "expires_at": _in_days(30),
            },
        )

        body = assert_error_response(response, MessageCode.UNKNOWN_OWNER, 404)
        assert body["details"]["owner_type"] == "org"

    @pytest.mark.asyncio
    async def test_missing_fields(self, client: AsyncClient, test_user):
        response = await client.post(
            f"{BASE}/grants",
            json={"owner_type": "user", "owner_id": str(test_user.id), "amount": 5},
        )

        assert_validation_error(response, ["source_type", "expires_at"])


class TestConsumeEndpoint:
    @pytest.mark.asyncio
    async def test_consume_credits(self, client: AsyncClient, funded_user):
        response = await client.post(
            f"{BASE}/consume",
            json={
                "owner_type": "user",
                "owner_id": str(funded_user.id),
                "amount": 4,
                "action_type": "geolocate",
                "action_reference_id": "req-1",
            },
        )

        data = assert_success_response(
            response,
            MessageCode.CREDITS_CONSUMED,
            data_assertions={"amount": 4, "balance_after": 6},
        )
        assert len(data["batches_drawn"]) == 1

    @pytest.mark.asyncio
    async def test_insufficient_credits(self, client: AsyncClient, funded_user):
        response = await client.post(
            f"{BASE}/consume",
            json={"owner_type": "user", "owner_id": str(funded_user.id), "amount": 11},
        )

        body = assert_error_response(
            response, MessageCode.INSUFFICIENT_CREDITS, status.HTTP_402_PAYMENT_REQUIRED
        )
        assert body["details"]["requested"] == 11
        assert body["details"]["available"] == 10


class TestReservationEndpoints:
    async def _reserve(self, client: AsyncClient, user, amount: int = 4) -> str:
        response = await client.post(
            f"{BASE}/reservations",
            json={
                "owner_type": "user",
                "owner_id": str(user.id),
                "amount": amount,
                "ttl_seconds": 600,
            },
        )
        data = assert_success_response(
            response, MessageCode.CREDITS_RESERVED, status.HTTP_201_CREATED
        )
        return data["reservation_id"]

    @pytest.mark.asyncio
    async def test_release_then_release_again(self, client: AsyncClient, funded_user):
        reservation_id = await self._reserve(client, funded_user)

        response = await client.post(f"{BASE}/reservations/{reservation_id}/release")
        assert_success_response(
            response, MessageCode.RESERVATION_RELEASED, data_assertions={"amount": 4}
        )

        response = await client.post(f"{BASE}/reservations/{reservation_id}/release")
        body = assert_error_response(
            response, MessageCode.RESERVATION_INVALID, status.HTTP_409_CONFLICT
        )
        assert body["details"]["status"] == "released"

    @pytest.mark.asyncio
    async def test_commit(self, client: AsyncClient, funded_user):
        reservation_id = await self._reserve(client, funded_user, amount=7)

        response = await client.post(f"{BASE}/reservations/{reservation_id}/commit")

        assert_success_response(
            response,
            MessageCode.RESERVATION_COMMITTED,
            data_assertions={"amount": 7, "balance_after": 3},
        )

    @pytest.mark.asyncio
    async def test_reserve_beyond_balance(self, client: AsyncClient, funded_user):
        response = await client.post(
            f"{BASE}/reservations",
            json={"owner_type": "user", "owner_id": str(funded_user.id), "amount": 20},
        )

        assert_error_response(response, MessageCode.INSUFFICIENT_CREDITS, 402)

    @pytest.mark.asyncio
    async def test_non_positive_ttl_is_invalid(self, client: AsyncClient, funded_user):
        response = await client.post(
            f"{BASE}/reservations",
            json={
                "owner_type": "user",
                "owner_id": str(funded_user.id),
                "amount": 1,
                "ttl_seconds": 0,
            },
        )

        assert_validation_error(response, ["ttl_seconds"])

    @pytest.mark.asyncio
    async def test_unknown_reservation(self, client: AsyncClient):
        response = await client.post(f"{BASE}/reservations/{uuid4()}/commit")

        assert_error_response(response, MessageCode.RESERVATION_NOT_FOUND, 404)


class TestOwnerQueries:
    @pytest.mark.asyncio
    async def test_available_credits(self, client: AsyncClient, funded_user):
        response = await client.get(_owner_path(funded_user, "available"))

        data = assert_success_response(
            response,
            data_assertions={
                "general_available": 10,
                "feature_available": 0,
                "total_available": 10,
                "reserved_credits": 0,
            },
        )
        assert len(data["batches"]) == 1
        assert data["earliest_expiry"] is not None

    @pytest.mark.asyncio
    async def test_available_for_unknown_owner(self, client: AsyncClient):
        response = await client.get(f"{BASE}/owners/org/{uuid4()}/available")

        assert_error_response(response, MessageCode.UNKNOWN_OWNER, 404)

    @pytest.mark.asyncio
    async def test_invalid_owner_type(self, client: AsyncClient, test_user):
        response = await client.get(f"{BASE}/owners/team/{test_user.id}/available")

        assert_validation_error(response, ["owner_type"])

    @pytest.mark.asyncio
    async def test_batches_are_paginated(self, client: AsyncClient, funded_user):
        await client.post(
            f"{BASE}/grants",
            json={
                "owner_type": "user",
                "owner_id": str(funded_user.id),
                "amount": 3,
                "source_type": "addon",
                "expires_at": _in_days(5),
            },
        )

        response = await client.get(
            _owner_path(funded_user, "batches"), params={"limit": 1}
        )

        data = assert_success_response(response)
        [batch] = ResponseHelper.assert_paginated(data, total=2, count=1)
        assert batch["source_type"] == "addon"
        assert data["pagination"]["has_more"] is True

    @pytest.mark.asyncio
    async def test_transactions_newest_first(self, client: AsyncClient, funded_user):
        await client.post(
            f"{BASE}/consume",
            json={"owner_type": "user", "owner_id": str(funded_user.id), "amount": 2},
        )

        response = await client.get(_owner_path(funded_user, "transactions"))

        data = assert_success_response(response)
        items = ResponseHelper.assert_paginated(data, total=2, count=2)
        assert [item["transaction_type"] for item in items] == ["consume", "grant"]
        assert items[0]["amount"] == -2
        assert items[0]["balance_after"] == 8

    @pytest.mark.asyncio
    async def test_audit(self, client: AsyncClient, funded_user):
        response = await client.get(_owner_path(funded_user, "audit"))

        assert_success_response(
            response,
            data_assertions={"consistent": True, "drift": {}, "transaction_sum": 10},
        )


class TestUsageEndpoints:
    @pytest.mark.asyncio
    async def test_record_and_read_usage(self, client: AsyncClient, test_user):
        response = await client.post(
            _owner_path(test_user, "usage/geolocate"), json={"amount": 3}
        )
        assert_success_response(
            response, MessageCode.USAGE_RECORDED, data_assertions={"credits_used": 3}
        )

        response = await client.get(_owner_path(test_user, "usage/geolocate"))
        assert_success_response(
            response, data_assertions={"credits_used": 3, "allowance": None}
        )

    @pytest.mark.asyncio
    async def test_enforced_quota(self, client: AsyncClient, db_session, test_user):
        await PlanAllowanceFactory.create_async(
            db_session,
            owner_type=OwnerType.USER,
            owner_id=test_user.id,
            feature_key="exports",
            monthly_allowance=1,
        )

        response = await client.post(
            _owner_path(test_user, "usage/exports"),
            json={"amount": 2, "enforce_limit": True},
        )

        body = assert_error_response(
            response, MessageCode.QUOTA_EXCEEDED, status.HTTP_429_TOO_MANY_REQUESTS
        )
        assert body["details"]["allowance"] == 1


class TestMaintenanceEndpoint:
    @pytest.mark.asyncio
    async def test_run_stats(self, client: AsyncClient, funded_user):
        response = await client.post(f"{BASE}/maintenance/stats")

        data = assert_success_response(response, MessageCode.MAINTENANCE_COMPLETED)
        assert data["stats"]["by_owner_type"]["user"]["total_remaining"] == 10

    @pytest.mark.asyncio
    async def test_unknown_action(self, client: AsyncClient):
        response = await client.post(f"{BASE}/maintenance/vacuum")

        assert_validation_error(response, ["action"])

    @pytest.mark.asyncio
    async def test_job_already_running(self, client: AsyncClient, monkeypatch):
        class HeldLock:
            async def acquire(self):
                return False

        class LockedRedis:
            def lock(self, *_args, **_kwargs):
                return HeldLock()

            async def aclose(self):
                return None

        async def _get_redis_client():
            return LockedRedis()

        monkeypatch.setenv("LEDGER_JOB_LOCK_ENABLED", "true")
        monkeypatch.setattr(maintenance, "get_redis_client", _get_redis_client)

        response = await client.post(f"{BASE}/maintenance/expire")

        assert_error_response(response, MessageCode.JOB_ALREADY_RUNNING, 409)
