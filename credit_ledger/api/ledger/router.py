"""Ledger domain router."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Query

from credit_ledger.api.core.dependencies import (
    LedgerAuditorDep,
    LedgerEngineDep,
    SessionFactoryDep,
    UsageTrackerDep,
)
from credit_ledger.database.models import OwnerType
from credit_ledger.modules.ledger.owners import Owner
from .handler import (
    audit_owner_handler,
    commit_reservation_handler,
    consume_credits_handler,
    get_available_handler,
    get_usage_handler,
    grant_credits_handler,
    increment_usage_handler,
    list_batches_handler,
    list_transactions_handler,
    release_reservation_handler,
    reserve_credits_handler,
    run_maintenance_handler,
)
from .schemas import (
    AuditResponse,
    AvailableCreditsResponse,
    BatchesResponse,
    ConsumeRequest,
    ConsumeResponse,
    GrantRequest,
    GrantResponse,
    MaintenanceResponse,
    ReleaseResponse,
    ReservationResponse,
    ReserveRequest,
    TransactionsResponse,
    UsageIncrementRequest,
    UsageResponse,
)

router = APIRouter(
    prefix="/ledger",
    tags=["ledger"],
)

MaintenanceAction = Literal["all", "expire", "reservations", "rollover", "cleanup", "stats"]


@router.post("/grants", response_model=GrantResponse, status_code=201)
async def grant_credits(payload: GrantRequest, engine: LedgerEngineDep) -> GrantResponse:
    """Grant a new batch of credits to an owner."""
    return await grant_credits_handler(engine, payload)


@router.post("/consume", response_model=ConsumeResponse)
async def consume_credits(
    payload: ConsumeRequest, engine: LedgerEngineDep
) -> ConsumeResponse:
    """Consume credits FIFO by nearest expiry. 402 when the pool falls short."""
    return await consume_credits_handler(engine, payload)


@router.post("/reservations", response_model=ReservationResponse, status_code=201)
async def reserve_credits(
    payload: ReserveRequest, engine: LedgerEngineDep
) -> ReservationResponse:
    return await reserve_credits_handler(engine, payload)


@router.post("/reservations/{reservation_id}/release", response_model=ReleaseResponse)
async def release_reservation(
    reservation_id: UUID, engine: LedgerEngineDep
) -> ReleaseResponse:
    return await release_reservation_handler(engine, reservation_id)


@router.post("/reservations/{reservation_id}/commit", response_model=ConsumeResponse)
async def commit_reservation(
    reservation_id: UUID, engine: LedgerEngineDep
) -> ConsumeResponse:
    return await commit_reservation_handler(engine, reservation_id)


@router.get(
    "/owners/{owner_type}/{owner_id}/available",
    response_model=AvailableCreditsResponse,
)
async def get_available_credits(
    owner_type: OwnerType,
    owner_id: UUID,
    engine: LedgerEngineDep,
    feature_key: str | None = None,
) -> AvailableCreditsResponse:
    """Spendable credit split into general and feature pools."""
    return await get_available_handler(engine, Owner(owner_type, owner_id), feature_key)


@router.get(
    "/owners/{owner_type}/{owner_id}/batches", response_model=BatchesResponse
)
async def list_batches(
    owner_type: OwnerType,
    owner_id: UUID,
    engine: LedgerEngineDep,
    include_expired: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> BatchesResponse:
    return await list_batches_handler(
        engine, Owner(owner_type, owner_id), include_expired, limit, offset
    )


@router.get(
    "/owners/{owner_type}/{owner_id}/transactions",
    response_model=TransactionsResponse,
)
async def list_transactions(
    owner_type: OwnerType,
    owner_id: UUID,
    engine: LedgerEngineDep,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> TransactionsResponse:
    """Credit transactions, newest first."""
    return await list_transactions_handler(
        engine, Owner(owner_type, owner_id), limit, offset
    )


@router.get(
    "/owners/{owner_type}/{owner_id}/usage/{feature_key}",
    response_model=UsageResponse,
)
async def get_usage(
    owner_type: OwnerType,
    owner_id: UUID,
    feature_key: str,
    tracker: UsageTrackerDep,
) -> UsageResponse:
    return await get_usage_handler(tracker, Owner(owner_type, owner_id), feature_key)


@router.post(
    "/owners/{owner_type}/{owner_id}/usage/{feature_key}",
    response_model=UsageResponse,
)
async def increment_usage(
    owner_type: OwnerType,
    owner_id: UUID,
    feature_key: str,
    payload: UsageIncrementRequest,
    tracker: UsageTrackerDep,
) -> UsageResponse:
    """Count usage against the monthly allowance. 429 when the limit is enforced."""
    return await increment_usage_handler(
        tracker, Owner(owner_type, owner_id), feature_key, payload
    )


@router.get("/owners/{owner_type}/{owner_id}/audit", response_model=AuditResponse)
async def audit_owner(
    owner_type: OwnerType,
    owner_id: UUID,
    auditor: LedgerAuditorDep,
) -> AuditResponse:
    """Compare the cached balance with the value recomputed from the ledger."""
    return await audit_owner_handler(auditor, Owner(owner_type, owner_id))


@router.post("/maintenance/{action}", response_model=MaintenanceResponse)
async def run_maintenance_job(
    action: MaintenanceAction,
    session_factory: SessionFactoryDep,
    now: datetime | None = None,
) -> MaintenanceResponse:
    """Run a maintenance job on demand (normally invoked by the scheduler host)."""
    return await run_maintenance_handler(session_factory, action, now)
