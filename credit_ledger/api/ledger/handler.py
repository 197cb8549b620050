from dataclasses import asdict
from datetime import datetime, timedelta
from uuid import UUID

from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credit_ledger.api.core.exceptions.base import LedgerException
from credit_ledger.api.core.messages import (
    APIResponse,
    MessageCode,
    Paginated,
    PaginationInfo,
)
from credit_ledger.modules.ledger.auditor import LedgerAuditor
from credit_ledger.modules.ledger.engine import LedgerEngine
from credit_ledger.modules.ledger.maintenance import run_maintenance
from credit_ledger.modules.ledger.owners import Owner
from credit_ledger.modules.ledger.results import (
    InsufficientCredits,
    QuotaExceeded,
    ReservationInvalid,
)
from credit_ledger.modules.ledger.usage_tracker import UsagePeriodTracker
from .schemas import (
    AuditModel,
    AuditResponse,
    AvailableCreditsModel,
    AvailableCreditsResponse,
    BatchModel,
    BatchesResponse,
    ConsumeModel,
    ConsumeRequest,
    ConsumeResponse,
    GrantModel,
    GrantRequest,
    GrantResponse,
    MaintenanceResponse,
    ReleaseModel,
    ReleaseResponse,
    ReservationModel,
    ReservationResponse,
    ReserveRequest,
    TransactionModel,
    TransactionsResponse,
    UsageIncrementRequest,
    UsageModel,
    UsageResponse,
)


def _raise_for_failure(result) -> None:
    """Turn a failed business result into the matching API error."""
    if isinstance(result, InsufficientCredits):
        raise LedgerException(
            MessageCode.INSUFFICIENT_CREDITS,
            status.HTTP_402_PAYMENT_REQUIRED,
            details=asdict(result),
        )
    if isinstance(result, ReservationInvalid):
        raise LedgerException(
            MessageCode.RESERVATION_INVALID,
            status.HTTP_409_CONFLICT,
            details={**asdict(result), "reservation_id": str(result.reservation_id)},
        )
    if isinstance(result, QuotaExceeded):
        raise LedgerException(
            MessageCode.QUOTA_EXCEEDED,
            status.HTTP_429_TOO_MANY_REQUESTS,
            details=asdict(result),
        )


def _pagination(total: int, limit: int, offset: int, count: int) -> PaginationInfo:
    return PaginationInfo(
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + count < total,
    )


async def grant_credits_handler(
    engine: LedgerEngine, payload: GrantRequest
) -> GrantResponse:
    result = await engine.grant(
        Owner(payload.owner_type, payload.owner_id),
        payload.amount,
        payload.source_type,
        expires_at=payload.expires_at,
        feature_key=payload.feature_key,
        source_reference_id=payload.source_reference_id,
        description=payload.description,
        metadata=payload.metadata,
    )
    return APIResponse.success(
        message_code=MessageCode.CREDITS_GRANTED,
        data=GrantModel.model_validate(result),
    )


async def consume_credits_handler(
    engine: LedgerEngine, payload: ConsumeRequest
) -> ConsumeResponse:
    result = await engine.consume(
        Owner(payload.owner_type, payload.owner_id),
        payload.amount,
        feature_key=payload.feature_key,
        action_type=payload.action_type,
        action_reference_id=payload.action_reference_id,
        description=payload.description,
    )
    _raise_for_failure(result)
    return APIResponse.success(
        message_code=MessageCode.CREDITS_CONSUMED,
        data=ConsumeModel.model_validate(result),
    )


async def reserve_credits_handler(
    engine: LedgerEngine, payload: ReserveRequest
) -> ReservationResponse:
    ttl = timedelta(seconds=payload.ttl_seconds) if payload.ttl_seconds else None
    result = await engine.reserve(
        Owner(payload.owner_type, payload.owner_id),
        payload.amount,
        ttl=ttl,
        feature_key=payload.feature_key,
        action_type=payload.action_type,
        action_reference_id=payload.action_reference_id,
    )
    _raise_for_failure(result)
    return APIResponse.success(
        message_code=MessageCode.CREDITS_RESERVED,
        data=ReservationModel.model_validate(result),
    )


async def release_reservation_handler(
    engine: LedgerEngine, reservation_id: UUID
) -> ReleaseResponse:
    result = await engine.release(reservation_id)
    _raise_for_failure(result)
    return APIResponse.success(
        message_code=MessageCode.RESERVATION_RELEASED,
        data=ReleaseModel.model_validate(result),
    )


async def commit_reservation_handler(
    engine: LedgerEngine, reservation_id: UUID
) -> ConsumeResponse:
    result = await engine.commit(reservation_id)
    _raise_for_failure(result)
    return APIResponse.success(
        message_code=MessageCode.RESERVATION_COMMITTED,
        data=ConsumeModel.model_validate(result),
    )


async def get_available_handler(
    engine: LedgerEngine, owner: Owner, feature_key: str | None
) -> AvailableCreditsResponse:
    result = await engine.get_available(owner, feature_key)
    return APIResponse.success(
        message_code=MessageCode.SUCCESS,
        data=AvailableCreditsModel.model_validate(result),
    )


async def list_batches_handler(
    engine: LedgerEngine,
    owner: Owner,
    include_expired: bool,
    limit: int,
    offset: int,
) -> BatchesResponse:
    batches, total = await engine.list_batches(
        owner, include_expired=include_expired, limit=limit, offset=offset
    )
    items = [BatchModel.model_validate(batch) for batch in batches]
    return APIResponse.success(
        message_code=MessageCode.SUCCESS,
        data=Paginated[BatchModel](
            items=items, pagination=_pagination(total, limit, offset, len(items))
        ),
    )


async def list_transactions_handler(
    engine: LedgerEngine, owner: Owner, limit: int, offset: int
) -> TransactionsResponse:
    transactions, total = await engine.list_transactions(
        owner, limit=limit, offset=offset
    )
    items = [TransactionModel.model_validate(row) for row in transactions]
    return APIResponse.success(
        message_code=MessageCode.SUCCESS,
        data=Paginated[TransactionModel](
            items=items, pagination=_pagination(total, limit, offset, len(items))
        ),
    )


async def get_usage_handler(
    tracker: UsagePeriodTracker, owner: Owner, feature_key: str
) -> UsageResponse:
    snapshot = await tracker.get_current_usage(owner, feature_key)
    return APIResponse.success(
        message_code=MessageCode.SUCCESS, data=UsageModel.model_validate(snapshot)
    )


async def increment_usage_handler(
    tracker: UsagePeriodTracker,
    owner: Owner,
    feature_key: str,
    payload: UsageIncrementRequest,
) -> UsageResponse:
    result = await tracker.increment_usage(
        owner,
        feature_key,
        amount=payload.amount,
        enforce_limit=payload.enforce_limit,
    )
    _raise_for_failure(result)
    return APIResponse.success(
        message_code=MessageCode.USAGE_RECORDED, data=UsageModel.model_validate(result)
    )


async def audit_owner_handler(auditor: LedgerAuditor, owner: Owner) -> AuditResponse:
    report = await auditor.reconcile(owner)
    return APIResponse.success(
        message_code=MessageCode.SUCCESS, data=AuditModel.model_validate(report)
    )


async def run_maintenance_handler(
    session_factory: async_sessionmaker[AsyncSession],
    action: str,
    now: datetime | None,
) -> MaintenanceResponse:
    summary = await run_maintenance(action, session_factory, now=now)
    if action != "all" and summary.get(action, {}).get("skipped"):
        raise LedgerException(
            MessageCode.JOB_ALREADY_RUNNING,
            status.HTTP_409_CONFLICT,
            details={"action": action},
        )
    return APIResponse.success(
        message_code=MessageCode.MAINTENANCE_COMPLETED, data=summary
    )
