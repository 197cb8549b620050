"""Ledger API schemas (requests, models and responses)."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from credit_ledger.api.core.messages import APIResponse, Paginated
from credit_ledger.database.models import OwnerType, SourceType


# Requests


class OwnerRequest(BaseModel):
    owner_type: OwnerType
    owner_id: UUID


class GrantRequest(OwnerRequest):
    amount: int
    source_type: SourceType
    expires_at: datetime
    feature_key: str | None = None
    source_reference_id: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConsumeRequest(OwnerRequest):
    amount: int
    feature_key: str | None = None
    action_type: str = "consume"
    action_reference_id: str | None = None
    description: str | None = None


class ReserveRequest(OwnerRequest):
    amount: int
    ttl_seconds: int | None = Field(default=None, gt=0)
    feature_key: str | None = None
    action_type: str | None = None
    action_reference_id: str | None = None


class UsageIncrementRequest(BaseModel):
    amount: int = 1
    enforce_limit: bool = False


# Models


class GrantModel(BaseModel):
    batch_id: UUID
    transaction_id: UUID
    balance_after: int
    replayed: bool

    model_config = {"from_attributes": True}


class BatchDrawModel(BaseModel):
    batch_id: UUID
    amount: int

    model_config = {"from_attributes": True}


class ConsumeModel(BaseModel):
    batches_drawn: list[BatchDrawModel]
    transaction_id: UUID
    amount: int
    balance_after: int
    replayed: bool

    model_config = {"from_attributes": True}


class ReservationModel(BaseModel):
    reservation_id: UUID
    amount: int
    expires_at: datetime
    replayed: bool

    model_config = {"from_attributes": True}


class ReleaseModel(BaseModel):
    reservation_id: UUID
    amount: int

    model_config = {"from_attributes": True}


class BatchModel(BaseModel):
    id: UUID
    feature_key: str | None
    source_type: str
    original_amount: int
    remaining_amount: int
    granted_at: datetime
    expires_at: datetime
    description: str | None

    model_config = {"from_attributes": True}


class AvailableCreditsModel(BaseModel):
    general_available: int
    feature_available: int
    total_available: int
    reserved_credits: int
    earliest_expiry: datetime | None
    expiring_soon: int
    batches: list[BatchModel]

    model_config = {"from_attributes": True}


class TransactionModel(BaseModel):
    id: UUID
    amount: int
    balance_after: int
    transaction_type: str
    batch_id: UUID | None
    reservation_id: UUID | None
    description: str | None
    details: dict[str, Any]
    idempotency_key: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class UsageModel(BaseModel):
    feature_key: str
    period_start: datetime
    period_end: datetime
    credits_used: int
    allowance: int | None
    remaining: int | None

    model_config = {"from_attributes": True}


class AuditModel(BaseModel):
    owner_type: str
    owner_id: UUID
    expected: dict[str, int]
    cached: dict[str, int]
    drift: dict[str, int]
    transaction_sum: int
    consistent: bool
    repaired: bool

    model_config = {"from_attributes": True}


# Responses
GrantResponse = APIResponse[GrantModel]
ConsumeResponse = APIResponse[ConsumeModel]
ReservationResponse = APIResponse[ReservationModel]
ReleaseResponse = APIResponse[ReleaseModel]
AvailableCreditsResponse = APIResponse[AvailableCreditsModel]
BatchesResponse = APIResponse[Paginated[BatchModel]]
TransactionsResponse = APIResponse[Paginated[TransactionModel]]
UsageResponse = APIResponse[UsageModel]
AuditResponse = APIResponse[AuditModel]
MaintenanceResponse = APIResponse[dict[str, Any]]
