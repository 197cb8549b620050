"""Typed results returned by ledger operations.

Callers branch on these routinely, so expected business outcomes
(``InsufficientCredits``, ``ReservationInvalid``, ``QuotaExceeded``) are
values with ``success = False`` rather than exceptions.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class BatchDraw:
    batch_id: UUID
    amount: int


@dataclass(frozen=True)
class GrantResult:
    batch_id: UUID
    transaction_id: UUID
    balance_after: int
    replayed: bool = False
    success: bool = field(default=True, init=False)


@dataclass(frozen=True)
class ConsumeSuccess:
    batches_drawn: list[BatchDraw]
    transaction_id: UUID
    amount: int
    balance_after: int
    replayed: bool = False
    success: bool = field(default=True, init=False)


@dataclass(frozen=True)
class InsufficientCredits:
    requested: int
    available: int
    feature_key: str | None = None
    success: bool = field(default=False, init=False)


@dataclass(frozen=True)
class ReservationSuccess:
    reservation_id: UUID
    amount: int
    expires_at: datetime
    replayed: bool = False
    success: bool = field(default=True, init=False)


@dataclass(frozen=True)
class ReleaseSuccess:
    reservation_id: UUID
    amount: int
    success: bool = field(default=True, init=False)


@dataclass(frozen=True)
class ReservationInvalid:
    reservation_id: UUID
    status: str
    reason: str
    success: bool = field(default=False, init=False)


@dataclass(frozen=True)
class BatchView:
    id: UUID
    feature_key: str | None
    source_type: str
    original_amount: int
    remaining_amount: int
    granted_at: datetime
    expires_at: datetime
    description: str | None = None


@dataclass(frozen=True)
class AvailableCredits:
    general_available: int
    feature_available: int
    total_available: int
    reserved_credits: int
    earliest_expiry: datetime | None
    expiring_soon: int
    batches: list[BatchView]


@dataclass(frozen=True)
class UsageSnapshot:
    feature_key: str
    period_start: datetime
    period_end: datetime
    credits_used: int
    allowance: int | None = None
    success: bool = field(default=True, init=False)

    @property
    def remaining(self) -> int | None:
        if self.allowance is None:
            return None
        return max(0, self.allowance - self.credits_used)


@dataclass(frozen=True)
class QuotaExceeded:
    feature_key: str
    requested: int
    credits_used: int
    allowance: int
    success: bool = field(default=False, init=False)


@dataclass(frozen=True)
class SweepResult:
    expired_count: int = 0
    credits_forfeited: int = 0
    owners_processed: int = 0
    owners_failed: int = 0


@dataclass(frozen=True)
class ReservationSweepResult:
    reservations_expired: int = 0
    credits_released: int = 0
    owners_failed: int = 0


@dataclass(frozen=True)
class RolloverRunResult:
    owners_processed: int = 0
    credits_rolled: int = 0
    owners_skipped: int = 0
    owners_failed: int = 0


@dataclass(frozen=True)
class AuditReport:
    owner_type: str
    owner_id: UUID
    expected: dict[str, int]
    cached: dict[str, int]
    transaction_sum: int
    consistent: bool
    repaired: bool = False

    @property
    def drift(self) -> dict[str, int]:
        return {
            name: self.cached.get(name, 0) - value
            for name, value in self.expected.items()
            if self.cached.get(name, 0) != value
        }


@dataclass(frozen=True)
class CreditStats:
    by_owner_type: dict[str, dict[str, int]]
    utilization_rate: float
    archivable_batches: int


ConsumeResult = ConsumeSuccess | InsufficientCredits
ReserveResult = ReservationSuccess | InsufficientCredits
ReleaseResult = ReleaseSuccess | ReservationInvalid
CommitResult = ConsumeSuccess | InsufficientCredits | ReservationInvalid
UsageResult = UsageSnapshot | QuotaExceeded
