"""Database models for the credit ledger."""

from .allowances import GENERAL_ALLOWANCE_KEY, PlanAllowance, RolloverRecord
from .base import Base, UTCDateTime, utc_now
from .consumption_log import ConsumptionLogEntry
from .credit_balances import CreditBalance
from .credit_batches import CreditBatch, SourceType
from .credit_transactions import CreditTransaction, TransactionType
from .owners import Organization, OwnerType, PlanTier, User
from .reservations import CreditReservation, ReservationStatus
from .usage import UsagePeriod

# Export all models and enums
__all__ = [
    # Base
    "Base",
    "UTCDateTime",
    "utc_now",
    # Enums and constants
    "OwnerType",
    "PlanTier",
    "SourceType",
    "TransactionType",
    "ReservationStatus",
    "GENERAL_ALLOWANCE_KEY",
    # Models
    "User",
    "Organization",
    "CreditBatch",
    "CreditBalance",
    "CreditTransaction",
    "ConsumptionLogEntry",
    "CreditReservation",
    "UsagePeriod",
    "PlanAllowance",
    "RolloverRecord",
]
