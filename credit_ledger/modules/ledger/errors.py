"""Ledger exceptions.

Only caller bugs, integrity failures and exhausted retries are raised.
Business outcomes such as insufficient credits are returned as results
(see ``results.py``).
"""

from datetime import datetime
from uuid import UUID

from fastapi import status

from credit_ledger.api.core.exceptions.base import LedgerException
from credit_ledger.api.core.messages import MessageCode


class InvalidAmountError(LedgerException):
    def __init__(self, amount):
        super().__init__(
            MessageCode.INVALID_AMOUNT,
            status.HTTP_400_BAD_REQUEST,
            details={"amount": repr(amount)},
        )
        self.amount = amount


class InvalidExpiryError(LedgerException):
    def __init__(self, expires_at: datetime | None):
        super().__init__(
            MessageCode.INVALID_EXPIRY,
            status.HTTP_400_BAD_REQUEST,
            details={"expires_at": expires_at.isoformat() if expires_at else None},
        )
        self.expires_at = expires_at


class UnknownOwnerError(LedgerException):
    def __init__(self, owner):
        super().__init__(
            MessageCode.UNKNOWN_OWNER,
            status.HTTP_404_NOT_FOUND,
            details={
                "owner_type": owner.owner_type.value,
                "owner_id": str(owner.owner_id),
            },
        )
        self.owner = owner


class ReservationNotFoundError(LedgerException):
    def __init__(self, reservation_id: UUID):
        super().__init__(
            MessageCode.RESERVATION_NOT_FOUND,
            status.HTTP_404_NOT_FOUND,
            details={"reservation_id": str(reservation_id)},
        )
        self.reservation_id = reservation_id


class ConcurrencyConflictError(LedgerException):
    """Raised once the bounded internal retries are exhausted."""

    def __init__(self, owner, attempts: int):
        super().__init__(
            MessageCode.CONCURRENCY_CONFLICT,
            status.HTTP_409_CONFLICT,
            details={"owner": str(owner), "attempts": attempts},
        )
        self.owner = owner
        self.attempts = attempts


def validate_amount(amount) -> int:
    # bool is an int subclass but never a credit amount
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount
