"""Centralized message codes and default messages for API responses."""

from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel


class MessageCode(str, Enum):
    """Centralized message codes for API responses."""

    # Success codes
    SUCCESS = "SUCCESS"

    # Ledger operations
    CREDITS_GRANTED = "CREDITS_GRANTED"
    CREDITS_CONSUMED = "CREDITS_CONSUMED"
    CREDITS_RESERVED = "CREDITS_RESERVED"
    RESERVATION_RELEASED = "RESERVATION_RELEASED"
    RESERVATION_COMMITTED = "RESERVATION_COMMITTED"
    USAGE_RECORDED = "USAGE_RECORDED"
    MAINTENANCE_COMPLETED = "MAINTENANCE_COMPLETED"

    # Ledger errors
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_EXPIRY = "INVALID_EXPIRY"
    UNKNOWN_OWNER = "UNKNOWN_OWNER"
    RESERVATION_INVALID = "RESERVATION_INVALID"
    RESERVATION_NOT_FOUND = "RESERVATION_NOT_FOUND"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    JOB_ALREADY_RUNNING = "JOB_ALREADY_RUNNING"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"


# Default messages for each message code
DEFAULT_MESSAGES = {
    # Success messages
    MessageCode.SUCCESS: "Operation completed successfully",
    # Ledger operations
    MessageCode.CREDITS_GRANTED: "Credits granted successfully",
    MessageCode.CREDITS_CONSUMED: "Credits consumed successfully",
    MessageCode.CREDITS_RESERVED: "Credits reserved successfully",
    MessageCode.RESERVATION_RELEASED: "Reservation released",
    MessageCode.RESERVATION_COMMITTED: "Reservation committed",
    MessageCode.USAGE_RECORDED: "Usage recorded",
    MessageCode.MAINTENANCE_COMPLETED: "Maintenance completed",
    # Ledger errors
    MessageCode.INSUFFICIENT_CREDITS: "Insufficient credits",
    MessageCode.INVALID_AMOUNT: "Credit amount must be a positive integer",
    MessageCode.INVALID_EXPIRY: "Expiry must be a timezone-aware future datetime",
    MessageCode.UNKNOWN_OWNER: "Credit owner not found",
    MessageCode.RESERVATION_INVALID: "Reservation is no longer active",
    MessageCode.RESERVATION_NOT_FOUND: "Reservation not found",
    MessageCode.CONCURRENCY_CONFLICT: "Concurrent update conflict, please retry",
    MessageCode.QUOTA_EXCEEDED: "Monthly allowance exceeded",
    MessageCode.JOB_ALREADY_RUNNING: "Maintenance job is already running",
    # Validation errors
    MessageCode.VALIDATION_ERROR: "Validation failed",
    MessageCode.INVALID_INPUT: "Invalid input provided",
    # Generic errors
    MessageCode.INTERNAL_ERROR: "Internal server error",
    MessageCode.BAD_REQUEST: "Bad request",
    MessageCode.NOT_FOUND: "Resource not found",
}

T = TypeVar("T")


class PaginationInfo(BaseModel):
    """Common pagination information."""

    total: int
    limit: int
    offset: int
    has_more: bool


class Paginated(BaseModel, Generic[T]):
    """Generic paginated response wrapper."""

    items: list[T]
    pagination: PaginationInfo


class APIResponse(BaseModel, Generic[T]):
    """Base API response model with consistent structure and proper typing."""

    message_code: MessageCode
    message: str
    data: T | None = None

    @classmethod
    def success(
        cls,
        message_code: MessageCode = MessageCode.SUCCESS,
        message: str | None = None,
        data: T | None = None,
    ) -> "APIResponse[T]":
        """Create a success response."""
        return cls(
            message_code=message_code,
            message=message or DEFAULT_MESSAGES.get(message_code, "Success"),
            data=data,
        )


def get_default_message(message_code: MessageCode) -> str:
    """Get default message for a message code."""
    return DEFAULT_MESSAGES.get(message_code, "Operation completed")
