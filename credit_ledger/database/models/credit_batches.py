"""Credit batch models."""

import uuid
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime, utc_now
from .owners import OwnerType


class SourceType(str, Enum):
    PLAN_GRANT = "plan_grant"
    PURCHASE = "purchase"
    ROLLOVER = "rollover"
    PARTNER = "partner"
    ADDON = "addon"
    MANUAL = "manual"


class CreditBatch(Base):
    """An expiring lot of credit created by a single grant.

    Batches are never deleted. Consumption decrements ``remaining_amount``;
    the expiry sweep flips ``is_expired`` and leaves the remaining amount
    frozen for history.
    """

    __tablename__ = "credit_batches"
    __table_args__ = (
        CheckConstraint("original_amount > 0", name="ck_batches_original_positive"),
        CheckConstraint("remaining_amount >= 0", name="ck_batches_remaining_nonneg"),
        CheckConstraint(
            "remaining_amount <= original_amount",
            name="ck_batches_remaining_le_original",
        ),
        Index("idx_batches_owner_active", "owner_type", "owner_id", "is_expired"),
        Index("idx_batches_expiry", "is_expired", "expires_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_type: Mapped[OwnerType] = mapped_column(String, nullable=False)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    feature_key: Mapped[str | None] = mapped_column(String, nullable=True)
    source_type: Mapped[SourceType] = mapped_column(String, nullable=False)
    source_reference_id: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    original_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    granted_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    is_expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expired_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def is_general(self) -> bool:
        return self.feature_key is None
