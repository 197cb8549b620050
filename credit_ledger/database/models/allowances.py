"""Plan allowance and rollover models."""

import uuid
from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime, utc_now
from .owners import OwnerType

# Feature key of the plan's general allowance; rolls into general-purpose batches
GENERAL_ALLOWANCE_KEY = "credits"


class PlanAllowance(Base):
    """Monthly allowance projected from the plan catalog for one owner/feature.

    Written by the catalog side; the ledger only reads it. ``period_anchor``
    fixes where each owner's monthly periods start.
    """

    __tablename__ = "plan_allowances"
    __table_args__ = (
        UniqueConstraint(
            "owner_type", "owner_id", "feature_key", name="uq_allowances_owner_feature"
        ),
        CheckConstraint("monthly_allowance >= 0", name="ck_allowances_nonneg"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_type: Mapped[OwnerType] = mapped_column(String, nullable=False)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    feature_key: Mapped[str] = mapped_column(
        String, nullable=False, default=GENERAL_ALLOWANCE_KEY
    )
    monthly_allowance: Mapped[int] = mapped_column(Integer, nullable=False)
    period_anchor: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    rollover_window_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_rollover_credits: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)

    @property
    def batch_feature_key(self) -> str | None:
        """Feature key carried by batches rolled over from this allowance."""
        if self.feature_key == GENERAL_ALLOWANCE_KEY:
            return None
        return self.feature_key


class RolloverRecord(Base):
    __tablename__ = "rollover_records"
    __table_args__ = (
        UniqueConstraint(
            "owner_type",
            "owner_id",
            "feature_key",
            "period_start",
            name="uq_rollovers_owner_feature_period",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_type: Mapped[OwnerType] = mapped_column(String, nullable=False)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    feature_key: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    last_period_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    rollover_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("credit_batches.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)
