"""Usage period tracking models."""

import uuid
from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime
from .owners import OwnerType


class UsagePeriod(Base):
    """Monthly counter for a feature, independent of credit batches."""

    __tablename__ = "usage_periods"
    __table_args__ = (
        UniqueConstraint(
            "owner_type",
            "owner_id",
            "feature_key",
            "period_start",
            name="uq_usage_periods_owner_feature_start",
        ),
        CheckConstraint("credits_used >= 0", name="ck_usage_periods_used_nonneg"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_type: Mapped[OwnerType] = mapped_column(String, nullable=False)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    feature_key: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Both stamped by the ledger clock
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
