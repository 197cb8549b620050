"""Consumption log models."""

import uuid
from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime, utc_now
from .owners import OwnerType


class ConsumptionLogEntry(Base):
    """One draw from one batch during a consume call."""

    __tablename__ = "consumption_log"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_consumption_quantity_positive"),
        Index("idx_consumption_owner_consumed", "owner_type", "owner_id", "consumed_at"),
        Index("idx_consumption_action", "action_type", "action_reference_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_type: Mapped[OwnerType] = mapped_column(String, nullable=False)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    batch_id: Mapped[UUID] = mapped_column(
        ForeignKey("credit_batches.id"), nullable=False
    )
    transaction_id: Mapped[UUID] = mapped_column(
        ForeignKey("credit_transactions.id"), nullable=False
    )
    feature_key: Mapped[str | None] = mapped_column(String, nullable=True)
    action_type: Mapped[str] = mapped_column(String, nullable=False)
    action_reference_id: Mapped[str | None] = mapped_column(String, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    consumed_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )
