"""Append-only credit transaction ledger."""

import uuid
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONDocument, UTCDateTime, utc_now
from .owners import OwnerType


class TransactionType(str, Enum):
    GRANT = "grant"
    CONSUME = "consume"
    EXPIRY = "expiry"
    ROLLOVER = "rollover"


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint(
            "owner_type",
            "owner_id",
            "idempotency_key",
            name="uq_transactions_owner_idempotency",
        ),
        Index("idx_transactions_owner_created", "owner_type", "owner_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_type: Mapped[OwnerType] = mapped_column(String, nullable=False)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(String, nullable=False)
    batch_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("credit_batches.id"), nullable=True
    )
    reservation_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict] = mapped_column(
        "metadata", JSONDocument, nullable=False, default=dict
    )
    idempotency_key: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utc_now
    )
