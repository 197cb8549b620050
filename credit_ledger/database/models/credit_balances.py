"""Materialized per-owner credit balance."""

import uuid
from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UTCDateTime
from .owners import OwnerType


class CreditBalance(Base):
    __tablename__ = "credit_balances"
    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", name="uq_balances_owner"),
        CheckConstraint("reserved_credits >= 0", name="ck_balances_reserved_nonneg"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_type: Mapped[OwnerType] = mapped_column(String, nullable=False)
    owner_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    available_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_expired: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    # Stamped by the ledger clock on every adjustment
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Concurrent writers that slipped past the row lock fail with StaleDataError
    __mapper_args__ = {"version_id_col": version}
