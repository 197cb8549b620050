"""Owner models: users and organizations that hold credit."""

import uuid
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UTCDateTime, utc_now


class OwnerType(str, Enum):
    USER = "user"
    ORGANIZATION = "org"


class PlanTier(str, Enum):
    FREE = "free"
    SUBSCRIBED = "subscribed"
    ENTERPRISE = "enterprise"


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    plan_tier: Mapped[PlanTier] = mapped_column(
        String, default=PlanTier.FREE, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)

    # Relationships
    members = relationship(
        "User", foreign_keys="User.organization_id", back_populates="organization"
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    organization_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)

    # Relationships
    organization = relationship(
        "Organization", foreign_keys=[organization_id], back_populates="members"
    )
