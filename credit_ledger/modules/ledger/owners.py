"""Owner references and resolution."""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from credit_ledger.core.base import BaseService
from credit_ledger.database.models import Organization, OwnerType, User


@dataclass(frozen=True)
class Owner:
    """A user or organization, the unit of credit accounting.

    Ledger rows always key off the ``(owner_type, owner_id)`` pair so a user
    and an organization sharing an id are never conflated.
    """

    owner_type: OwnerType
    owner_id: UUID

    def __post_init__(self):
        # Accept raw strings from API payloads and persisted rows
        object.__setattr__(self, "owner_type", OwnerType(self.owner_type))
        if not isinstance(self.owner_id, UUID):
            object.__setattr__(self, "owner_id", UUID(str(self.owner_id)))

    @classmethod
    def user(cls, user_id: UUID) -> "Owner":
        return cls(OwnerType.USER, user_id)

    @classmethod
    def organization(cls, organization_id: UUID) -> "Owner":
        return cls(OwnerType.ORGANIZATION, organization_id)

    @classmethod
    def of(cls, row) -> "Owner":
        """Build the owner reference of any ledger row."""
        return cls(row.owner_type, row.owner_id)

    @property
    def key(self) -> str:
        return f"{self.owner_type.value}:{self.owner_id}"

    def filter(self, model) -> tuple:
        """WHERE clauses selecting this owner's rows of ``model``."""
        return (model.owner_type == self.owner_type, model.owner_id == self.owner_id)

    def __str__(self) -> str:
        return self.key


class OwnerResolver(BaseService):
    """Checks owner references against the users and organizations tables."""

    async def exists(self, owner: Owner) -> bool:
        model = User if owner.owner_type == OwnerType.USER else Organization
        stmt = select(model.id).where(model.id == owner.owner_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None
