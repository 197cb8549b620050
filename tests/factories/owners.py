"""Factories for credit owners."""

import factory

from credit_ledger.database.models import Organization, PlanTier, User
from .base import AsyncSQLAlchemyModelFactory, UUIDFactory


class OrganizationFactory(AsyncSQLAlchemyModelFactory[Organization]):
    class Meta:
        model = Organization

    id = UUIDFactory()
    name = factory.Faker("company")
    plan_tier = PlanTier.SUBSCRIBED


class UserFactory(AsyncSQLAlchemyModelFactory[User]):
    class Meta:
        model = User

    id = UUIDFactory()
    name = factory.Faker("name")
    email = factory.Sequence(lambda n: f"member-{n}@example.com")
    organization_id = None
