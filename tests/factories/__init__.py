"""Test factories for credit ledger models."""

from .base import AsyncSQLAlchemyModelFactory
from .owners import OrganizationFactory, UserFactory
from .credit_batches import CreditBatchFactory
from .allowances import PlanAllowanceFactory, UsagePeriodFactory

__all__ = [
    "AsyncSQLAlchemyModelFactory",
    "OrganizationFactory",
    "UserFactory",
    "CreditBatchFactory",
    "PlanAllowanceFactory",
    "UsagePeriodFactory",
]
