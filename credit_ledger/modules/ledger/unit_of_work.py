"""Owner-scoped atomic units of work."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from credit_ledger.database.models import utc_now
from credit_ledger.modules.ledger.errors import ConcurrencyConflictError
from credit_ledger.modules.ledger.locks import OwnerLockRegistry, owner_locks
from credit_ledger.modules.ledger.owners import Owner
from credit_ledger.utils.logger import get_logger, log_context
from credit_ledger.utils.settings.ledger import LedgerSettings

T = TypeVar("T")

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_concurrency_conflict(exc: Exception) -> bool:
    """Whether ``exc`` is a transient conflict worth retrying."""
    if isinstance(exc, (StaleDataError, IntegrityError)):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _RETRYABLE_SQLSTATES:
            return True
        if isinstance(exc, OperationalError) and "database is locked" in str(orig):
            return True
    return False


class OwnerScopedService:
    """Base for services that run their own owner-scoped transactions.

    Each unit of work holds the in-process owner lock, opens a fresh session
    and commits or rolls back as one transaction. Transient conflicts are
    retried with linear backoff before surfacing as ``ConcurrencyConflictError``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: LedgerSettings | None = None,
        locks: OwnerLockRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or LedgerSettings()
        self.locks = locks or owner_locks
        self.clock = clock or utc_now
        self.logger = get_logger(self.__class__.__name__)

    @asynccontextmanager
    async def owner_transaction(self, owner: Owner) -> AsyncIterator[AsyncSession]:
        with log_context(owner=owner.key):
            async with self.locks.hold(owner.key):
                async with self.session_factory() as session:
                    async with session.begin():
                        yield session

    async def run_for_owner(
        self,
        owner: Owner,
        operation: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        max_attempts = max(1, self.settings.LEDGER_MAX_ATTEMPTS)
        attempt = 1
        while True:
            try:
                async with self.owner_transaction(owner) as session:
                    return await operation(session)
            except Exception as exc:
                if not is_concurrency_conflict(exc):
                    raise
                if attempt >= max_attempts:
                    self.logger.error(
                        "Concurrency conflict persisted",
                        owner=owner.key,
                        attempts=attempt,
                        error=str(exc),
                    )
                    raise ConcurrencyConflictError(owner, attempt) from exc
                self.logger.warning(
                    "Concurrency conflict, retrying",
                    owner=owner.key,
                    attempt=attempt,
                    error_type=type(exc).__name__,
                )
            await asyncio.sleep(self.settings.LEDGER_RETRY_BACKOFF_SECONDS * attempt)
            attempt += 1
