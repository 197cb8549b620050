"""Global test configuration and fixtures for the credit ledger."""

from collections.abc import AsyncGenerator
from datetime import timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from credit_ledger.database.models import Base, Organization, PlanTier, SourceType, User
from credit_ledger.modules.ledger.auditor import LedgerAuditor
from credit_ledger.modules.ledger.engine import LedgerEngine
from credit_ledger.modules.ledger.locks import OwnerLockRegistry
from credit_ledger.modules.ledger.owners import Owner
from credit_ledger.modules.ledger.rollover import RolloverScheduler
from credit_ledger.modules.ledger.sweeper import ExpirySweeper
from credit_ledger.modules.ledger.usage_tracker import UsagePeriodTracker
from credit_ledger.utils.settings.ledger import LedgerSettings
from tests.factories import OrganizationFactory, UserFactory
from tests.utils.clock import NOW, FrozenClock


@pytest.fixture(autouse=True)
def ledger_env(monkeypatch):
    """Keep tests off Redis and free of retry sleeps."""
    monkeypatch.setenv("LEDGER_JOB_LOCK_ENABLED", "false")
    monkeypatch.setenv("LEDGER_RETRY_BACKOFF_SECONDS", "0")


@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """File-backed SQLite database per test, so separate sessions share it."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=async_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging data. Factories commit so services can see it."""
    async with session_factory() as session:
        yield session


# Ledger services


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings(
        LEDGER_MAX_ATTEMPTS=3,
        LEDGER_RETRY_BACKOFF_SECONDS=0,
        LEDGER_JOB_LOCK_ENABLED=False,
    )


@pytest.fixture
def locks() -> OwnerLockRegistry:
    return OwnerLockRegistry()


@pytest.fixture
def engine(session_factory, settings, locks, clock) -> LedgerEngine:
    return LedgerEngine(session_factory, settings=settings, locks=locks, clock=clock)


@pytest.fixture
def sweeper(session_factory, settings, locks, clock) -> ExpirySweeper:
    return ExpirySweeper(session_factory, settings=settings, locks=locks, clock=clock)


@pytest.fixture
def scheduler(session_factory, settings, locks, clock) -> RolloverScheduler:
    return RolloverScheduler(
        session_factory, settings=settings, locks=locks, clock=clock
    )


@pytest.fixture
def usage_tracker(session_factory, settings, locks, clock) -> UsagePeriodTracker:
    return UsagePeriodTracker(
        session_factory, settings=settings, locks=locks, clock=clock
    )


@pytest.fixture
def auditor(session_factory, settings, locks, clock) -> LedgerAuditor:
    return LedgerAuditor(session_factory, settings=settings, locks=locks, clock=clock)


# Test Data Fixtures


@pytest_asyncio.fixture
async def test_organization(db_session: AsyncSession) -> Organization:
    return await OrganizationFactory.create_async(
        db_session, name="Test Organization", plan_tier=PlanTier.SUBSCRIBED
    )


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession, test_organization: Organization) -> User:
    user_uuid = uuid4()
    return await UserFactory.create_async(
        db_session,
        id=user_uuid,
        name="Test User",
        email=f"test-{user_uuid.hex[:8]}@example.com",
        organization_id=test_organization.id,
    )


@pytest.fixture
def user_owner(test_user: User) -> Owner:
    return Owner.user(test_user.id)


@pytest.fixture
def org_owner(test_organization: Organization) -> Owner:
    return Owner.organization(test_organization.id)


@pytest.fixture
def grant_batch(engine: LedgerEngine, clock: FrozenClock):
    """Grant helper: ``await grant_batch(owner, amount, days=30, **kwargs)``."""

    async def _grant(owner: Owner, amount: int, days: int = 30, **kwargs):
        kwargs.setdefault("source_type", SourceType.PURCHASE)
        return await engine.grant(
            owner, amount, expires_at=clock() + timedelta(days=days), **kwargs
        )

    return _grant


# HTTP Client Fixtures


@pytest_asyncio.fixture
async def app(session_factory) -> AsyncGenerator[FastAPI, None]:
    """FastAPI application running its lifespan, bound to the test database."""
    from credit_ledger.main import app

    async with LifespanManager(app):
        app.state.session_factory = session_factory
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test-credit-ledger",
    ) as ac:
        yield ac
