from typing import Annotated, AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credit_ledger.modules.ledger.auditor import LedgerAuditor
from credit_ledger.modules.ledger.engine import LedgerEngine
from credit_ledger.modules.ledger.usage_tracker import UsagePeriodTracker


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """Get the session factory stored on app state at startup."""
    return request.app.state.session_factory


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session from app state."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


SessionFactoryDep = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_session_factory)
]


async def get_ledger_engine(session_factory: SessionFactoryDep) -> LedgerEngine:
    # Engine units of work open their own sessions
    return LedgerEngine(session_factory)


async def get_usage_tracker(session_factory: SessionFactoryDep) -> UsagePeriodTracker:
    return UsagePeriodTracker(session_factory)


async def get_ledger_auditor(session_factory: SessionFactoryDep) -> LedgerAuditor:
    return LedgerAuditor(session_factory)


AsyncSessionDep = Annotated[AsyncSession, Depends(get_db_session)]
LedgerEngineDep = Annotated[LedgerEngine, Depends(get_ledger_engine)]
UsageTrackerDep = Annotated[UsagePeriodTracker, Depends(get_usage_tracker)]
LedgerAuditorDep = Annotated[LedgerAuditor, Depends(get_ledger_auditor)]
