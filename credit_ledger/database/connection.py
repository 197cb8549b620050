"""Process-wide async engine and session factory for the ledger database."""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from credit_ledger.utils.settings.database import DatabaseSettings

_settings = DatabaseSettings()

async_engine = create_async_engine(
    _settings.DATABASE_URL_ASYNC,
    echo=_settings.DATABASE_ECHO,
    pool_pre_ping=True,
    pool_size=_settings.DATABASE_POOL_SIZE,
    max_overflow=_settings.DATABASE_MAX_OVERFLOW,
    pool_timeout=_settings.DATABASE_POOL_TIMEOUT_SECONDS,
)

# Services open one session per unit of work and read results after commit
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine, class_=AsyncSession, expire_on_commit=False
)
