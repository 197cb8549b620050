"""Ledger engine settings configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Owner-scoped units of work
    LEDGER_MAX_ATTEMPTS: int = 3
    LEDGER_RETRY_BACKOFF_SECONDS: float = 0.05

    # Reservations
    LEDGER_DEFAULT_RESERVATION_TTL_SECONDS: int = 15 * 60

    # Rollover
    LEDGER_ROLLOVER_WINDOW_MONTHS: int = 3
    LEDGER_ROLLOVER_MAX_FRACTION: float = 0.5

    # Reporting windows
    LEDGER_USER_EXPIRING_SOON_DAYS: int = 7
    LEDGER_ORG_EXPIRING_SOON_DAYS: int = 30
    LEDGER_ARCHIVE_AFTER_DAYS: int = 90

    # Maintenance job lock (Redis)
    LEDGER_JOB_LOCK_ENABLED: bool = True
    LEDGER_JOB_LOCK_TIMEOUT_SECONDS: int = 15 * 60


__all__ = ["LedgerSettings"]
