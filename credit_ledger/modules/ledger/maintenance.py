"""Maintenance jobs run by the scheduler host.

Each job takes a non-blocking Redis lock (``ledger:job:<name>``) so two
replicas never run the same job at once; a job whose lock is held elsewhere
is skipped and reported as such.
"""

import argparse
import asyncio
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credit_ledger.database.models import utc_now
from credit_ledger.modules.ledger.auditor import LedgerAuditor
from credit_ledger.modules.ledger.rollover import RolloverScheduler
from credit_ledger.modules.ledger.sweeper import ExpirySweeper
from credit_ledger.redis.client import close_redis_pool, get_redis_client
from credit_ledger.utils.logger import get_logger, log_context, setup_logging
from credit_ledger.utils.settings.app import AppSettings
from credit_ledger.utils.settings.ledger import LedgerSettings

logger = get_logger(__name__)

ACTIONS = ("all", "expire", "reservations", "rollover", "cleanup", "stats")

# Order matters: expire before rollover so outstanding rollover is current
_ALL_JOBS = ("expire", "reservations", "rollover", "cleanup", "stats")


@asynccontextmanager
async def job_lock(name: str, settings: LedgerSettings) -> AsyncIterator[bool]:
    """Yield whether this process holds the job's lock."""
    if not settings.LEDGER_JOB_LOCK_ENABLED:
        yield True
        return

    client = await get_redis_client()
    lock = client.lock(
        f"ledger:job:{name}",
        timeout=settings.LEDGER_JOB_LOCK_TIMEOUT_SECONDS,
        blocking=False,
    )
    acquired = await lock.acquire()
    try:
        yield acquired
    finally:
        if acquired:
            await lock.release()
        await client.aclose()


async def _run_job(
    name: str,
    session_factory: async_sessionmaker[AsyncSession],
    settings: LedgerSettings,
    now: datetime,
) -> dict:
    def clock() -> datetime:
        return now

    if name == "expire":
        result = await ExpirySweeper(session_factory, settings, clock=clock).sweep(now)
    elif name == "reservations":
        sweeper = ExpirySweeper(session_factory, settings, clock=clock)
        result = await sweeper.expire_reservations(now)
    elif name == "rollover":
        scheduler = RolloverScheduler(session_factory, settings, clock=clock)
        result = await scheduler.run_rollover(now)
    elif name == "cleanup":
        auditor = LedgerAuditor(session_factory, settings, clock=clock)
        return {"archivable_batches": await auditor.archivable_batches(now)}
    elif name == "stats":
        result = await LedgerAuditor(session_factory, settings, clock=clock).credit_stats(now)
    else:
        raise ValueError(f"Unknown maintenance action: {name}")
    return asdict(result)


async def run_maintenance(
    action: str,
    session_factory: async_sessionmaker[AsyncSession],
    now: datetime | None = None,
    settings: LedgerSettings | None = None,
) -> dict:
    """Run one maintenance action (or ``all``) and return a per-job summary."""
    if action not in ACTIONS:
        raise ValueError(f"Unknown maintenance action: {action}")

    settings = settings or LedgerSettings()
    now = now or utc_now()
    jobs = _ALL_JOBS if action == "all" else (action,)

    summary = {}
    for name in jobs:
        with log_context(job=name):
            async with job_lock(name, settings) as acquired:
                if not acquired:
                    logger.warning("Maintenance job already running, skipped")
                    summary[name] = {"skipped": True}
                    continue
                logger.info("Maintenance job started", now=now.isoformat())
                summary[name] = await _run_job(name, session_factory, settings, now)
                logger.info("Maintenance job finished", result=summary[name])
    return summary


async def _main(action: str) -> dict:
    from credit_ledger.database.connection import AsyncSessionLocal, async_engine

    try:
        return await run_maintenance(action, AsyncSessionLocal)
    finally:
        await close_redis_pool()
        await async_engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="credit-ledger-maintenance",
        description="Run credit ledger maintenance jobs.",
    )
    parser.add_argument("action", nargs="?", default="all", choices=ACTIONS)
    args = parser.parse_args()

    app_settings = AppSettings()
    setup_logging(app_settings.is_production, app_settings.LOG_LEVEL)
    asyncio.run(_main(args.action))


if __name__ == "__main__":
    main()
