"""Health check endpoints for monitoring."""

from fastapi import APIRouter
from sqlalchemy import text

from credit_ledger.api.core.dependencies import AsyncSessionDep
from credit_ledger.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/")
async def health_check(db: AsyncSessionDep) -> dict:
    """Check that the database answers."""
    try:
        await db.execute(text("SELECT 1"))
        database = "healthy"
    except Exception as exc:
        logger.error("Database health check failed", error=str(exc))
        database = "unhealthy"
    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "checks": {"database": database},
    }


@router.get("/liveness")
async def liveness_check():
    """Simple liveness check - indicates if service is running."""
    return {"status": "alive", "service": "credit-ledger"}
