from fastapi import APIRouter

from credit_ledger.api.health.router import router as health_router
from credit_ledger.api.ledger.router import router as ledger_router

# V1 API router
v1_router = APIRouter(prefix="/v1")
v1_router.include_router(ledger_router)

# Main API router
api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(v1_router)
