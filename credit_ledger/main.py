import uvicorn
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from credit_ledger.api.core.exceptions.base import register_exception_handlers
from credit_ledger.api.core.middleware.logging import logging_middleware
from credit_ledger.api.router import api_router
from credit_ledger.database.connection import AsyncSessionLocal
from credit_ledger.redis.client import close_redis_pool
from credit_ledger.utils.settings.app import AppSettings
from credit_ledger.utils.logger import setup_logging

app_settings = AppSettings()
is_production = app_settings.is_production


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    app_settings.validate_prod()
    logger = setup_logging(is_production, app_settings.LOG_LEVEL)
    logger.info("Starting credit ledger API...")

    app.state.session_factory = AsyncSessionLocal
    logger.info("Database session factory added to app state")

    yield

    # Shutdown
    await close_redis_pool()
    logger.info("Shutting down credit ledger API...")


app = FastAPI(
    title="Credit Ledger API",
    description="Prepaid, expiring credit balances for users and organizations",
    version=app_settings.API_VERSION,
    lifespan=lifespan,
    docs_url=None if is_production else "/docs",
    redoc_url=None if is_production else "/redoc",
    openapi_url=None if is_production else "/openapi.json",
)

# Register global exception handlers
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(logging_middleware)

app.include_router(api_router)


def run_dev_server():
    """Run development server with auto-reload."""
    uvicorn.run(
        "credit_ledger.main:app",
        host="0.0.0.0",
        port=8010,
        reload=True,
        access_log=False,
    )


def run_prod_server():
    """Run production server."""
    uvicorn.run(
        "credit_ledger.main:app",
        host="0.0.0.0",
        port=8010,
        reload=False,
        access_log=False,
    )
