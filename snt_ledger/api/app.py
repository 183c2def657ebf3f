"""SNT Ledger FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from snt_ledger.api.errors import register_error_handlers
from snt_ledger.api.routes import billing, jobs
from snt_ledger.config import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle (startup and shutdown)."""
    logger.info("Starting %s %s", settings.api_title, settings.api_version)
    yield
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.api_title,
    description="Billing ledger and payment reconciliation for a residential association",
    version=settings.api_version,
    lifespan=lifespan,
)

register_error_handlers(app)

# Include routers
app.include_router(billing.router)
app.include_router(jobs.router)


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint for monitoring."""
    return {"status": "ok"}


__all__ = ["app"]
