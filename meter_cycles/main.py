"""Meter cycles FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from meter_cycles.api.errors import register_error_handlers
from meter_cycles.api.routes import assignments, cycles
from meter_cycles.config import settings
from meter_cycles.models import Base
from meter_cycles.services import engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle (startup and shutdown)."""
    # Startup: make sure tables exist when migrations were not run
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized")
    yield
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.api_title,
    description="Meter reading cycles, staff assignments and invoice export",
    version=settings.api_version,
    lifespan=lifespan,
)

register_error_handlers(app)

# Include routers
app.include_router(cycles.router)
app.include_router(assignments.router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    from meter_cycles.services.logging import setup_server_logging

    setup_server_logging()
    uvicorn.run(app, host="0.0.0.0", port=8000)
