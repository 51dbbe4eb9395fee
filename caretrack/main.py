"""FastAPI application entry point — wires everything together.

Usage:
    python -m caretrack.main
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from caretrack.api.routes import install_error_handlers, router
from caretrack.compliance.audit import audit_on_event
from caretrack.compliance.changes import publish_change
from caretrack.compliance.deletion import deletion_workflow, purge_health_data
from caretrack.config import settings
from caretrack.db.engine import db_lifespan
from caretrack.events import start_event_system, stop_event_system, subscribe, unsubscribe
from caretrack.models.enums import DeletionRequestType
from caretrack.schemas.events import CHANGED_TABLES

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting CareTrack compliance service (env=%s)", settings.environment)

    async with db_lifespan():
        logger.info("Database initialized")

        # Audit writer receives every event; change feed only mutating actions
        subscribe(audit_on_event)
        subscribe(publish_change, actions=list(CHANGED_TABLES))
        await start_event_system()

        if settings.retention.auto_purge_data_requests:
            deletion_workflow.register_purge_handler(DeletionRequestType.DATA, purge_health_data)
        else:
            logger.info("Approved data deletion requests wait for manual completion")

        try:
            yield
        finally:
            logger.info("Shutting down CareTrack...")
            await stop_event_system()
            unsubscribe(audit_on_event)
            unsubscribe(publish_change)

    logger.info("CareTrack shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="CareTrack Compliance API",
    description="Data retention, deletion requests, audit trail and data export",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)
install_error_handlers(app)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "environment": settings.environment}


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "caretrack.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
