"""HTTP service for the cabinet scheduler.

Run locally with ``python -m cabinet.main``; in containers point uvicorn at
``cabinet.main:app``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from cabinet import __version__
from cabinet.api.appointments import router as appointments_router
from cabinet.api.appointments import scheduling_error_handler
from cabinet.audit import audit_on_event
from cabinet.config import settings
from cabinet.db.engine import db_lifespan
from cabinet.events import emit, start_event_system, stop_event_system, subscribe
from cabinet.scheduling.errors import SchedulingError
from cabinet.schemas.events import EventType, SystemEvent

# ── Logging ──────────────────────────────────────────────────────────


def configure_logging() -> None:
    """stdlib handlers for our own loggers, structlog rendering on top.

    Production emits one JSON object per line for the log shipper.
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )
    renderer = structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()
logger = logging.getLogger(__name__)

# ── Lifespan ─────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Starting cabinet scheduler (env=%s)", settings.environment)

    async with db_lifespan():
        await start_event_system()
        subscribe(audit_on_event)
        logger.info("Event system started, audit subscriber registered")
        await emit(SystemEvent(event_type=EventType.SYSTEM_STARTUP, source_module="main"))

        try:
            yield
        finally:
            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            await stop_event_system()
            logger.info("Event system stopped")

    logger.info("Cabinet scheduler shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Cabinet Scheduler API",
    description="Appointment booking, conflict detection and lifecycle for a medical practice",
    version=__version__,
    lifespan=lifespan,
)
app.include_router(appointments_router)
app.add_exception_handler(SchedulingError, scheduling_error_handler)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok", "environment": settings.environment, "version": __version__}


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "cabinet.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
