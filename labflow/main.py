"""FastAPI application entry point — wires everything together.

Usage:
    python -m labflow.main

Starts the workflow API with the event system and audit trail. When
STORAGE snapshot_path is set, the store is loaded from it at startup and
written back at shutdown.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
import uvicorn
from fastapi import FastAPI

from labflow.admin.audit import audit_on_event
from labflow.admin.events import emit, start_event_system, stop_event_system, subscribe, unsubscribe
from labflow.api import install_error_handlers, router
from labflow.config import settings
from labflow.schemas.events import EventType, SystemEvent
from labflow.storage import load_snapshot, save_snapshot
from labflow.workflow.engine import WorkflowEngine
from labflow.workflow.service import workflow_service

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


def _restore_store() -> None:
    path = settings.storage.snapshot_path
    if not path:
        logger.warning("STORAGE snapshot_path not set — store is in-memory only")
        return
    if not Path(path).exists():
        logger.info("No snapshot at %s, starting with an empty store", path)
        return
    store = load_snapshot(
        path,
        limit=settings.workflow.sequence_limit,
        fixed_year=settings.workflow.id_year,
    )
    workflow_service.engine = WorkflowEngine(store=store)


# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting LabFlow for %s (env=%s)", settings.lab_name, settings.environment)

    # 1. Store
    _restore_store()

    # 2. Event system
    await start_event_system()
    logger.info("Event system started")

    # 3. Audit trail, always active (global subscriber)
    subscribe(audit_on_event)
    logger.info("Audit trail subscriber registered")

    await emit(SystemEvent(
        event_type=EventType.SYSTEM_STARTUP,
        data={"environment": settings.environment},
        source_module="main",
    ))

    try:
        yield
    finally:
        logger.info("Shutting down LabFlow...")

        await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))

        if settings.storage.snapshot_path:
            save_snapshot(workflow_service.store, settings.storage.snapshot_path)

        await stop_event_system()
        unsubscribe(audit_on_event)
        logger.info("Event system stopped")

    logger.info("LabFlow shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="LabFlow API",
    description="Sample workflow engine for an environmental testing laboratory",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(router)
install_error_handlers(app)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "lab_name": settings.lab_name,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "labflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
