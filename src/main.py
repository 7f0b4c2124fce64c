"""HealthSync — FastAPI application entry point.

Hosts the background sync scheduler and a small control API.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from src.config import get_settings
from src.healthsync.runtime import build_cursor_store, build_orchestrator, build_scheduler
from src.healthsync.state import PostgresCursorStore
from src.routers import health, sync
from src.services.database import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("healthsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting %s v%s [%s]",
        settings.app_name,
        settings.app_version,
        settings.environment,
    )

    uses_database = settings.state_backend == "postgres"
    if uses_database:
        await init_pool(settings)

    cursor_store = build_cursor_store(settings)
    if isinstance(cursor_store, PostgresCursorStore):
        await cursor_store.ensure_schema()

    orchestrator = build_orchestrator(settings, cursor_store=cursor_store)
    scheduler = build_scheduler(settings, orchestrator)
    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler

    if settings.autostart_scheduler:
        scheduler.start()

    yield

    await scheduler.stop()
    if uses_database:
        await close_pool()
    logger.info("HealthSync shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Change-cursor health data sync: detects new records, builds a daily "
            "summary and delivers it to the configured endpoint."
        ),
        version=settings.app_version,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)

    return app


app = create_app()
