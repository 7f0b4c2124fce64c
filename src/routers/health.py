"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.config import get_settings

router = APIRouter(tags=["system"])
logger = logging.getLogger("healthsync.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Reports ``degraded`` when the background scheduler is expected to run
    but is not running.
    """
    settings = get_settings()
    scheduler = getattr(request.app.state, "scheduler", None)
    scheduler_ok = scheduler is not None and scheduler.is_running
    if settings.autostart_scheduler and not scheduler_ok:
        logger.warning("Health check: sync scheduler is not running")

    return {
        "status": "healthy" if scheduler_ok or not settings.autostart_scheduler else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "scheduler": "running" if scheduler_ok else "stopped",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
