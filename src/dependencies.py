"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.healthsync.orchestrator import SyncOrchestrator
from src.healthsync.scheduler import SyncScheduler


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Return the orchestrator built at startup (``app.state.orchestrator``)."""
    orchestrator: SyncOrchestrator | None = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sync service not initialized")
    return orchestrator


def get_scheduler(request: Request) -> SyncScheduler:
    """Return the scheduler built at startup (``app.state.scheduler``)."""
    scheduler: SyncScheduler | None = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Sync service not initialized")
    return scheduler


async def require_control_token(
    request: Request, settings: Annotated[Settings, Depends(get_settings)]
) -> None:
    """Guard control routes with the static control token, when one is configured."""
    if not settings.control_token:
        return
    header = request.headers.get("Authorization", "")
    supplied = header.removeprefix("Bearer ").strip()
    if not hmac.compare_digest(supplied, settings.control_token):
        raise HTTPException(status_code=401, detail="Not authenticated")


# Annotated shortcuts for route signatures
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
Scheduler = Annotated[SyncScheduler, Depends(get_scheduler)]
