"""Sync control routes: trigger a manual sync, inspect status and events."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, status

from src.dependencies import Orchestrator, Scheduler, require_control_token
from src.healthsync.orchestrator import SyncCycleResult
from src.models.sync import SyncEventRead, SyncResultRead, SyncStatusRead, SyncTriggerResponse

router = APIRouter(prefix="/sync", tags=["sync"], dependencies=[Depends(require_control_token)])
logger = logging.getLogger("healthsync.routers.sync")


def _result_read(result: SyncCycleResult) -> SyncResultRead:
    outcome = result.outcome
    return SyncResultRead(
        status=result.status.value,
        forced=result.forced,
        has_new_data=result.has_new_data,
        token_advanced=result.token_advanced,
        http_status=outcome.status_code if outcome else None,
        failure_reason=outcome.reason.value if outcome and outcome.reason else None,
        error=result.error,
        started_at=result.started_at,
        finished_at=result.finished_at,
    )


@router.post("/now", response_model=SyncTriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def sync_now(scheduler: Scheduler, background_tasks: BackgroundTasks) -> Any:
    """Queue a forced sync cycle.

    The cycle runs even when the change cursor reports nothing new.  When the
    background scheduler is not running, the request is drained once after
    the response is sent.
    """
    scheduler.request_sync(force=True)
    if not scheduler.is_running:
        background_tasks.add_task(scheduler.run_pending)
    logger.info("Manual sync queued via API")
    return SyncTriggerResponse()


@router.get("/status", response_model=SyncStatusRead)
async def sync_status(orchestrator: Orchestrator, scheduler: Scheduler) -> Any:
    token = await orchestrator.cursor_store.load()
    last = orchestrator.last_result
    return SyncStatusRead(
        state=orchestrator.state.value,
        running=orchestrator.is_running,
        scheduler_running=scheduler.is_running,
        pending_request=scheduler.pending is not None,
        pending_forced=bool(scheduler.pending),
        consecutive_failures=scheduler.consecutive_failures,
        has_saved_token=token is not None,
        last_result=_result_read(last) if last else None,
    )


@router.get("/events", response_model=list[SyncEventRead])
async def list_events(orchestrator: Orchestrator) -> Any:
    """Return recent sync events, newest first."""
    return [
        SyncEventRead(timestamp=e.timestamp, message=e.message, is_error=e.is_error)
        for e in orchestrator.events.entries()
    ]


@router.delete("/events", status_code=status.HTTP_204_NO_CONTENT)
async def clear_events(orchestrator: Orchestrator) -> None:
    orchestrator.events.clear()
