"""Pydantic models for the sync control API: status, events, trigger responses."""

from __future__ import annotations

from datetime import datetime

from src.models.base import HealthSyncBase


class SyncEventRead(HealthSyncBase):
    timestamp: datetime
    message: str
    is_error: bool = False


class SyncResultRead(HealthSyncBase):
    status: str
    forced: bool = False
    has_new_data: bool = False
    token_advanced: bool = False
    http_status: int | None = None
    failure_reason: str | None = None
    error: str | None = None
    started_at: datetime
    finished_at: datetime | None = None


class SyncStatusRead(HealthSyncBase):
    state: str
    running: bool
    scheduler_running: bool
    pending_request: bool
    pending_forced: bool
    consecutive_failures: int
    has_saved_token: bool
    last_result: SyncResultRead | None = None


class SyncTriggerResponse(HealthSyncBase):
    accepted: bool = True
    forced: bool = True
    detail: str = "Sync triggered..."
