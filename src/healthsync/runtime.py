"""Build the sync stack from Settings."""

from __future__ import annotations

import logging
from functools import partial

from src.config import Settings
from src.healthsync.delivery import DeliveryClient
from src.healthsync.events import EventLog
from src.healthsync.orchestrator import SyncOrchestrator
from src.healthsync.scheduler import SyncScheduler, endpoint_resolves
from src.healthsync.state import CursorStore, FileCursorStore, PostgresCursorStore
from src.healthsync.stores import HealthBridgeStore

logger = logging.getLogger("healthsync.runtime")


def build_cursor_store(settings: Settings) -> CursorStore:
    """Return the configured token store.

    Raises:
        ValueError: If ``state_backend`` is not 'file' or 'postgres'.
    """
    if settings.state_backend == "file":
        return FileCursorStore(settings.state_path)
    if settings.state_backend == "postgres":
        return PostgresCursorStore(settings.device_id)
    raise ValueError(f"Unknown state_backend '{settings.state_backend}' (expected file | postgres)")


def build_orchestrator(settings: Settings, cursor_store: CursorStore | None = None) -> SyncOrchestrator:
    store = HealthBridgeStore(
        settings.store_base_url,
        token=settings.store_token,
        timeout_seconds=settings.http_timeout_seconds,
    )
    delivery = DeliveryClient(
        settings.api_url,
        settings.api_token,
        token_header=settings.api_token_header,
        timeout_seconds=settings.http_timeout_seconds,
    )
    return SyncOrchestrator(
        store=store,
        cursor_store=cursor_store or build_cursor_store(settings),
        delivery=delivery,
        user_id=settings.user_id,
        device_id=settings.device_id,
        timezone_name=settings.timezone,
        events=EventLog(settings.event_log_size),
    )


def build_scheduler(settings: Settings, orchestrator: SyncOrchestrator) -> SyncScheduler:
    return SyncScheduler(
        orchestrator,
        interval_seconds=settings.sync_interval_seconds,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        connectivity_check=partial(endpoint_resolves, settings.api_url),
        connectivity_poll_seconds=settings.connectivity_poll_seconds,
    )
