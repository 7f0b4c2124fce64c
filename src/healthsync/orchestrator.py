"""Sync orchestrator — one cursor-check → aggregate → deliver cycle.

State machine::

    idle → checking_cursor → no_new_data
                           → aggregating → delivering → committed
                                         ↘            ↘ retryable
                                           retryable

The saved change token is read once at the start of a cycle and written at
most once at the end: after a poll that found nothing new, or after the
endpoint confirmed delivery.  A failed cycle leaves the previous token in
place, so the next cycle sees the same changes again and rebuilds the
payload from scratch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from src.healthsync.aggregator import MetricAggregator, MetricSnapshot
from src.healthsync.base import HealthStore, TimeWindow
from src.healthsync.cursor import ChangeCursor, CursorCheck
from src.healthsync.delivery import DeliveryClient, DeliveryOutcome
from src.healthsync.events import EventLog
from src.healthsync.exceptions import AggregationError, HealthStoreError, PermissionDeniedError
from src.healthsync.state import CursorStore
from src.models.base import utc_now
from src.models.payload import SyncPayload

logger = logging.getLogger("healthsync.orchestrator")


class CycleState(str, Enum):
    idle = "idle"
    checking_cursor = "checking_cursor"
    no_new_data = "no_new_data"
    aggregating = "aggregating"
    delivering = "delivering"
    committed = "committed"
    retryable = "retryable"


class CycleStatus(str, Enum):
    """How a cycle terminated."""

    baseline = "baseline"
    no_new_data = "no_new_data"
    committed = "committed"
    retryable = "retryable"
    permission_denied = "permission_denied"


@dataclass
class SyncCycleResult:
    """Result of one orchestrator cycle.

    Attributes:
        status:         Terminal status.
        forced:         True if the cycle bypassed the no-new-data short-circuit.
        has_new_data:   What the cursor check reported.
        token_advanced: True if the saved token was replaced by this cycle.
        outcome:        Delivery outcome, when delivery was attempted.
        error:          Failure detail for retryable / permission_denied cycles.
        started_at:     UTC start of the cycle.
        finished_at:    UTC end of the cycle.
    """

    status: CycleStatus
    forced: bool = False
    has_new_data: bool = False
    token_advanced: bool = False
    outcome: DeliveryOutcome | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (CycleStatus.baseline, CycleStatus.no_new_data, CycleStatus.committed)


class SyncOrchestrator:
    """Run sync cycles against one store, one saved token and one endpoint.

    Only one cycle runs at a time; a second caller waits for the first to
    finish.  Nothing raised inside a cycle escapes ``run_cycle`` — every
    failure becomes a retryable (or permission_denied) result plus an event.

    Usage::

        orchestrator = SyncOrchestrator(
            store=HealthBridgeStore(base_url),
            cursor_store=FileCursorStore("var/sync_state.json"),
            delivery=DeliveryClient(api_url, api_token),
            user_id="u-1",
            device_id="pixel-8",
        )
        result = await orchestrator.run_cycle(force=True)
    """

    def __init__(
        self,
        store: HealthStore,
        cursor_store: CursorStore,
        delivery: DeliveryClient,
        *,
        user_id: str,
        device_id: str,
        timezone_name: str = "UTC",
        aggregator: MetricAggregator | None = None,
        events: EventLog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._cursor_store = cursor_store
        self._delivery = delivery
        self._user_id = user_id
        self._device_id = device_id
        self._timezone = timezone_name
        self._aggregator = aggregator or MetricAggregator(store)
        self._cursor = ChangeCursor(store, self._aggregator.config.record_types())
        self._events = events if events is not None else EventLog()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = CycleState.idle
        self._last_result: SyncCycleResult | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def last_result(self) -> SyncCycleResult | None:
        return self._last_result

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def cursor_store(self) -> CursorStore:
        return self._cursor_store

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self, force: bool = False) -> SyncCycleResult:
        """Run one full cycle.

        Args:
            force: Proceed to aggregation and delivery even when the cursor
                   reports no new data.  Commit/retry rules are unchanged.

        Returns:
            SyncCycleResult describing how the cycle ended.
        """
        async with self._lock:
            result = SyncCycleResult(status=CycleStatus.retryable, forced=force, started_at=self._clock())
            try:
                await self._run(result)
            except Exception as exc:
                logger.exception("Unexpected error during sync cycle")
                self._events.add(f"FAILED: {exc}", is_error=True)
                result.status = CycleStatus.retryable
                result.error = str(exc) or type(exc).__name__
                self._state = CycleState.retryable
            result.finished_at = self._clock()
            self._last_result = result
            logger.info(
                "Sync cycle finished: status=%s forced=%s new_data=%s token_advanced=%s",
                result.status.value, result.forced, result.has_new_data, result.token_advanced,
            )
            return result

    async def _run(self, result: SyncCycleResult) -> None:
        self._state = CycleState.checking_cursor

        try:
            check = await self._check_cursor(result)
        except PermissionDeniedError as exc:
            self._fail(result, CycleStatus.permission_denied, str(exc))
            return
        except HealthStoreError as exc:
            self._fail(result, CycleStatus.retryable, f"Change check error - {exc}")
            return

        if check is None:  # baseline taken
            return

        result.has_new_data = check.has_new_data
        if not check.has_new_data and not result.forced:
            # "nothing changed up to next_token" is itself confirmed information
            await self._cursor_store.save(check.next_token)
            result.token_advanced = True
            result.status = CycleStatus.no_new_data
            self._state = CycleState.no_new_data
            logger.info("No new data since last sync")
            return

        if check.has_new_data:
            self._events.add("New data detected, syncing")
        else:
            self._events.add("Manual sync requested")

        self._state = CycleState.aggregating
        try:
            snapshot = await self._aggregator.collect(TimeWindow.today(self._clock(), self._timezone))
            payload = SyncPayload.build(self._user_id, self._device_id, snapshot)
        except AggregationError as exc:
            if isinstance(exc.cause, PermissionDeniedError):
                self._fail(result, CycleStatus.permission_denied, str(exc.cause))
            else:
                self._fail(result, CycleStatus.retryable, f"Read error - {exc}")
            return
        except ValueError as exc:
            self._fail(result, CycleStatus.retryable, f"Invalid snapshot - {exc}")
            return

        self._events.add(_describe_snapshot(snapshot))

        self._state = CycleState.delivering
        self._events.add(f"Sending to {self._delivery.api_url}")
        outcome = await self._delivery.send(payload)
        result.outcome = outcome

        if not outcome.committed:
            self._fail(result, CycleStatus.retryable, outcome.describe())
            return

        # Advance only now that the endpoint has confirmed the payload
        await self._cursor_store.save(check.next_token)
        result.token_advanced = True
        result.status = CycleStatus.committed
        self._state = CycleState.committed
        self._events.add(outcome.describe())

    async def _check_cursor(self, result: SyncCycleResult) -> CursorCheck | None:
        """Permission gate, then baseline or diff.  Returns None after a baseline."""
        if not await self._store.has_permissions(self._cursor.record_types):
            raise PermissionDeniedError("Health permissions not granted")

        token = await self._cursor_store.load()
        if token is None:
            baseline = await self._cursor.acquire()
            await self._cursor_store.save(baseline)
            result.token_advanced = True
            result.status = CycleStatus.baseline
            self._state = CycleState.idle
            self._events.add("Monitoring started")
            return None

        return await self._cursor.check(token)

    def _fail(self, result: SyncCycleResult, status: CycleStatus, error: str) -> None:
        result.status = status
        result.error = error
        self._state = CycleState.retryable
        self._events.add(f"FAILED: {error}", is_error=True)


def _describe_snapshot(snapshot: MetricSnapshot) -> str:
    values = snapshot.values
    return (
        f"Data read - steps: {values.get('steps', 0)}, hr: {values.get('heart_rate', 0)}, "
        f"sleep: {values.get('sleep', 0):.1f}h, dist: {values.get('distance', 0):.0f}m, "
        f"cal: {values.get('calories', 0):.0f}"
    )
