"""Background scheduler for sync cycles.

Runs the orchestrator on a fixed cadence measured from the end of the
previous cycle (not wall-clock aligned) and accepts one-shot "sync now"
requests:

1. Hold at most one pending request; a new request replaces it, and a
   forced request stays forced even if a scheduled one arrives later
2. Wait for network connectivity before starting a cycle
3. Run the cycle (the orchestrator itself serializes cycles)
4. Re-arm: the sync interval after success, an exponential backoff capped
   at the interval after a retryable failure

Intervals (defaults, from Settings):
    sync_interval_seconds:     3600  (hourly)
    retry_backoff_seconds:      900  (15 min, doubling per consecutive failure)
    connectivity_poll_seconds:   30
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Awaitable, Callable
from urllib.parse import urlparse

from src.healthsync.orchestrator import CycleStatus, SyncCycleResult, SyncOrchestrator

logger = logging.getLogger("healthsync.scheduler")

ConnectivityCheck = Callable[[], Awaitable[bool]]


async def endpoint_resolves(url: str) -> bool:
    """Return True if the host of ``url`` resolves (used as the network precondition)."""
    parsed = urlparse(url)
    host = parsed.hostname
    if not host:
        return False
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    try:
        await asyncio.get_running_loop().getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except (socket.gaierror, OSError) as exc:
        logger.debug("Connectivity check for %s failed: %s", host, exc)
        return False
    return True


class SyncScheduler:
    """Periodic driver for ``SyncOrchestrator``.

    Usage::

        scheduler = SyncScheduler(orchestrator, interval_seconds=3600)
        scheduler.start()                 # first cycle runs immediately
        scheduler.request_sync(force=True)
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval_seconds: float = 3600,
        retry_backoff_seconds: float = 900,
        connectivity_check: ConnectivityCheck | None = None,
        connectivity_poll_seconds: float = 30,
    ) -> None:
        """Initialize the scheduler.

        Args:
            orchestrator:              Runs one cycle per request.
            interval_seconds:          Delay after a settled cycle.
            retry_backoff_seconds:     First delay after a retryable cycle.
            connectivity_check:        Async callable returning True when online.
                                       None skips the check.
            connectivity_poll_seconds: Re-check delay while offline.
        """
        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._retry_backoff = retry_backoff_seconds
        self._connectivity_check = connectivity_check
        self._connectivity_poll = connectivity_poll_seconds
        # None = nothing pending, False = scheduled, True = forced
        self._pending: bool | None = None
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._consecutive_failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> bool | None:
        return self._pending

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def request_sync(self, force: bool = False) -> None:
        """Queue a cycle, replacing any pending one that has not started."""
        self._pending = bool(self._pending) or force
        self._wakeup.set()
        logger.debug("Sync requested (force=%s, pending=%s)", force, self._pending)

    async def run_pending(self) -> SyncCycleResult | None:
        """Run the pending request, if any and if the network is available.

        Returns:
            The cycle result, or None when nothing ran (no request, or offline
            — in which case the request stays pending).
        """
        if self._pending is None:
            return None

        if self._connectivity_check is not None and not await self._connectivity_check():
            logger.info("Network unavailable; holding pending sync request")
            return None

        force = self._pending
        self._pending = None
        result = await self._orchestrator.run_cycle(force=force)

        if result.status is CycleStatus.retryable:
            self._consecutive_failures += 1
        else:
            self._consecutive_failures = 0
        return result

    def next_delay(self, result: SyncCycleResult) -> float:
        """Return the delay before the next scheduled cycle.

        Permission failures wait the full interval: the cycle does not retry
        them itself, the scheduler simply re-arms.
        """
        if result.status is CycleStatus.retryable and self._consecutive_failures > 0:
            backoff = self._retry_backoff * 2 ** (self._consecutive_failures - 1)
            return min(backoff, self._interval)
        return self._interval

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background loop; the first cycle is requested immediately."""
        if self.is_running:
            return
        self.request_sync()
        self._task = asyncio.create_task(self._loop(), name="healthsync-scheduler")
        logger.info("SyncScheduler started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        """Stop the loop.  A cycle already delivering is awaited, not cut short."""
        if self._task is None:
            return
        while self._orchestrator.is_running:
            await asyncio.sleep(0.05)
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("SyncScheduler stopped")

    async def _loop(self) -> None:
        while True:
            try:
                result = await self.run_pending()
            except Exception:
                # run_cycle already converts failures; this guards the loop itself
                logger.exception("SyncScheduler: cycle raised unexpectedly")
                result = None
                self._consecutive_failures += 1

            if result is None:
                delay = self._connectivity_poll if self._pending is not None else self._interval
            else:
                delay = self.next_delay(result)
                if self._pending is not None:
                    continue  # a request arrived while the cycle was running

            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                self.request_sync()
