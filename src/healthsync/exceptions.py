"""Error taxonomy for the sync core.

Only store and aggregation failures are exceptions.  Delivery failures are
reported as ``DeliveryOutcome`` values so the orchestrator can branch on them
without a try/except around the network call.
"""

from __future__ import annotations


class HealthSyncError(Exception):
    """Base class for all sync-core errors."""


class PermissionDeniedError(HealthSyncError):
    """Required read permissions on the health data store are not granted."""


class HealthStoreError(HealthSyncError):
    """A read or change query against the health data store failed."""


class CursorExpiredError(HealthStoreError):
    """The store no longer tracks changes since the given token.

    Recovered transparently by ``ChangeCursor`` — never reaches the caller.
    """


class AggregationError(HealthSyncError):
    """One metric read failed, so the whole snapshot is unusable.

    Attributes:
        metric: Name of the metric whose read failed first.
    """

    def __init__(self, metric: str, cause: BaseException) -> None:
        super().__init__(f"Reading '{metric}' failed: {cause}")
        self.metric = metric
        self.cause = cause
