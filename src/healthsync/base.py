"""Base classes and canonical data models for the HealthSync core.

Every health data store adapter must subclass HealthStore and return the
canonical HealthRecord / ChangesPage types.  These types are the single
source of truth consumed by the change cursor and the metric aggregator.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

logger = logging.getLogger("healthsync")


# ---------------------------------------------------------------------------
# Record types tracked by the change cursor
# ---------------------------------------------------------------------------

STEPS = "steps"
HEART_RATE = "heart_rate"
SLEEP_SESSION = "sleep_session"
DISTANCE = "distance"
TOTAL_CALORIES_BURNED = "total_calories_burned"
ACTIVE_CALORIES_BURNED = "active_calories_burned"
ELEVATION_GAINED = "elevation_gained"
EXERCISE_SESSION = "exercise_session"
OXYGEN_SATURATION = "oxygen_saturation"
SPEED = "speed"

RECORD_TYPES: tuple[str, ...] = (
    STEPS,
    HEART_RATE,
    SLEEP_SESSION,
    DISTANCE,
    TOTAL_CALORIES_BURNED,
    ACTIVE_CALORIES_BURNED,
    ELEVATION_GAINED,
    EXERCISE_SESSION,
    OXYGEN_SATURATION,
    SPEED,
)


# ---------------------------------------------------------------------------
# Time window
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeWindow:
    """Aggregation range ``[start, end]`` in UTC.

    Attributes:
        start: Inclusive lower bound (tz-aware UTC).
        end:   Inclusive upper bound (tz-aware UTC), "now" at aggregation time.
    """

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"TimeWindow start {self.start} is after end {self.end}")

    @classmethod
    def today(cls, now: datetime, tz: str | ZoneInfo = "UTC") -> "TimeWindow":
        """Return the window from local midnight of ``now`` up to ``now``.

        Args:
            now: Current instant (tz-aware).
            tz:  IANA zone name or ZoneInfo defining "local" midnight.

        Returns:
            TimeWindow in UTC.
        """
        zone = ZoneInfo(tz) if isinstance(tz, str) else tz
        local_now = now.astimezone(zone)
        midnight = datetime.combine(local_now.date(), time.min, tzinfo=zone)
        return cls(
            start=midnight.astimezone(timezone.utc),
            end=now.astimezone(timezone.utc),
        )

    def widen(self, hours: float) -> "TimeWindow":
        """Return a copy whose lower bound is moved back by ``hours``."""
        if not hours:
            return self
        return TimeWindow(start=self.start - timedelta(hours=hours), end=self.end)

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end

    def overlaps(self, start: datetime, end: datetime | None = None) -> bool:
        """Return True if ``[start, end]`` shares any instant with the window.

        An instantaneous record (``end`` None) overlaps when ``start`` is inside.
        """
        return start <= self.end and (end or start) >= self.start


# ---------------------------------------------------------------------------
# Health records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sample:
    """One time-stamped measurement inside a series record."""

    time: datetime
    value: float


@dataclass(frozen=True)
class SleepStageInterval:
    """One stage interval inside a sleep session.

    ``stage`` is the store's stage name: 'light', 'deep', 'rem', 'awake',
    'awake_in_bed', 'out_of_bed', 'sleeping' or 'unknown'.
    """

    stage: str
    start_time: datetime
    end_time: datetime


@dataclass
class HealthRecord:
    """Canonical record read from the health data store.

    Instantaneous records (e.g. oxygen saturation) have no ``end_time``.
    Series records (heart rate, speed) carry their readings in ``samples``.

    Attributes:
        record_type: One of RECORD_TYPES.
        start_time:  UTC start (or measurement time for instantaneous records).
        end_time:    UTC end, None for instantaneous records.
        values:      Scalar fields by name, e.g. {'count': 1200}.
        samples:     Time-stamped series readings.
        stages:      Sleep stage intervals (sleep sessions only).
        record_id:   Store-assigned identifier.
        data_origin: Package/app that wrote the record.
    """

    record_type: str
    start_time: datetime
    end_time: datetime | None = None
    values: dict[str, float] = field(default_factory=dict)
    samples: list[Sample] = field(default_factory=list)
    stages: list[SleepStageInterval] = field(default_factory=list)
    record_id: str | None = None
    data_origin: str | None = None

    @property
    def duration(self) -> timedelta:
        if self.end_time is None:
            return timedelta(0)
        return self.end_time - self.start_time

    def value(self, field_name: str) -> float:
        """Return a scalar field, 0.0 when the record does not carry it."""
        return float(self.values.get(field_name, 0.0) or 0.0)


# ---------------------------------------------------------------------------
# Change tracking
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Change:
    """One entry in a store change feed.

    Attributes:
        kind:        'upsert' for creations/updates, 'delete' for deletions.
        record_type: Record type the change applies to.
        record_id:   Affected record id.
    """

    kind: str
    record_type: str | None = None
    record_id: str | None = None

    @property
    def is_upsertion(self) -> bool:
        return self.kind == "upsert"


@dataclass
class ChangesPage:
    """One page of changes since a token.

    Attributes:
        changes:       Changes in this page.
        next_token:    Successor token covering everything up to this page.
        has_more:      True when another page must be fetched with next_token.
        token_expired: True when the store no longer tracks the given token.
    """

    changes: list[Change] = field(default_factory=list)
    next_token: str = ""
    has_more: bool = False
    token_expired: bool = False


# ---------------------------------------------------------------------------
# Abstract store
# ---------------------------------------------------------------------------


class HealthStore(ABC):
    """Abstract base class for health data store adapters.

    The store is consumed, never implemented here.  Adapters must report
    token expiry explicitly (``ChangesPage.token_expired`` or
    CursorExpiredError) rather than returning an empty change list.
    """

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Store"

    @abstractmethod
    async def has_permissions(self, record_types: tuple[str, ...]) -> bool:
        """Return True if read access is granted for every record type."""

    @abstractmethod
    async def get_changes_token(self, record_types: tuple[str, ...]) -> str:
        """Issue a token covering all changes to ``record_types`` as of now.

        Raises:
            HealthStoreError: On store failure.
        """

    @abstractmethod
    async def get_changes(self, token: str) -> ChangesPage:
        """Return the changes recorded since ``token``.

        Raises:
            CursorExpiredError: If the adapter signals expiry by raising.
            HealthStoreError:   On store failure.
        """

    @abstractmethod
    async def read_records(self, record_type: str, window: TimeWindow) -> list[HealthRecord]:
        """Return all records of ``record_type`` that overlap ``window``.

        A series record that began before ``window.start`` is still returned
        when it runs into the window; callers filter by start time or by
        sample time as their reduction requires.

        Raises:
            HealthStoreError: On store failure.
        """


def parse_instant(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string into a tz-aware UTC datetime.

    Naive strings are assumed to be UTC.  Returns None if the value is None
    or unparseable.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        logger.warning("Could not parse datetime string: %r", value)
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
