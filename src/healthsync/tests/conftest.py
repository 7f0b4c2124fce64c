"""Shared fixtures and in-memory fakes for the sync core tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.healthsync.base import (
    Change,
    ChangesPage,
    HealthRecord,
    HealthStore,
    Sample,
    SleepStageInterval,
    TimeWindow,
)
from src.healthsync.config_loader import MetricsConfig, load_metrics_config
from src.healthsync.delivery import DeliveryOutcome
from src.healthsync.events import EventLog
from src.healthsync.exceptions import CursorExpiredError
from src.healthsync.state import CursorStore

TEST_USER_ID = "user-123"
TEST_DEVICE_ID = "pixel-8"
TEST_API_URL = "https://sync.example.test/health/hook"

# "Now" for every test cycle: midday, so today's window is 00:00 → 12:00 UTC
NOW = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)
MIDNIGHT = datetime(2026, 2, 23, 0, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 23) -> datetime:
    """UTC instant on February ``day``, 2026."""
    return datetime(2026, 2, day, hour, minute, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeHealthStore(HealthStore):
    """In-memory store with a change log.

    Tokens are ``tok-<n>``, where ``n`` is the change-log position they cover.
    """

    DISPLAY_NAME = "Fake store"

    def __init__(self) -> None:
        self.records: dict[str, list[HealthRecord]] = {}
        self.changes: list[Change] = []
        self.granted = True
        self.page_size = 100
        self.expired_tokens: set[str] = set()
        self.raise_on_expired = False
        self.changes_error: Exception | None = None
        self.read_errors: dict[str, Exception] = {}
        self.blocked: set[str] = set()
        self.cancelled: list[str] = []
        self.read_calls: list[tuple[str, TimeWindow]] = []

    # -- test helpers --

    def add_record(self, record: HealthRecord) -> HealthRecord:
        self.records.setdefault(record.record_type, []).append(record)
        self.changes.append(Change("upsert", record.record_type, record.record_id))
        return record

    def add_deletion(self, record_type: str = "steps", record_id: str = "gone") -> None:
        self.changes.append(Change("delete", record_type, record_id))

    # -- HealthStore --

    async def has_permissions(self, record_types: tuple[str, ...]) -> bool:
        return self.granted

    async def get_changes_token(self, record_types: tuple[str, ...]) -> str:
        return f"tok-{len(self.changes)}"

    async def get_changes(self, token: str) -> ChangesPage:
        if self.changes_error is not None:
            raise self.changes_error
        if token in self.expired_tokens:
            if self.raise_on_expired:
                raise CursorExpiredError("Change token expired")
            return ChangesPage(token_expired=True)
        start = int(token.split("-")[1])
        page = self.changes[start:start + self.page_size]
        end = start + len(page)
        return ChangesPage(changes=list(page), next_token=f"tok-{end}", has_more=end < len(self.changes))

    async def read_records(self, record_type: str, window: TimeWindow) -> list[HealthRecord]:
        self.read_calls.append((record_type, window))
        if record_type in self.blocked:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(record_type)
                raise
        if record_type in self.read_errors:
            raise self.read_errors[record_type]
        return [r for r in self.records.get(record_type, []) if window.overlaps(r.start_time, r.end_time)]


class MemoryCursorStore(CursorStore):
    def __init__(self, token: str | None = None) -> None:
        self.token = token
        self.saved: list[str] = []

    async def load(self) -> str | None:
        return self.token

    async def save(self, token: str) -> None:
        self.token = token
        self.saved.append(token)


class FakeDelivery:
    """Records payloads and replays queued outcomes (HTTP 200 once exhausted)."""

    def __init__(self, outcomes: list[DeliveryOutcome] | None = None) -> None:
        self.api_url = TEST_API_URL
        self.outcomes = list(outcomes or [])
        self.sent: list = []

    async def send(self, payload) -> DeliveryOutcome:
        self.sent.append(payload)
        if self.outcomes:
            return self.outcomes.pop(0)
        return DeliveryOutcome(committed=True, status_code=200)


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def steps_record(count: float, start: datetime, record_id: str = "s1") -> HealthRecord:
    return HealthRecord(
        record_type="steps",
        start_time=start,
        end_time=start + timedelta(minutes=30),
        values={"count": count},
        record_id=record_id,
    )


def heart_rate_record(start: datetime, readings: list[tuple[datetime, float]]) -> HealthRecord:
    return HealthRecord(
        record_type="heart_rate",
        start_time=start,
        end_time=max(t for t, _ in readings),
        samples=[Sample(time=t, value=v) for t, v in readings],
        record_id="hr1",
    )


def sleep_record(
    start: datetime,
    end: datetime,
    stages: list[tuple[str, datetime, datetime]] | None = None,
    record_id: str = "sl1",
) -> HealthRecord:
    return HealthRecord(
        record_type="sleep_session",
        start_time=start,
        end_time=end,
        stages=[SleepStageInterval(stage=s, start_time=a, end_time=b) for s, a, b in stages or []],
        record_id=record_id,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def metrics_config() -> MetricsConfig:
    """Load the bundled metric policy table."""
    return load_metrics_config()


@pytest.fixture
def store() -> FakeHealthStore:
    return FakeHealthStore()


@pytest.fixture
def cursor_store() -> MemoryCursorStore:
    return MemoryCursorStore(token="tok-0")


@pytest.fixture
def delivery() -> FakeDelivery:
    return FakeDelivery()


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def today() -> TimeWindow:
    return TimeWindow(start=MIDNIGHT, end=NOW)
