"""Metric aggregator — reduce raw store records into one daily snapshot.

Each metric is read and reduced according to its ``MetricPolicy`` from
metrics_config.yaml.  The reduction helpers are pure functions so the
policy rules can be tested without a store:

    sum            → ``reduce_sum``
    latest_sample  → ``reduce_latest_sample``
    latest_session → ``select_latest_session`` + ``session_hours``
    duration_sum   → ``reduce_duration_minutes``

Reads for different metrics are independent and run concurrently.  The
first failing read cancels its siblings and fails the whole snapshot.
A partial snapshot is never returned.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from src.healthsync.base import HealthRecord, HealthStore, TimeWindow
from src.healthsync.config_loader import MetricPolicy, MetricsConfig, get_metrics_config
from src.healthsync.exceptions import AggregationError

logger = logging.getLogger("healthsync.aggregator")


# ---------------------------------------------------------------------------
# Snapshot types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StageInterval:
    """One sleep-stage interval in wire terms (light/deep/rem/awake)."""

    stage: str
    start: datetime
    end: datetime
    minutes: int


@dataclass(frozen=True)
class SleepStageSummary:
    """Per-stage minute totals plus the ordered interval list."""

    light_minutes: int = 0
    deep_minutes: int = 0
    rem_minutes: int = 0
    awake_minutes: int = 0
    stages: tuple[StageInterval, ...] = ()


@dataclass(frozen=True)
class MetricSnapshot:
    """Reduced values for one sync attempt.

    Attributes:
        window:       The base aggregation window (before per-metric lookback).
        values:       Metric name → reduced value.  Every configured metric is present.
        sleep_stages: Stage detail from the selected sleep session, or None.
    """

    window: TimeWindow
    values: dict[str, float | int] = field(default_factory=dict)
    sleep_stages: SleepStageSummary | None = None

    def __getitem__(self, name: str) -> float | int:
        return self.values[name]


# ---------------------------------------------------------------------------
# Pure reduction helpers
# ---------------------------------------------------------------------------


def starting_in(records: list[HealthRecord], window: TimeWindow) -> list[HealthRecord]:
    """Keep the records whose start time falls inside ``window``."""
    return [r for r in records if window.contains(r.start_time)]


def reduce_sum(records: list[HealthRecord], field_name: str) -> float:
    """Sum a scalar field over every record; 0.0 for no records."""
    return sum((r.value(field_name) for r in records), 0.0)


def reduce_latest_sample(
    records: list[HealthRecord], field_name: str, window: TimeWindow
) -> float:
    """Return the value of the most recent sample inside ``window``.

    Series records contribute each of their samples; single-reading records
    contribute ``(start_time, values[field_name])``.  Samples outside the
    window are ignored.  Returns 0.0 when nothing qualifies.
    """
    latest_time = None
    latest_value = 0.0
    for record in records:
        if record.samples:
            candidates = [(s.time, s.value) for s in record.samples]
        else:
            candidates = [(record.start_time, record.value(field_name))]
        for when, value in candidates:
            if not window.contains(when):
                continue
            if latest_time is None or when > latest_time:
                latest_time = when
                latest_value = float(value)
    return latest_value


def select_latest_session(
    sessions: list[HealthRecord], window: TimeWindow
) -> HealthRecord | None:
    """Return the session with the latest start time inside ``window``."""
    in_window = [s for s in sessions if window.contains(s.start_time)]
    if not in_window:
        return None
    return max(in_window, key=lambda s: s.start_time)


def session_hours(session: HealthRecord | None) -> float:
    if session is None:
        return 0.0
    return session.duration.total_seconds() / 3600.0


def reduce_duration_minutes(records: list[HealthRecord]) -> int:
    """Sum session durations and return whole minutes."""
    total_seconds = sum(r.duration.total_seconds() for r in records)
    return int(total_seconds // 60)


def summarize_stages(
    session: HealthRecord | None, config: MetricsConfig
) -> SleepStageSummary | None:
    """Build the stage summary for a sleep session.

    Stage kinds with no wire mapping (e.g. generic 'sleeping') are skipped.
    Returns None when the session carries no mappable stage detail.
    """
    if session is None or not session.stages:
        return None

    totals = {"light": 0, "deep": 0, "rem": 0, "awake": 0}
    intervals: list[StageInterval] = []
    for stage in sorted(session.stages, key=lambda s: s.start_time):
        wire = config.wire_stage(stage.stage)
        if wire is None:
            continue
        minutes = int((stage.end_time - stage.start_time).total_seconds() // 60)
        totals[wire] += minutes
        intervals.append(
            StageInterval(stage=wire, start=stage.start_time, end=stage.end_time, minutes=minutes)
        )

    if not intervals:
        return None

    return SleepStageSummary(
        light_minutes=totals["light"],
        deep_minutes=totals["deep"],
        rem_minutes=totals["rem"],
        awake_minutes=totals["awake"],
        stages=tuple(intervals),
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class MetricAggregator:
    """Read every configured metric from a store and reduce it.

    Usage::

        aggregator = MetricAggregator(store)
        snapshot = await aggregator.collect(TimeWindow.today(now, "Europe/Berlin"))
        snapshot["steps"]   # 8421
    """

    def __init__(self, store: HealthStore, config: MetricsConfig | None = None) -> None:
        self._store = store
        self._config = config or get_metrics_config()

    @property
    def config(self) -> MetricsConfig:
        return self._config

    async def collect(self, window: TimeWindow) -> MetricSnapshot:
        """Read all metrics concurrently and build a snapshot.

        Raises:
            AggregationError: On the first failing metric read.  Remaining
                reads are cancelled.
        """
        policies = list(self._config.metrics.values())
        tasks = {
            asyncio.create_task(self.read_metric(policy, window), name=policy.name): policy
            for policy in policies
        }

        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)

        failures = [t for t in done if not t.cancelled() and t.exception() is not None]
        failed = failures[0] if failures else None
        if failed is not None:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            policy = tasks[failed]
            exc = failed.exception()
            logger.warning("Aggregation failed on metric '%s': %s", policy.name, exc)
            raise AggregationError(policy.name, exc) from exc

        values: dict[str, float | int] = {}
        sleep_stages: SleepStageSummary | None = None
        for task, policy in tasks.items():
            value, stages = task.result()
            values[policy.name] = value
            if stages is not None:
                sleep_stages = stages

        logger.debug("Aggregated %d metrics for %s → %s", len(values), window, values)
        return MetricSnapshot(window=window, values=values, sleep_stages=sleep_stages)

    async def read_metric(
        self, policy: MetricPolicy, window: TimeWindow
    ) -> tuple[float | int, SleepStageSummary | None]:
        """Read and reduce one metric.

        Returns:
            (reduced value, stage summary or None).  The stage summary is only
            produced for the policy configured with ``stages: true``.
        """
        metric_window = window.widen(policy.lookback_hours)
        records = await self._store.read_records(policy.record_type, metric_window)
        stages: SleepStageSummary | None = None

        if policy.policy == "sum":
            value: float = reduce_sum(starting_in(records, metric_window), policy.field or "")
            if value == 0 and policy.fallback:
                fallback_records = await self._store.read_records(policy.fallback, metric_window)
                value = reduce_sum(starting_in(fallback_records, metric_window), policy.field or "")
                logger.debug(
                    "%s: primary sum is 0, using %s fallback = %s",
                    policy.name, policy.fallback, value,
                )
        elif policy.policy == "latest_sample":
            value = reduce_latest_sample(records, policy.field or "", metric_window)
        elif policy.policy == "latest_session":
            session = select_latest_session(records, metric_window)
            value = session_hours(session)
            if policy.stages:
                stages = summarize_stages(session, self._config)
        elif policy.policy == "duration_sum":
            value = reduce_duration_minutes(starting_in(records, metric_window))
        else:
            raise ValueError(f"Unknown reduction policy '{policy.policy}' for {policy.name}")

        if policy.integer:
            return int(round(value)), stages
        return value, stages
