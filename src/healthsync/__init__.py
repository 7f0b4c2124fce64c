"""HealthSync change-cursor sync core.

This package detects new records in a health data store, reduces them into
a daily summary and delivers that summary to a remote endpoint, advancing
the saved change token only after confirmed delivery.

Subpackages:
    stores/ — HealthStore adapters (Health Connect REST bridge)

Core modules:
    base          — HealthStore ABC, HealthRecord, TimeWindow, change-feed types
    config_loader — Load/validate/hot-reload metrics_config.yaml
    aggregator    — Per-metric reduction policies and concurrent fan-out
    cursor        — Change-token acquire/check with expiry handling
    delivery      — Payload POST and outcome classification
    orchestrator  — The sync cycle state machine
    scheduler     — Periodic/forced cycle driver
    state         — Durable storage of the saved change token
    events        — Human-readable event log
"""

from src.healthsync.base import HealthRecord, HealthStore, TimeWindow
from src.healthsync.config_loader import MetricsConfig, get_metrics_config

__all__ = [
    "HealthStore",
    "HealthRecord",
    "TimeWindow",
    "MetricsConfig",
    "get_metrics_config",
]
