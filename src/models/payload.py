"""Pydantic models for the delivery request body (one per sync attempt)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from src.healthsync.aggregator import MetricSnapshot, SleepStageSummary
from src.models.base import WireModel


class SleepStage(str, Enum):
    light = "light"
    deep = "deep"
    rem = "rem"
    awake = "awake"


class SleepStageIntervalPayload(WireModel):
    stage: SleepStage
    from_: datetime = Field(alias="from")
    to: datetime
    minutes: int = Field(ge=0)


class SleepStagesPayload(WireModel):
    light_minutes: int = Field(default=0, ge=0)
    deep_minutes: int = Field(default=0, ge=0)
    rem_minutes: int = Field(default=0, ge=0)
    awake_minutes: int = Field(default=0, ge=0)
    stages: tuple[SleepStageIntervalPayload, ...] = ()

    @classmethod
    def from_summary(cls, summary: SleepStageSummary) -> "SleepStagesPayload":
        return cls(
            light_minutes=summary.light_minutes,
            deep_minutes=summary.deep_minutes,
            rem_minutes=summary.rem_minutes,
            awake_minutes=summary.awake_minutes,
            stages=tuple(
                SleepStageIntervalPayload(
                    stage=SleepStage(s.stage),
                    from_=s.start,
                    to=s.end,
                    minutes=s.minutes,
                )
                for s in summary.stages
            ),
        )


class SyncPayload(WireModel):
    """Fully assembled daily summary for one delivery attempt.

    Frozen: a payload is never mutated and never re-sent on a later cycle.
    ``sleep_stages`` is omitted from the wire body when None.
    """

    user_id: str
    device_id: str
    sync_from: datetime
    sync_to: datetime
    steps: int = Field(ge=0)
    heart_rate: int = Field(ge=0)
    sleep: float = Field(ge=0)
    distance: float = Field(ge=0)
    calories: float = Field(ge=0)
    elevation_gained: float = Field(ge=0)
    exercise_minutes: int = Field(ge=0)
    oxygen_saturation: float = Field(ge=0)
    speed: float = Field(ge=0)
    sleep_stages: SleepStagesPayload | None = None

    @classmethod
    def build(cls, user_id: str, device_id: str, snapshot: MetricSnapshot) -> "SyncPayload":
        """Assemble a payload from identity fields and a metric snapshot.

        Raises:
            KeyError: If the snapshot lacks a metric required on the wire.
        """
        stages = (
            SleepStagesPayload.from_summary(snapshot.sleep_stages)
            if snapshot.sleep_stages is not None
            else None
        )
        return cls(
            user_id=user_id,
            device_id=device_id,
            sync_from=snapshot.window.start,
            sync_to=snapshot.window.end,
            steps=snapshot["steps"],
            heart_rate=snapshot["heart_rate"],
            sleep=snapshot["sleep"],
            distance=snapshot["distance"],
            calories=snapshot["calories"],
            elevation_gained=snapshot["elevation_gained"],
            exercise_minutes=snapshot["exercise_minutes"],
            oxygen_saturation=snapshot["oxygen_saturation"],
            speed=snapshot["speed"],
            sleep_stages=stages,
        )
