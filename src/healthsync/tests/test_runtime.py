"""Tests for wiring the sync stack from Settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.config import Settings
from src.healthsync.runtime import build_cursor_store, build_orchestrator, build_scheduler
from src.healthsync.state import FileCursorStore, PostgresCursorStore
from src.healthsync.tests.conftest import TEST_DEVICE_ID, TEST_USER_ID


def _settings(**overrides) -> Settings:
    values = {"user_id": TEST_USER_ID, "device_id": TEST_DEVICE_ID, "api_token": "secret-token"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestRuntime:
    def test_file_backend(self, tmp_path: Path) -> None:
        store = build_cursor_store(_settings(state_path=str(tmp_path / "state.json")))
        assert isinstance(store, FileCursorStore)
        assert store.path == tmp_path / "state.json"

    def test_postgres_backend(self) -> None:
        assert isinstance(build_cursor_store(_settings(state_backend="postgres")), PostgresCursorStore)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="state_backend"):
            build_cursor_store(_settings(state_backend="redis"))

    def test_orchestrator_and_scheduler(self, tmp_path: Path) -> None:
        settings = _settings(
            state_path=str(tmp_path / "state.json"),
            api_url="https://sync.example.test/hook",
            event_log_size=5,
        )
        orchestrator = build_orchestrator(settings)
        scheduler = build_scheduler(settings, orchestrator)

        assert orchestrator.events.entries() == []
        assert scheduler.is_running is False
        assert scheduler.pending is None
