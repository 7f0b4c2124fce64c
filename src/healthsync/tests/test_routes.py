"""Tests for the control API (health check and /api/v1/sync routes)."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.config import Settings, get_settings
from src.healthsync.events import EventLog
from src.healthsync.orchestrator import SyncOrchestrator
from src.healthsync.scheduler import SyncScheduler
from src.routers import health, sync
from src.healthsync.tests.conftest import (
    NOW,
    TEST_DEVICE_ID,
    TEST_USER_ID,
    FakeDelivery,
    FakeHealthStore,
    MemoryCursorStore,
)


def _settings(**overrides) -> Settings:
    values = {
        "user_id": TEST_USER_ID,
        "device_id": TEST_DEVICE_ID,
        "api_token": "secret-token",
        "autostart_scheduler": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _app(settings: Settings, monkeypatch: pytest.MonkeyPatch, wired: bool = True) -> tuple[FastAPI, FakeDelivery]:
    app = FastAPI()
    app.include_router(health.router)
    app.include_router(sync.router, prefix="/api/v1")
    app.dependency_overrides[get_settings] = lambda: settings
    monkeypatch.setattr(health, "get_settings", lambda: settings)

    delivery = FakeDelivery()
    if wired:
        orchestrator = SyncOrchestrator(
            store=FakeHealthStore(),
            cursor_store=MemoryCursorStore(token="tok-0"),
            delivery=delivery,
            user_id=TEST_USER_ID,
            device_id=TEST_DEVICE_ID,
            events=EventLog(),
            clock=lambda: NOW,
        )
        app.state.orchestrator = orchestrator
        app.state.scheduler = SyncScheduler(orchestrator)
    return app, delivery


class TestHealthRoute:
    def test_health_without_autostart(self, monkeypatch: pytest.MonkeyPatch) -> None:
        app, _ = _app(_settings(), monkeypatch)
        response = TestClient(app).get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["scheduler"] == "stopped"
        assert body["version"] == "0.1.0"

    def test_degraded_when_scheduler_should_run(self, monkeypatch: pytest.MonkeyPatch) -> None:
        app, _ = _app(_settings(autostart_scheduler=True), monkeypatch)
        assert TestClient(app).get("/health").json()["status"] == "degraded"


class TestSyncRoutes:
    def test_sync_now_runs_forced_cycle(self, monkeypatch: pytest.MonkeyPatch) -> None:
        app, delivery = _app(_settings(), monkeypatch)
        client = TestClient(app)

        response = client.post("/api/v1/sync/now")

        assert response.status_code == 202
        assert response.json()["accepted"] is True
        assert len(delivery.sent) == 1

        status = client.get("/api/v1/sync/status").json()
        assert status["state"] == "committed"
        assert status["has_saved_token"] is True
        assert status["pending_request"] is False
        assert status["last_result"]["status"] == "committed"
        assert status["last_result"]["forced"] is True
        assert status["last_result"]["http_status"] == 200

    def test_events_newest_first_and_clear(self, monkeypatch: pytest.MonkeyPatch) -> None:
        app, _ = _app(_settings(), monkeypatch)
        client = TestClient(app)
        client.post("/api/v1/sync/now")

        events = client.get("/api/v1/sync/events").json()
        assert events[0]["message"] == "Sync OK - server responded 200"
        assert events[-1]["message"] == "Manual sync requested"
        assert all(e["is_error"] is False for e in events)

        assert client.delete("/api/v1/sync/events").status_code == 204
        assert client.get("/api/v1/sync/events").json() == []

    def test_status_before_any_cycle(self, monkeypatch: pytest.MonkeyPatch) -> None:
        app, _ = _app(_settings(), monkeypatch)
        status = TestClient(app).get("/api/v1/sync/status").json()
        assert status["state"] == "idle"
        assert status["last_result"] is None
        assert status["scheduler_running"] is False

    def test_control_token_required_when_configured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        app, delivery = _app(_settings(control_token="ctl"), monkeypatch)
        client = TestClient(app)

        assert client.post("/api/v1/sync/now").status_code == 401
        assert client.post("/api/v1/sync/now", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert delivery.sent == []

        ok = client.post("/api/v1/sync/now", headers={"Authorization": "Bearer ctl"})
        assert ok.status_code == 202

    def test_uninitialized_service_is_unavailable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        app, _ = _app(_settings(), monkeypatch, wired=False)
        assert TestClient(app).get("/api/v1/sync/status").status_code == 503


class TestAppFactory:
    def test_app_uses_configured_name_and_debug(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HEALTHSYNC_USER_ID", TEST_USER_ID)
        monkeypatch.setenv("HEALTHSYNC_DEVICE_ID", TEST_DEVICE_ID)
        monkeypatch.setenv("HEALTHSYNC_API_TOKEN", "secret-token")
        monkeypatch.setenv("HEALTHSYNC_APP_NAME", "HealthSync Staging")
        monkeypatch.setenv("HEALTHSYNC_DEBUG", "true")
        get_settings.cache_clear()
        try:
            from src.main import create_app

            app = create_app()
            assert app.title == "HealthSync Staging"
            assert app.debug is True
            paths = {route.path for route in app.routes}
            assert {"/health", "/api/v1/sync/now", "/api/v1/sync/status", "/api/v1/sync/events"} <= paths
        finally:
            get_settings.cache_clear()
