"""Tests for DeliveryClient outcome classification (httpx.MockTransport)."""

from __future__ import annotations

import json
import socket

import httpx
import pytest

from src.healthsync.delivery import (
    DeliveryClient,
    DeliveryFailureReason,
    DeliveryOutcome,
    classify_connect_error,
)
from src.models.payload import SyncPayload
from src.healthsync.tests.conftest import MIDNIGHT, NOW, TEST_API_URL, TEST_DEVICE_ID, TEST_USER_ID


@pytest.fixture
def payload() -> SyncPayload:
    return SyncPayload(
        user_id=TEST_USER_ID,
        device_id=TEST_DEVICE_ID,
        sync_from=MIDNIGHT,
        sync_to=NOW,
        steps=8421,
        heart_rate=64,
        sleep=7.2,
        distance=6012.5,
        calories=2103.0,
        elevation_gained=12.0,
        exercise_minutes=35,
        oxygen_saturation=97.0,
        speed=1.4,
    )


def _client(handler, **kwargs) -> DeliveryClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DeliveryClient(TEST_API_URL, "secret-token", http_client=http_client, **kwargs)


class TestDeliveryOutcomes:
    @pytest.mark.asyncio
    async def test_2xx_commits(self, payload: SyncPayload) -> None:
        outcome = await _client(lambda request: httpx.Response(201, json={"ok": True})).send(payload)
        assert outcome.committed is True
        assert outcome.status_code == 201
        assert outcome.describe() == "Sync OK - server responded 201"

    @pytest.mark.asyncio
    async def test_non_2xx_is_http_status_failure(self, payload: SyncPayload) -> None:
        outcome = await _client(lambda request: httpx.Response(500, text="database down")).send(payload)
        assert outcome.committed is False
        assert outcome.retryable is True
        assert outcome.reason is DeliveryFailureReason.http_status
        assert outcome.describe() == "API error: 500 database down"

    @pytest.mark.asyncio
    async def test_long_server_message_is_truncated(self, payload: SyncPayload) -> None:
        outcome = await _client(lambda request: httpx.Response(400, text="x" * 500)).send(payload)
        assert len(outcome.message) == 200

    @pytest.mark.asyncio
    async def test_dns_failure(self, payload: SyncPayload) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            try:
                raise socket.gaierror(-2, "Name or service not known")
            except socket.gaierror as exc:
                raise httpx.ConnectError("connect failed", request=request) from exc

        outcome = await _client(handler).send(payload)
        assert outcome.reason is DeliveryFailureReason.dns
        assert outcome.describe().startswith("DNS error")

    @pytest.mark.asyncio
    async def test_connection_refused(self, payload: SyncPayload) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            try:
                raise ConnectionRefusedError(111, "Connection refused")
            except ConnectionRefusedError as exc:
                raise httpx.ConnectError("connect failed", request=request) from exc

        outcome = await _client(handler).send(payload)
        assert outcome.reason is DeliveryFailureReason.refused
        assert outcome.describe() == "Connection refused - server may be down"

    @pytest.mark.asyncio
    async def test_timeout(self, payload: SyncPayload) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        outcome = await _client(handler).send(payload)
        assert outcome.reason is DeliveryFailureReason.timeout
        assert outcome.describe() == "Connection timed out"

    @pytest.mark.asyncio
    async def test_other_transport_error(self, payload: SyncPayload) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.RemoteProtocolError("server hung up", request=request)

        outcome = await _client(handler).send(payload)
        assert outcome.reason is DeliveryFailureReason.other
        assert outcome.committed is False
        assert outcome.describe() == "server hung up"


class TestDeliveryRequest:
    @pytest.mark.asyncio
    async def test_bearer_token_and_camel_case_body(self, payload: SyncPayload) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            seen["method"] = request.method
            return httpx.Response(200)

        await _client(handler).send(payload)

        assert seen["method"] == "POST"
        assert seen["auth"] == "Bearer secret-token"
        body = seen["body"]
        assert body["userId"] == TEST_USER_ID
        assert body["deviceId"] == TEST_DEVICE_ID
        assert body["exerciseMinutes"] == 35
        assert body["elevationGained"] == 12.0
        assert "sleepStages" not in body

    @pytest.mark.asyncio
    async def test_custom_header_carries_raw_token(self, payload: SyncPayload) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["token"] = request.headers.get("X-Api-Token")
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200)

        await _client(handler, token_header="X-Api-Token").send(payload)

        assert seen["token"] == "secret-token"
        assert seen["auth"] is None


class TestClassifyConnectError:
    def test_falls_back_to_message_text(self) -> None:
        assert classify_connect_error(httpx.ConnectError("[Errno 111] Connection refused")) \
            is DeliveryFailureReason.refused
        assert classify_connect_error(httpx.ConnectError("[Errno -2] Name or service not known")) \
            is DeliveryFailureReason.dns
        assert classify_connect_error(httpx.ConnectError("TLS handshake failed")) \
            is DeliveryFailureReason.other

    def test_failed_outcome_is_retryable(self) -> None:
        assert DeliveryOutcome(committed=False, reason=DeliveryFailureReason.other).retryable is True
        assert DeliveryOutcome(committed=True, status_code=200).retryable is False
