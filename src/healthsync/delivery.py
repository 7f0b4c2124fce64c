"""Delivery client — POST one SyncPayload to the remote endpoint.

Every call returns a DeliveryOutcome; transport errors never propagate.
Retry behaviour is the same for every failure reason.  The reason only
feeds the event log and diagnostics.

Endpoint and credential are static configuration:
    HEALTHSYNC_API_URL          — delivery endpoint
    HEALTHSYNC_API_TOKEN        — static credential
    HEALTHSYNC_API_TOKEN_HEADER — header carrying it (default Authorization)
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from enum import Enum

import httpx

from src.models.payload import SyncPayload

logger = logging.getLogger("healthsync.delivery")

# Longest server message kept in an outcome
_MAX_MESSAGE_CHARS = 200


class DeliveryFailureReason(str, Enum):
    dns = "dns"
    refused = "refused"
    timeout = "timeout"
    http_status = "http_status"
    other = "other"


@dataclass(frozen=True)
class DeliveryOutcome:
    """Classified result of one delivery attempt.

    Attributes:
        committed:   True only for a 2xx response.
        status_code: HTTP status, None when no response was received.
        reason:      Failure classification, None on success.
        message:     Human-readable detail (server message or transport error).
    """

    committed: bool
    status_code: int | None = None
    reason: DeliveryFailureReason | None = None
    message: str = ""

    @property
    def retryable(self) -> bool:
        return not self.committed

    def describe(self) -> str:
        """Return the event-log text for this outcome."""
        if self.committed:
            return f"Sync OK - server responded {self.status_code}"
        if self.reason is DeliveryFailureReason.dns:
            return "DNS error - cannot resolve host. Check URL or internet connection"
        if self.reason is DeliveryFailureReason.refused:
            return "Connection refused - server may be down"
        if self.reason is DeliveryFailureReason.timeout:
            return "Connection timed out"
        if self.reason is DeliveryFailureReason.http_status:
            return f"API error: {self.status_code} {self.message}".rstrip()
        return self.message or "Delivery failed"


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def classify_connect_error(exc: httpx.ConnectError) -> DeliveryFailureReason:
    """Tell DNS failures from refused connections.

    httpx raises ConnectError for both; the underlying OSError is found on
    the exception chain (or, failing that, in the message text).
    """
    for link in _exception_chain(exc):
        if isinstance(link, socket.gaierror):
            return DeliveryFailureReason.dns
        if isinstance(link, ConnectionRefusedError):
            return DeliveryFailureReason.refused

    text = str(exc).lower()
    if "name or service not known" in text or "nodename nor servname" in text \
            or "name resolution" in text or "getaddrinfo" in text:
        return DeliveryFailureReason.dns
    if "refused" in text:
        return DeliveryFailureReason.refused
    return DeliveryFailureReason.other


class DeliveryClient:
    """Send payloads to the configured endpoint and classify the result.

    Usage::

        client = DeliveryClient(api_url, api_token)
        outcome = await client.send(payload)
        if outcome.committed:
            ...
    """

    def __init__(
        self,
        api_url: str,
        api_token: str,
        token_header: str = "Authorization",
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_url:         Delivery endpoint URL.
            api_token:       Static credential.
            token_header:    Header name for the credential.  ``Authorization``
                             sends ``Bearer <token>``; any other header sends
                             the raw token.
            timeout_seconds: Whole-request timeout.
            http_client:     Optional pre-configured httpx client (for testing).
        """
        self._api_url = api_url
        self._api_token = api_token
        self._token_header = token_header
        self._timeout = httpx.Timeout(timeout_seconds)
        self._http_client = http_client

    @property
    def api_url(self) -> str:
        return self._api_url

    def _build_headers(self) -> dict[str, str]:
        if self._token_header.lower() == "authorization":
            return {"Authorization": f"Bearer {self._api_token}"}
        return {self._token_header: self._api_token}

    async def send(self, payload: SyncPayload) -> DeliveryOutcome:
        """POST the payload and classify the result.  Never raises for I/O errors."""
        body = payload.to_wire()
        headers = self._build_headers()
        logger.debug("Sending payload to %s: %s", self._api_url, body)

        try:
            if self._http_client:
                response = await self._http_client.post(
                    self._api_url, json=body, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._api_url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            return self._failed(DeliveryFailureReason.timeout, exc)
        except httpx.ConnectError as exc:
            return self._failed(classify_connect_error(exc), exc)
        except httpx.HTTPError as exc:
            return self._failed(DeliveryFailureReason.other, exc)
        except OSError as exc:
            return self._failed(DeliveryFailureReason.other, exc)

        if response.is_success:
            logger.info("Delivery accepted: HTTP %d", response.status_code)
            return DeliveryOutcome(committed=True, status_code=response.status_code)

        message = (response.text or response.reason_phrase or "").strip()[:_MAX_MESSAGE_CHARS]
        logger.warning("Delivery rejected: HTTP %d %s", response.status_code, message)
        return DeliveryOutcome(
            committed=False,
            status_code=response.status_code,
            reason=DeliveryFailureReason.http_status,
            message=message,
        )

    @staticmethod
    def _failed(reason: DeliveryFailureReason, exc: BaseException) -> DeliveryOutcome:
        logger.warning("Delivery failed (%s): %s", reason.value, exc)
        return DeliveryOutcome(committed=False, reason=reason, message=str(exc) or type(exc).__name__)
