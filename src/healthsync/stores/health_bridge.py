"""Health Connect bridge adapter.

Talks to a small REST bridge running next to the health data store (on the
phone or a companion service) that exposes record reads and the change-token
feed over HTTP.

Environment variables:
    HEALTHSYNC_STORE_BASE_URL — bridge base URL (default http://127.0.0.1:8765)
    HEALTHSYNC_STORE_TOKEN    — optional bearer token for the bridge

Endpoints used:
    GET  /permissions?recordTypes=a,b   — {"granted": [...]}
    POST /changes/token                 — {"token": "..."}
    GET  /changes?token=...             — {"changes": [...], "nextChangesToken", "hasMore",
                                           "changesTokenExpired"}
    GET  /records/{type}?from=&to=      — {"records": [...], "pageToken"}, records overlapping
                                          [from, to]

Status mapping:
    403 → PermissionDeniedError
    410 → CursorExpiredError (changes feed only)
    other failures → HealthStoreError
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.healthsync.base import (
    Change,
    ChangesPage,
    HealthRecord,
    HealthStore,
    Sample,
    SleepStageInterval,
    TimeWindow,
    parse_instant,
)
from src.healthsync.exceptions import CursorExpiredError, HealthStoreError, PermissionDeniedError

logger = logging.getLogger("healthsync.stores.health_bridge")

# Upper bound on record pages fetched for one read
_MAX_RECORD_PAGES = 100


class HealthBridgeStore(HealthStore):
    """HealthStore backed by the Health Connect REST bridge."""

    DISPLAY_NAME = "Health Connect bridge"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            base_url:        Bridge base URL.
            token:           Optional bearer token for the bridge.
            timeout_seconds: Per-request timeout.
            http_client:     Optional pre-configured httpx client (for testing).
        """
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = httpx.Timeout(timeout_seconds)
        self._http_client = http_client

    # ------------------------------------------------------------------
    # HealthStore interface
    # ------------------------------------------------------------------

    async def has_permissions(self, record_types: tuple[str, ...]) -> bool:
        data = await self._request(
            "GET", "/permissions", params={"recordTypes": ",".join(record_types)}
        )
        granted = set(data.get("granted") or [])
        missing = [t for t in record_types if t not in granted]
        if missing:
            logger.warning("Bridge: read permission missing for %s", missing)
        return not missing

    async def get_changes_token(self, record_types: tuple[str, ...]) -> str:
        data = await self._request("POST", "/changes/token", json={"recordTypes": list(record_types)})
        token = data.get("token")
        if not token:
            raise HealthStoreError("Bridge returned no change token")
        return str(token)

    async def get_changes(self, token: str) -> ChangesPage:
        data = await self._request("GET", "/changes", params={"token": token}, expiry_status=410)
        return self.normalize_changes(data)

    async def read_records(self, record_type: str, window: TimeWindow) -> list[HealthRecord]:
        params: dict[str, str] = {
            "from": window.start.isoformat(),
            "to": window.end.isoformat(),
        }
        records: list[HealthRecord] = []
        for _ in range(_MAX_RECORD_PAGES):
            data = await self._request("GET", f"/records/{record_type}", params=params)
            for raw in data.get("records") or []:
                record = self.normalize_record(record_type, raw)
                if window.overlaps(record.start_time, record.end_time):
                    records.append(record)
            page_token = data.get("pageToken")
            if not page_token:
                break
            params["pageToken"] = page_token
        else:
            logger.warning("Bridge: %s read stopped after %d pages", record_type, _MAX_RECORD_PAGES)
        logger.debug("Bridge: read %d %s records for %s", len(records), record_type, window)
        return records

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_changes(raw: dict) -> ChangesPage:
        """Convert a bridge changes response into a ChangesPage."""
        changes = [
            Change(
                kind="upsert" if item.get("type") == "upsert" else "delete",
                record_type=item.get("recordType"),
                record_id=item.get("recordId"),
            )
            for item in raw.get("changes") or []
        ]
        return ChangesPage(
            changes=changes,
            next_token=str(raw.get("nextChangesToken") or ""),
            has_more=bool(raw.get("hasMore", False)),
            token_expired=bool(raw.get("changesTokenExpired", False)),
        )

    @staticmethod
    def normalize_record(record_type: str, raw: dict) -> HealthRecord:
        """Convert bridge record JSON to a canonical HealthRecord.

        Instantaneous records carry ``time``; interval records carry
        ``startTime``/``endTime``.  Samples and stages without valid
        timestamps are dropped.
        """
        start = parse_instant(raw.get("startTime") or raw.get("time"))
        if start is None:
            raise HealthStoreError(f"{record_type} record {raw.get('id')!r} has no timestamp")

        values: dict[str, float] = {}
        for key, value in (raw.get("values") or {}).items():
            try:
                values[key] = float(value)
            except (TypeError, ValueError):
                logger.warning("Bridge: ignoring non-numeric %s.%s = %r", record_type, key, value)

        samples = []
        for item in raw.get("samples") or []:
            when = parse_instant(item.get("time"))
            value = _safe_float(item.get("value"))
            if when is not None and value is not None:
                samples.append(Sample(time=when, value=value))

        stages = []
        for item in raw.get("stages") or []:
            stage_start = parse_instant(item.get("startTime"))
            stage_end = parse_instant(item.get("endTime"))
            if stage_start is not None and stage_end is not None:
                stages.append(
                    SleepStageInterval(
                        stage=str(item.get("stage") or "unknown"),
                        start_time=stage_start,
                        end_time=stage_end,
                    )
                )

        return HealthRecord(
            record_type=record_type,
            start_time=start,
            end_time=parse_instant(raw.get("endTime")),
            values=values,
            samples=samples,
            stages=stages,
            record_id=raw.get("id"),
            data_origin=raw.get("dataOrigin"),
        )

    # ------------------------------------------------------------------
    # Private HTTP helper
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json: dict | None = None,
        expiry_status: int | None = None,
    ) -> dict[str, Any]:
        """Make a request to the bridge and map failures onto the error taxonomy.

        Raises:
            PermissionDeniedError: On 403.
            CursorExpiredError:    On ``expiry_status``.
            HealthStoreError:      On any other HTTP or transport failure.
        """
        url = f"{self._base_url}{path}"
        headers = self._build_headers()
        try:
            if self._http_client:
                response = await self._http_client.request(
                    method, url, params=params, json=json, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, url, params=params, json=json, headers=headers
                    )
        except httpx.HTTPError as exc:
            raise HealthStoreError(f"Bridge request {method} {path} failed: {exc}") from exc

        if response.status_code == 403:
            raise PermissionDeniedError("Health permissions not granted")
        if expiry_status is not None and response.status_code == expiry_status:
            raise CursorExpiredError("Change token expired")
        if not response.is_success:
            raise HealthStoreError(
                f"Bridge request {method} {path} returned {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise HealthStoreError(f"Bridge returned invalid JSON for {path}") from exc


def _safe_float(value: object) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
