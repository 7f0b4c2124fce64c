"""Durable storage for the saved change token (the only cross-cycle state).

Two backends:
    FileCursorStore     — JSON file, replaced atomically on every save.
    PostgresCursorStore — one row per device in ``sync_state`` (asyncpg).

Both are read once at cycle start and written at most once at cycle end.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger("healthsync.state")


class CursorStore(ABC):
    """Persisted change token."""

    @abstractmethod
    async def load(self) -> str | None:
        """Return the saved token, or None before the first run."""

    @abstractmethod
    async def save(self, token: str) -> None:
        """Persist ``token`` as the new watermark."""


class FileCursorStore(CursorStore):
    """Keep the token in a small JSON document on disk.

    Writes go to a sibling temp file followed by ``os.replace`` so a crash
    mid-write never leaves a truncated state file.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> str | None:
        return await asyncio.to_thread(self._read)

    async def save(self, token: str) -> None:
        await asyncio.to_thread(self._write, token)
        logger.debug("Saved change token to %s", self._path)

    def _read(self) -> str | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error(
                "Sync state file %s is unreadable (%s); starting from a new baseline", self._path, exc
            )
            return None
        token = data.get("change_token") if isinstance(data, dict) else None
        return token or None

    def _write(self, token: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "change_token": token,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp, self._path)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sync_state (
    device_id TEXT PRIMARY KEY,
    change_token TEXT NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


class PostgresCursorStore(CursorStore):
    """Keep the token in the ``sync_state`` table, keyed by device id."""

    def __init__(self, device_id: str) -> None:
        self._device_id = device_id

    async def ensure_schema(self) -> None:
        from src.services.database import execute

        await execute(SCHEMA_SQL)

    async def load(self) -> str | None:
        from src.services.database import fetchval

        return await fetchval(
            "SELECT change_token FROM sync_state WHERE device_id = $1",
            self._device_id,
        )

    async def save(self, token: str) -> None:
        from src.services.database import execute

        await execute(
            """
            INSERT INTO sync_state (device_id, change_token, updated_at)
            VALUES ($1, $2, NOW())
            ON CONFLICT (device_id) DO UPDATE
            SET change_token = EXCLUDED.change_token, updated_at = NOW()
            """,
            self._device_id,
            token,
        )
        logger.debug("Saved change token for device %s", self._device_id)
