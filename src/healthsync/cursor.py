"""Change cursor — decide whether the store has new data since a token.

The token is an opaque store handle.  This module never inspects it; it only
asks the store for a fresh one (``acquire``) or for the changes since one
(``check``).  Persisting the successor token is the orchestrator's job and
happens only after a no-new-data poll or a confirmed delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.healthsync.base import RECORD_TYPES, HealthStore
from src.healthsync.exceptions import CursorExpiredError

logger = logging.getLogger("healthsync.cursor")

# Guard against a store that keeps answering has_more forever
_MAX_PAGES = 1000


@dataclass(frozen=True)
class CursorCheck:
    """Result of diffing the store against a saved token.

    Attributes:
        has_new_data: True if any upsertion was seen or the token expired.
        next_token:   Successor token to persist once the cycle is settled.
        expired:      True if the saved token had expired and was re-acquired.
        upserts:      Number of upsertions seen.
        deletions:    Number of deletions seen.
    """

    has_new_data: bool
    next_token: str
    expired: bool = False
    upserts: int = 0
    deletions: int = 0


class ChangeCursor:
    """Acquire and diff change tokens over a fixed set of record types."""

    def __init__(self, store: HealthStore, record_types: tuple[str, ...] = RECORD_TYPES) -> None:
        self._store = store
        self._record_types = record_types

    @property
    def record_types(self) -> tuple[str, ...]:
        return self._record_types

    async def acquire(self) -> str:
        """Obtain a new token covering every tracked record type as of now."""
        token = await self._store.get_changes_token(self._record_types)
        logger.debug("Acquired change token for %d record types", len(self._record_types))
        return token

    async def check(self, token: str) -> CursorCheck:
        """Return whether anything was created or updated since ``token``.

        Follows ``has_more`` pages to the end.  An expired token is reported
        as new data with a freshly acquired token.

        Raises:
            HealthStoreError: On store failure (other than expiry).
        """
        upserts = 0
        deletions = 0
        current = token

        try:
            for _ in range(_MAX_PAGES):
                page = await self._store.get_changes(current)
                if page.token_expired:
                    return await self._expired()
                for change in page.changes:
                    if change.is_upsertion:
                        upserts += 1
                    else:
                        deletions += 1
                current = page.next_token or current
                if not page.has_more:
                    break
            else:
                logger.warning("Change feed still had more pages after %d reads", _MAX_PAGES)
        except CursorExpiredError:
            return await self._expired()

        logger.debug("Change check: %d upserts, %d deletions", upserts, deletions)
        return CursorCheck(
            has_new_data=upserts > 0,
            next_token=current,
            upserts=upserts,
            deletions=deletions,
        )

    async def _expired(self) -> CursorCheck:
        logger.info("Change token expired; re-acquiring and treating as new data")
        fresh = await self.acquire()
        return CursorCheck(has_new_data=True, next_token=fresh, expired=True)
