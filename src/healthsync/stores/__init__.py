"""Health data store adapters for HealthSync.

Each adapter implements the HealthStore ABC and handles:
- Permission checks for the tracked record types
- Change-token issuance and change-feed paging, with explicit expiry
- Reading records by time window and normalizing them to HealthRecord

Available adapters:
    HealthBridgeStore — Health Connect REST bridge (httpx)
"""

from src.healthsync.stores.health_bridge import HealthBridgeStore

__all__ = ["HealthBridgeStore"]
