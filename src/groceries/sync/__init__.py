"""Offline queue replay, connectivity and echo suppression."""

from groceries.sync.connectivity import ConnectivityMonitor
from groceries.sync.engine import DrainResult, SyncEngine
from groceries.sync.own_changes import OwnChangeSet, new_change_id

__all__ = [
    "ConnectivityMonitor",
    "DrainResult",
    "OwnChangeSet",
    "SyncEngine",
    "new_change_id",
]
