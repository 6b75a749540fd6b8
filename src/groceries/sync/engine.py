"""
Sync engine: replays the durable mutation queue against the server.

Entries are processed strictly in enqueue order. A network failure stops the
drain and leaves the rest queued; any other failure means the entry can never
succeed, so it is logged and dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from groceries.errors import ApplicationError, NetworkFailure
from groceries.remote.client import RemoteClient
from groceries.schema.models import QueueEntry, SyncAction, is_temp_id
from groceries.storage.base import BaseStore
from groceries.sync.connectivity import ConnectivityMonitor
from groceries.sync.own_changes import OwnChangeSet

logger = logging.getLogger(__name__)

Handler = Callable[[RemoteClient, dict[str, Any], str | None], Awaitable[Any]]


# Payload shapes are written by GroceryStore when a mutation is queued
HANDLERS: dict[str, Handler] = {
    SyncAction.CATEGORIES_CREATE.value: lambda r, d, c: r.create_category(d["name"], c),
    SyncAction.CATEGORIES_UPDATE.value: lambda r, d, c: r.update_category(d["id"], d["name"], c),
    SyncAction.CATEGORIES_DELETE.value: lambda r, d, c: r.delete_category(d["id"], c),
    SyncAction.CATEGORIES_REORDER.value: lambda r, d, c: r.reorder_categories(d["categories"], c),
    SyncAction.ITEMS_CREATE.value: lambda r, d, c: r.create_item(d["item"], c),
    SyncAction.ITEMS_UPDATE.value: lambda r, d, c: r.update_item(d["id"], d["item"], c),
    SyncAction.ITEMS_TOGGLE_CHECK.value: lambda r, d, c: r.toggle_item_check(d["id"], d["checked"], c),
    SyncAction.ITEMS_DELETE.value: lambda r, d, c: r.delete_item(d["id"], c),
    SyncAction.ITEMS_DELETE_CHECKED.value: lambda r, d, c: r.delete_checked_items(c),
    SyncAction.RECIPES_CREATE.value: lambda r, d, c: r.create_recipe(d["recipe"], c),
    SyncAction.RECIPES_UPDATE.value: lambda r, d, c: r.update_recipe(d["id"], d["recipe"], c),
    SyncAction.RECIPES_DELETE.value: lambda r, d, c: r.delete_recipe(d["id"], c),
    SyncAction.RECIPES_ADD_TO_LIST.value: lambda r, d, c: r.add_recipe_to_list(d["id"], c),
}

# Payload keys that may hold a temporary id assigned while offline
_ID_KEYS = ("id", "category_id")


@dataclass
class DrainResult:
    """Outcome of one drain() call."""

    processed: int = 0  # Accepted by the server
    discarded: int = 0  # Unknown action or rejected by the server
    remaining: int = 0  # Still queued afterwards
    halted: bool = False  # Stopped by a network failure
    skipped: bool = False  # Offline, or another drain was already running

    @property
    def changed(self) -> bool:
        """Whether server state may differ from what the client last fetched."""
        return self.processed > 0 or self.discarded > 0


class SyncEngine:
    """
    Drains the mutation queue when connectivity is available.

    Features:
    - Non-reentrant: a drain requested while one runs is a no-op
    - Replayed change ids are re-registered so their echoes are suppressed
    - Temporary ids from offline creates are rewritten to server ids in later entries
    """

    def __init__(
        self,
        local_store: BaseStore,
        remote: RemoteClient,
        connectivity: ConnectivityMonitor,
        own_changes: OwnChangeSet | None = None,
        handlers: dict[str, Handler] | None = None,
    ):
        self.local_store = local_store
        self.remote = remote
        self.connectivity = connectivity
        self.own_changes = own_changes
        self.handlers = handlers if handlers is not None else HANDLERS

        self._syncing = False
        # temp id -> server id, kept for the process lifetime so that a drain
        # halted after a create still resolves later entries on the next run
        self._id_map: dict[str, Any] = {}

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    async def drain(self) -> DrainResult:
        """Process every queued entry in order until empty or offline."""
        if self._syncing or not self.connectivity.is_online:
            return DrainResult(skipped=True, remaining=await self.local_store.queue_length())

        self._syncing = True
        result = DrainResult()
        try:
            for entry in await self.local_store.queue_entries():
                if not await self._process(entry, result):
                    result.halted = True
                    break
        finally:
            self._syncing = False

        result.remaining = await self.local_store.queue_length()
        if result.processed or result.discarded:
            logger.info(
                "Sync drained %d entries (%d discarded, %d remaining)",
                result.processed,
                result.discarded,
                result.remaining,
            )
        return result

    async def _process(self, entry: QueueEntry, result: DrainResult) -> bool:
        """Replay one entry. Returns False when the drain must stop."""
        handler = self.handlers.get(entry.action)
        if handler is None:
            logger.warning("Discarding queued entry %d with unknown action %r", entry.id, entry.action)
            await self.local_store.remove_entry(entry.id)
            result.discarded += 1
            return True

        payload = self._remap_ids(entry.payload)
        change_id = payload.get("change_id")
        if change_id and self.own_changes is not None:
            self.own_changes.add(change_id)

        try:
            response = await handler(self.remote, payload, change_id)
        except NetworkFailure as e:
            logger.info("Sync halted at entry %d (%s): %s", entry.id, entry.action, e)
            self.connectivity.mark_offline()
            return False
        except ApplicationError as e:
            logger.warning("Sync failed for %s, discarding entry %d: %s", entry.action, entry.id, e)
            await self.local_store.remove_entry(entry.id)
            result.discarded += 1
            return True

        self._record_server_id(payload, response)
        await self.local_store.remove_entry(entry.id)
        result.processed += 1
        return True

    def _record_server_id(self, payload: dict[str, Any], response: Any) -> None:
        temp_id = payload.get("temp_id")
        server_id = getattr(response, "id", None)
        if temp_id and server_id is not None:
            self._id_map[temp_id] = server_id

    def resolve_id(self, record_id: Any) -> Any:
        """Return the server id for a temporary id once its create has synced."""
        return self._id_map.get(record_id, record_id) if is_temp_id(record_id) else record_id

    def _remap_ids(self, value: Any) -> Any:
        if not self._id_map:
            return value
        if isinstance(value, dict):
            return {
                key: self.resolve_id(item) if key in _ID_KEYS else self._remap_ids(item)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self._remap_ids(item) for item in value]
        return value
