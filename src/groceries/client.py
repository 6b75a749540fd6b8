"""
High-level grocery list client.

This is the main entry point: it wires the local cache, the server client,
the sync engine and the live update channel to a GroceryStore.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from groceries.config import ClientConfig
from groceries.live.channel import ExponentialBackoff, LiveUpdateChannel, Sleep, Subscription
from groceries.remote.client import RemoteClient
from groceries.storage.base import BaseStore
from groceries.storage.dict_store import DictStore
from groceries.storage.sqlite_store import SQLiteStore
from groceries.store.app_state import GroceryStore
from groceries.sync.connectivity import ConnectivityMonitor
from groceries.sync.engine import DrainResult, SyncEngine
from groceries.sync.own_changes import OwnChangeSet

logger = logging.getLogger(__name__)


class GroceryClient:
    """
    Offline-first grocery list session.

    On start the cached snapshot is shown first, changes queued by an earlier
    session are replayed, then everything is fetched from the server and the
    live channel is opened. Every offline -> online
    transition drains the mutation queue and refetches all data, which also
    catches up on live updates missed while disconnected.

    Usage:
        client = GroceryClient(ClientConfig.from_env())
        await client.start()

        await client.store.create_item("eggs", amount="12")
        for category, items in client.store.items_by_category():
            ...

        await client.close()
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        local_store: BaseStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        live_transport: httpx.AsyncBaseTransport | None = None,
        live_updates: bool = True,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ClientConfig.from_env()
        self.live_updates = live_updates

        if local_store is None:
            local_store = DictStore() if self.config.ephemeral else SQLiteStore(self.config.db_path)
        self.local_store = local_store

        self.connectivity = ConnectivityMonitor()
        self.own_changes = OwnChangeSet(ttl=self.config.own_change_ttl, clock=clock)
        self.remote = RemoteClient(
            self.config.api_url,
            timeout=self.config.request_timeout,
            transport=transport,
        )
        self.sync_engine = SyncEngine(
            self.local_store,
            self.remote,
            self.connectivity,
            own_changes=self.own_changes,
        )
        self.store = GroceryStore(
            self.remote,
            self.local_store,
            own_changes=self.own_changes,
            connectivity=self.connectivity,
            error_dismiss_seconds=self.config.error_dismiss_seconds,
            sync_trigger=self.request_sync,
        )
        self.channel = LiveUpdateChannel(
            backoff=ExponentialBackoff(
                self.config.reconnect_base_delay, self.config.reconnect_max_delay
            ),
            transport=live_transport,
            sleep=sleep,
        )
        self.connectivity.add_listener(self._on_reconnect)

        self._subscription: Subscription | None = None
        self._sync_task: asyncio.Future[DrainResult] | None = None
        self._initialized = False

    async def start(self) -> None:
        """Open the cache, load data and subscribe to live updates."""
        if self._initialized:
            return

        await self.local_store.initialize()
        await self.store.hydrate()
        # Replay the previous session's queue before fetching, so the fetch
        # sees those writes; sync_now() refetches when the drain completes
        result = await self.sync_now() if self.store.pending_syncs else None
        if result is None or result.skipped or result.halted:
            await self.store.refresh_all()

        if self.live_updates:
            self._subscription = await self.channel.connect(
                self.config.events_url,
                self.store.handle_remote_change,
                self.connectivity.set_online,
            )

        if self.connectivity.is_online and self.store.pending_syncs:
            await self.sync_now()

        self._initialized = True
        logger.info("Grocery client started against %s", self.config.server_url)

    async def close(self) -> None:
        """Close all connections."""
        if self._subscription:
            await self._subscription.close()
            self._subscription = None
        await self.connectivity.close()

        task, self._sync_task = self._sync_task, None
        if task and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        await self.remote.close()
        await self.local_store.close()
        self._initialized = False

    async def __aenter__(self) -> GroceryClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # === Sync ===

    async def sync_now(self) -> DrainResult:
        """
        Drain the queue, then refetch everything from the server.

        Entries queued while a pass was running are picked up by another
        pass, as long as the previous one made progress.
        """
        total = DrainResult()
        while True:
            result = await self.sync_engine.drain()
            total.processed += result.processed
            total.discarded += result.discarded
            total.remaining = result.remaining
            total.halted = result.halted
            total.skipped = result.skipped
            if result.skipped or result.halted or not result.remaining or not result.changed:
                break

        await self.store.refresh_pending()
        if not total.skipped and not total.halted:
            await self.store.refresh_all()
        return total

    def request_sync(self) -> None:
        """Schedule sync_now() in the background unless one is already scheduled."""
        if self._sync_task is not None and not self._sync_task.done():
            return
        self._sync_task = asyncio.ensure_future(self.sync_now())
        self._sync_task.add_done_callback(_log_sync_failure)

    async def wait_idle(self) -> None:
        """Wait for background syncs triggered by reconnects or queued writes."""
        await self.connectivity.wait_idle()
        if self._sync_task is not None:
            await asyncio.gather(self._sync_task, return_exceptions=True)

    async def _on_reconnect(self) -> None:
        logger.info("Back online, syncing %d pending change(s)", self.store.pending_syncs)
        await self.sync_now()

    # === Status ===

    def get_status(self) -> dict[str, Any]:
        """Store status plus sync and live channel state."""
        status = self.store.get_status()
        status["syncing"] = self.sync_engine.is_syncing
        status["live"] = self.channel.state.value
        status["server_url"] = self.config.server_url
        return status


def _log_sync_failure(task: asyncio.Future[DrainResult]) -> None:
    if task.cancelled():
        return
    if exc := task.exception():
        logger.error("Background sync failed: %s", exc, exc_info=exc)
