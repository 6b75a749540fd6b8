"""Tests for queue replay, connectivity and own-change tracking."""

import pytest

from groceries.schema import EntityKind, SyncAction
from groceries.sync import OwnChangeSet


class TestOwnChangeSet:
    """Tests for the expiring change id set."""

    def test_contains_within_ttl(self, clock):
        """Test that an id is remembered until its ttl passes."""
        changes = OwnChangeSet(ttl=5.0, clock=clock)
        change_id = changes.issue()

        clock.advance(4.9)
        assert change_id in changes

        clock.advance(0.2)
        assert change_id not in changes
        assert len(changes) == 0

    def test_add_refreshes_expiry(self, clock):
        """Test that re-adding an id restarts its ttl."""
        changes = OwnChangeSet(ttl=5.0, clock=clock)
        changes.add("abc")
        clock.advance(4)
        changes.add("abc")
        clock.advance(4)
        assert "abc" in changes

    def test_issued_ids_are_unique(self, clock):
        """Test that issue() never repeats."""
        changes = OwnChangeSet(clock=clock)
        assert len({changes.issue() for _ in range(100)}) == 100

    def test_non_string_not_contained(self, clock):
        """Test membership of missing change ids."""
        changes = OwnChangeSet(clock=clock)
        assert None not in changes


class TestConnectivityMonitor:
    """Tests for online/offline transitions."""

    @pytest.mark.asyncio
    async def test_listener_runs_on_reconnect_only(self, connectivity):
        """Test that listeners fire on offline -> online, not online -> online."""
        calls = []

        async def listener():
            calls.append("online")

        connectivity.add_listener(listener)
        connectivity.mark_online()
        await connectivity.wait_idle()
        assert calls == []

        connectivity.mark_offline()
        assert connectivity.is_online is False
        connectivity.set_online(True)
        await connectivity.wait_idle()
        assert calls == ["online"]

    @pytest.mark.asyncio
    async def test_listener_failure_is_logged(self, connectivity, caplog):
        """Test that a failing listener does not break the monitor."""

        async def listener():
            raise RuntimeError("boom")

        connectivity.add_listener(listener)
        connectivity.mark_offline()
        connectivity.mark_online()
        await connectivity.wait_idle()

        assert connectivity.is_online
        assert "Reconnect handler failed" in caplog.text


class TestSyncEngine:
    """Tests for draining the mutation queue."""

    @pytest.mark.asyncio
    async def test_drains_in_order(self, server, dict_store, engine):
        """Test that entries replay FIFO and leave the queue empty."""
        await dict_store.enqueue(SyncAction.ITEMS_CREATE.value, {"item": {"name": "milk"}})
        await dict_store.enqueue(SyncAction.ITEMS_CREATE.value, {"item": {"name": "bread"}})

        result = await engine.drain()

        assert result.processed == 2
        assert result.remaining == 0
        assert result.changed
        assert [i["name"] for i in server.items.values()] == ["milk", "bread"]

    @pytest.mark.asyncio
    async def test_network_failure_halts(self, server, dict_store, engine, connectivity):
        """Test that the drain stops at the first unreachable call and keeps the rest."""
        await dict_store.enqueue(SyncAction.ITEMS_CREATE.value, {"item": {"name": "milk"}})
        await dict_store.enqueue(SyncAction.ITEMS_CREATE.value, {"item": {"name": "bread"}})
        server.fail_next("POST", "/items", 503)

        result = await engine.drain()

        assert result.halted
        assert result.processed == 0
        assert result.remaining == 2
        assert connectivity.is_online is False
        assert server.items == {}

    @pytest.mark.asyncio
    async def test_skipped_when_offline(self, server, dict_store, engine, connectivity):
        """Test that nothing is sent while offline."""
        await dict_store.enqueue(SyncAction.ITEMS_DELETE_CHECKED.value, {})
        connectivity.mark_offline()

        result = await engine.drain()

        assert result.skipped
        assert result.remaining == 1
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_application_error_discards(self, server, dict_store, engine):
        """Test that a rejected entry is dropped and the drain continues."""
        await dict_store.enqueue(SyncAction.ITEMS_CREATE.value, {"item": {"name": ""}})
        await dict_store.enqueue(SyncAction.ITEMS_CREATE.value, {"item": {"name": "milk"}})

        result = await engine.drain()

        assert result.discarded == 1
        assert result.processed == 1
        assert await dict_store.queue_length() == 0

    @pytest.mark.asyncio
    async def test_duplicate_delete_not_retried(self, server, dict_store, engine):
        """Test that replaying a delete twice discards the second as not found."""
        item = server.add_item("milk")
        await dict_store.enqueue(SyncAction.ITEMS_DELETE.value, {"id": item["id"]})
        await dict_store.enqueue(SyncAction.ITEMS_DELETE.value, {"id": item["id"]})

        result = await engine.drain()

        assert result.processed == 1
        assert result.discarded == 1
        assert await dict_store.queue_length() == 0
        deletes = [r for r in server.requests if r[0] == "DELETE"]
        assert len(deletes) == 2

        # Nothing left to retry
        again = await engine.drain()
        assert again.processed == 0 and again.discarded == 0

    @pytest.mark.asyncio
    async def test_unknown_action_discarded(self, server, dict_store, engine):
        """Test that entries with an unknown tag are dropped without a request."""
        await dict_store.enqueue("lists.archive", {"id": 1})

        result = await engine.drain()

        assert result.discarded == 1
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_replayed_change_ids_registered(self, dict_store, engine, own_changes, clock):
        """Test that replay marks the entry's change id as our own again."""
        await dict_store.enqueue(
            SyncAction.ITEMS_CREATE.value, {"item": {"name": "milk"}, "change_id": "queued-1"}
        )
        clock.advance(60)
        assert "queued-1" not in own_changes

        await engine.drain()

        assert "queued-1" in own_changes

    @pytest.mark.asyncio
    async def test_change_id_forwarded(self, server, dict_store, engine):
        """Test that the server sees the change id stored with the entry."""
        await dict_store.enqueue(
            SyncAction.ITEMS_CREATE.value, {"item": {"name": "milk"}, "change_id": "queued-1"}
        )

        await engine.drain()

        assert server.change_ids == ["queued-1"]

    @pytest.mark.asyncio
    async def test_temp_ids_remapped(self, server, dict_store, engine):
        """Test that later entries refer to the server id of an offline create."""
        await dict_store.enqueue(
            SyncAction.CATEGORIES_CREATE.value, {"name": "Dairy", "temp_id": "tmp-cat"}
        )
        await dict_store.enqueue(
            SyncAction.ITEMS_CREATE.value,
            {"item": {"name": "milk", "category_id": "tmp-cat"}, "temp_id": "tmp-milk"},
        )
        await dict_store.enqueue(
            SyncAction.ITEMS_TOGGLE_CHECK.value, {"id": "tmp-milk", "checked": True}
        )

        result = await engine.drain()

        assert result.processed == 3
        (category,) = server.categories.values()
        (item,) = server.items.values()
        assert item["category_id"] == category["id"]
        assert item["checked"] is True
        assert engine.resolve_id("tmp-milk") == item["id"]

    @pytest.mark.asyncio
    async def test_not_reentrant(self, dict_store, engine):
        """Test that a drain requested during a drain is skipped."""
        await dict_store.enqueue(SyncAction.ITEMS_DELETE_CHECKED.value, {})
        nested = []

        async def handler(remote, payload, change_id):
            nested.append(await engine.drain())

        engine.handlers = {SyncAction.ITEMS_DELETE_CHECKED.value: handler}
        result = await engine.drain()

        assert result.processed == 1
        assert nested[0].skipped
        assert engine.is_syncing is False


class TestOfflineReplay:
    """Offline sequences recorded by the store and replayed by the engine."""

    @pytest.mark.asyncio
    async def test_queue_matches_issued_mutations(self, server, store, dict_store, engine, connectivity):
        """Test one queue entry per offline mutation, in order, with cache equal to memory."""
        bread = server.add_item("bread")
        await store.fetch_items()
        server.online = False

        milk = await store.create_item("milk")
        await store.update_item(bread["id"], amount="1 loaf")
        await store.toggle_item_check(milk.id, True)
        await store.delete_item(bread["id"])

        entries = await dict_store.queue_entries()
        assert [e.action for e in entries] == [
            "items.create",
            "items.update",
            "items.toggleCheck",
            "items.delete",
        ]
        cached = await dict_store.get_all(EntityKind.ITEMS)
        assert [i.model_dump() for i in cached] == [
            i.model_dump() for i in store._records[EntityKind.ITEMS].values()
        ]

        server.online = True
        connectivity.mark_online()
        result = await engine.drain()

        assert result.processed == 4
        assert [i["name"] for i in server.items.values()] == ["milk"]
        assert next(iter(server.items.values()))["checked"] is True
