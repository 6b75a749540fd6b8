"""
Application state for the grocery client.

GroceryStore is the in-memory source of truth consumers read from. It applies
local mutations optimistically, persists them to the local cache, forwards
them to the server and falls back to the durable queue when the server is
unreachable. Live updates from other clients are merged in; echoes of our own
writes are recognised by change id and skipped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from groceries.config import ERROR_DISMISS_SECONDS
from groceries.errors import ApplicationError, NetworkFailure
from groceries.remote.client import RemoteClient
from groceries.schema.models import (
    Category,
    ChangeEvent,
    EntityKind,
    EventType,
    Ingredient,
    Item,
    Recipe,
    RecordId,
    RecordState,
    SyncAction,
    is_temp_id,
    new_temp_id,
)
from groceries.storage.base import BaseStore
from groceries.sync.connectivity import ConnectivityMonitor
from groceries.sync.own_changes import OwnChangeSet

logger = logging.getLogger(__name__)

Listener = Callable[["GroceryStore"], None]

_ITEM_FIELDS = ("name", "description", "amount", "category_id")

_KIND_BY_MODEL = {kind.model: kind for kind in EntityKind}


@dataclass
class OptimisticMutation:
    """
    One local change, described so every entity goes through the same path.

    apply() mutates in-memory state and returns the optimistic value.
    remote(change_id) performs the server call. commit(response) replaces the
    optimistic value with the server's and returns the final value. revert()
    is only given for changes that are safe to undo.
    """

    action: SyncAction
    payload: dict[str, Any]
    apply: Callable[[], Any]
    remote: Callable[[str], Awaitable[Any]]
    commit: Callable[[Any], Any] | None = None
    revert: Callable[[], None] | None = None
    keys: list[tuple[EntityKind, RecordId]] = field(default_factory=list)


class GroceryStore:
    """
    Reconciliation store for categories, items and recipes.

    Per record: SYNCED -> OPTIMISTIC_PENDING -> SYNCED (server accepted),
    QUEUED_OFFLINE (server unreachable, change queued) or ROLLED_BACK
    (server refused a check toggle). Refused creates, updates and deletes
    are not reverted; the error is raised to the caller instead so that
    user input is never silently discarded.

    Usage:
        store = GroceryStore(remote, local_store)
        await store.hydrate()
        await store.refresh_all()

        item = await store.create_item("milk", amount="2 l")
        await store.toggle_item_check(item.id, True)
    """

    def __init__(
        self,
        remote: RemoteClient,
        local_store: BaseStore,
        own_changes: OwnChangeSet | None = None,
        connectivity: ConnectivityMonitor | None = None,
        error_dismiss_seconds: float = ERROR_DISMISS_SECONDS,
        sync_trigger: Callable[[], Any] | None = None,
    ):
        self.remote = remote
        self.local_store = local_store
        self.own_changes = own_changes or OwnChangeSet()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.error_dismiss_seconds = error_dismiss_seconds
        self.sync_trigger = sync_trigger

        self._records: dict[EntityKind, dict[str, Any]] = {kind: {} for kind in EntityKind}
        self._record_states: dict[tuple[EntityKind, str], RecordState] = {}
        self._pending_writes: list[tuple[str, EntityKind, Any]] = []

        self.loading: dict[EntityKind, bool] = {kind: False for kind in EntityKind}
        self.pending_syncs = 0
        self.error: str | None = None
        self._error_timer: asyncio.TimerHandle | None = None
        self._listeners: list[Listener] = []

    # === Accessors ===

    @property
    def categories(self) -> list[Category]:
        return sorted(self._records[EntityKind.CATEGORIES].values(), key=lambda c: c.sort_order)

    @property
    def items(self) -> list[Item]:
        """Items in display order: unchecked first, by category order then position."""
        order = {str(c.id): c.sort_order for c in self._records[EntityKind.CATEGORIES].values()}

        def display_key(item: Item) -> tuple[int, int, int]:
            category_order = order.get(str(item.category_id), item.category_sort_order)
            if category_order is None:
                category_order = 1 << 30  # Uncategorised last
            return (int(item.checked), category_order, item.position_in_list)

        return sorted(self._records[EntityKind.ITEMS].values(), key=display_key)

    @property
    def recipes(self) -> list[Recipe]:
        return sorted(self._records[EntityKind.RECIPES].values(), key=lambda r: r.name.lower())

    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    @property
    def is_loading(self) -> bool:
        return any(self.loading.values())

    @property
    def checked_items(self) -> list[Item]:
        return [item for item in self.items if item.checked]

    def get(self, kind: EntityKind, record_id: RecordId) -> Any | None:
        return self._records[kind].get(str(record_id))

    def record_state(self, kind: EntityKind, record_id: RecordId) -> RecordState | None:
        return self._record_states.get((kind, str(record_id)))

    def items_by_category(self) -> list[tuple[Category | None, list[Item]]]:
        """Unchecked items grouped by category in display order, uncategorised last."""
        groups: dict[str, list[Item]] = {}
        for item in self.items:
            if not item.checked:
                groups.setdefault(str(item.category_id), []).append(item)

        result: list[tuple[Category | None, list[Item]]] = []
        for category in self.categories:
            if items := groups.pop(str(category.id), None):
                result.append((category, items))
        leftovers = [item for items in groups.values() for item in items]
        if leftovers:
            result.append((None, leftovers))
        return result

    def get_status(self) -> dict[str, Any]:
        """Current status for display."""
        return {
            "online": self.is_online,
            "pending_syncs": self.pending_syncs,
            "loading": {kind.value: flag for kind, flag in self.loading.items()},
            "error": self.error,
            "categories": len(self._records[EntityKind.CATEGORIES]),
            "items": len(self._records[EntityKind.ITEMS]),
            "recipes": len(self._records[EntityKind.RECIPES]),
        }

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener after every state change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # === Error notice ===

    def set_error(self, message: str) -> None:
        """Show an error notice that clears itself after error_dismiss_seconds."""
        self.error = message
        if self._error_timer:
            self._error_timer.cancel()
            self._error_timer = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop and self.error_dismiss_seconds > 0:
            self._error_timer = loop.call_later(self.error_dismiss_seconds, self.clear_error)
        self._notify()

    def clear_error(self) -> None:
        if self._error_timer:
            self._error_timer.cancel()
            self._error_timer = None
        self.error = None
        self._notify()

    # === Local state helpers ===

    def _put(self, kind: EntityKind, record: BaseModel) -> None:
        self._records[kind][str(record.id)] = record
        self._pending_writes.append(("put", kind, record))

    def _remove(self, kind: EntityKind, record_id: RecordId) -> Any | None:
        self._record_states.pop((kind, str(record_id)), None)
        self._pending_writes.append(("delete", kind, record_id))
        return self._records[kind].pop(str(record_id), None)

    def _replace(self, kind: EntityKind, records: Iterable[BaseModel]) -> None:
        self._records[kind] = {str(r.id): r for r in records}
        self._pending_writes.append(("replace", kind, list(self._records[kind].values())))

    async def _flush(self) -> None:
        """Write pending state changes to the local cache, in order."""
        writes, self._pending_writes = self._pending_writes, []
        for op, kind, value in writes:
            if op == "put":
                await self.local_store.put(kind, value)
            elif op == "delete":
                await self.local_store.delete(kind, value)
            else:
                await self.local_store.replace_all(kind, value)

    def _mark(self, keys: Iterable[tuple[EntityKind, RecordId]], state: RecordState) -> None:
        for kind, record_id in keys:
            self._record_states[(kind, str(record_id))] = state

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    async def refresh_pending(self) -> int:
        """Re-read the pending-sync counter from the queue."""
        self.pending_syncs = await self.local_store.queue_length()
        self._notify()
        return self.pending_syncs

    def _require(self, kind: EntityKind, record_id: RecordId) -> Any:
        record = self.get(kind, record_id)
        if record is None:
            raise KeyError(f"{kind.value} {record_id} not found")
        return record

    # === Optimistic mutation ===

    async def _run_mutation(self, mutation: OptimisticMutation) -> Any:
        # The id must be tracked before the request goes out: the server can
        # push the echo before the response arrives
        change_id = self.own_changes.issue()

        optimistic = mutation.apply()
        self._mark(mutation.keys, RecordState.OPTIMISTIC_PENDING)
        await self._flush()
        self._notify()

        # Writes reach the server in issue order: anything behind a queued
        # entry, or aimed at a record that exists only locally, waits its turn
        if _references_unsynced(mutation.payload) or await self.local_store.queue_length():
            await self._queue(mutation, change_id)
            if self.is_online and self.sync_trigger:
                self.sync_trigger()
            return optimistic

        try:
            response = await mutation.remote(change_id)
        except NetworkFailure as e:
            logger.info("Offline, queueing %s: %s", mutation.action.value, e)
            self.connectivity.mark_offline()
            await self._queue(mutation, change_id)
            return optimistic
        except ApplicationError as e:
            if mutation.revert is None:
                self.set_error(str(e))
                raise
            mutation.revert()
            self._mark(mutation.keys, RecordState.ROLLED_BACK)
            await self._flush()
            self.set_error(str(e))
            return None

        self.connectivity.mark_online()
        final = mutation.commit(response) if mutation.commit else optimistic
        # Temporary records replaced by commit() no longer have a state
        synced = [(kind, rid) for kind, rid in mutation.keys if self.get(kind, rid) is not None]
        for record in final if isinstance(final, list) else [final]:
            if isinstance(record, BaseModel) and (kind := _KIND_BY_MODEL.get(type(record))):
                synced.append((kind, record.id))
        self._mark(synced, RecordState.SYNCED)
        await self._flush()
        self._notify()
        return final

    async def _queue(self, mutation: OptimisticMutation, change_id: str) -> None:
        await self.local_store.enqueue(
            mutation.action.value, {**mutation.payload, "change_id": change_id}
        )
        self._mark(mutation.keys, RecordState.QUEUED_OFFLINE)
        await self.refresh_pending()

    def _replace_temp(self, kind: EntityKind, temp_id: str, record: BaseModel) -> BaseModel:
        self._remove(kind, temp_id)
        self._put(kind, record)
        return record

    # === Categories ===

    async def create_category(self, name: str) -> Category:
        name = name.strip()
        temp = Category(
            id=new_temp_id(),
            name=name,
            sort_order=max((c.sort_order for c in self.categories), default=0) + 1,
        )

        def apply() -> Category:
            self._put(EntityKind.CATEGORIES, temp)
            return temp

        return await self._run_mutation(OptimisticMutation(
            action=SyncAction.CATEGORIES_CREATE,
            payload={"name": name, "temp_id": temp.id},
            apply=apply,
            remote=lambda cid: self.remote.create_category(name, cid),
            commit=lambda server: self._replace_temp(EntityKind.CATEGORIES, temp.id, server),
            keys=[(EntityKind.CATEGORIES, temp.id)],
        ))

    async def update_category(self, category_id: RecordId, name: str) -> Category:
        name = name.strip()
        current = self._require(EntityKind.CATEGORIES, category_id)
        updated = current.model_copy(update={"name": name})

        def apply() -> Category:
            self._put(EntityKind.CATEGORIES, updated)
            return updated

        def commit(server: Category) -> Category:
            self._put(EntityKind.CATEGORIES, server)
            return server

        return await self._run_mutation(OptimisticMutation(
            action=SyncAction.CATEGORIES_UPDATE,
            payload={"id": category_id, "name": name},
            apply=apply,
            remote=lambda cid: self.remote.update_category(category_id, name, cid),
            commit=commit,
            keys=[(EntityKind.CATEGORIES, category_id)],
        ))

    async def delete_category(self, category_id: RecordId) -> None:
        """The server refuses to delete a category that still has items."""
        self._require(EntityKind.CATEGORIES, category_id)
        await self._run_mutation(OptimisticMutation(
            action=SyncAction.CATEGORIES_DELETE,
            payload={"id": category_id},
            apply=lambda: self._remove(EntityKind.CATEGORIES, category_id),
            remote=lambda cid: self.remote.delete_category(category_id, cid),
            keys=[(EntityKind.CATEGORIES, category_id)],
        ))

    async def reorder_categories(self, ordered_ids: list[RecordId]) -> list[Category]:
        """Give the listed categories dense 1-based sort orders in list order."""
        orders = [{"id": cid, "sort_order": i + 1} for i, cid in enumerate(ordered_ids)]

        def apply() -> list[Category]:
            for order in orders:
                current = self._require(EntityKind.CATEGORIES, order["id"])
                self._put(
                    EntityKind.CATEGORIES,
                    current.model_copy(update={"sort_order": order["sort_order"]}),
                )
            return self.categories

        def commit(server: list[Category]) -> list[Category]:
            self._replace(EntityKind.CATEGORIES, server)
            return self.categories

        return await self._run_mutation(OptimisticMutation(
            action=SyncAction.CATEGORIES_REORDER,
            payload={"categories": orders},
            apply=apply,
            remote=lambda cid: self.remote.reorder_categories(orders, cid),
            commit=commit,
            keys=[(EntityKind.CATEGORIES, cid) for cid in ordered_ids],
        ))

    # === Items ===

    def _category_display(self, category_id: RecordId | None) -> dict[str, Any]:
        category = self.get(EntityKind.CATEGORIES, category_id) if category_id is not None else None
        return {
            "category_name": category.name if category else None,
            "category_sort_order": category.sort_order if category else None,
        }

    async def create_item(
        self,
        name: str,
        description: str | None = None,
        amount: str | None = None,
        category_id: RecordId | None = None,
    ) -> Item:
        fields = {
            "name": name.strip(),
            "description": description,
            "amount": amount,
            "category_id": category_id,
        }
        temp = Item(
            id=new_temp_id(),
            checked=False,
            position_in_list=max((i.position_in_list for i in self.items), default=0) + 1,
            **fields,
            **self._category_display(category_id),
        )

        def apply() -> Item:
            self._put(EntityKind.ITEMS, temp)
            return temp

        return await self._run_mutation(OptimisticMutation(
            action=SyncAction.ITEMS_CREATE,
            payload={"item": fields, "temp_id": temp.id},
            apply=apply,
            remote=lambda cid: self.remote.create_item(fields, cid),
            commit=lambda server: self._replace_temp(EntityKind.ITEMS, temp.id, server),
            keys=[(EntityKind.ITEMS, temp.id)],
        ))

    async def update_item(self, item_id: RecordId, **changes: Any) -> Item:
        """Update name, description, amount and/or category_id."""
        unknown = set(changes) - set(_ITEM_FIELDS)
        if unknown:
            raise TypeError(f"Cannot update item fields: {sorted(unknown)}")

        current = self._require(EntityKind.ITEMS, item_id)
        # The server replaces all editable fields, so always send the full set
        fields = {key: getattr(current, key) for key in _ITEM_FIELDS}
        fields.update(changes)
        updated = current.model_copy(update={**fields, **self._category_display(fields["category_id"])})

        def apply() -> Item:
            self._put(EntityKind.ITEMS, updated)
            return updated

        def commit(server: Item) -> Item:
            self._put(EntityKind.ITEMS, server)
            return server

        return await self._run_mutation(OptimisticMutation(
            action=SyncAction.ITEMS_UPDATE,
            payload={"id": item_id, "item": fields},
            apply=apply,
            remote=lambda cid: self.remote.update_item(item_id, fields, cid),
            commit=commit,
            keys=[(EntityKind.ITEMS, item_id)],
        ))

    def _next_unchecked_position(self, category_id: RecordId | None, exclude: RecordId) -> int:
        positions = [
            item.position_in_list
            for item in self._records[EntityKind.ITEMS].values()
            if not item.checked
            and str(item.category_id) == str(category_id)
            and str(item.id) != str(exclude)
        ]
        return max(positions, default=0) + 1

    async def toggle_item_check(self, item_id: RecordId, checked: bool) -> Item | None:
        """
        Check or uncheck an item.

        Unchecking moves the item to the end of its category's unchecked
        items. This is the one mutation that rolls back when the server
        refuses it; the error is shown as a notice rather than raised.
        """
        prior = self._require(EntityKind.ITEMS, item_id)
        update: dict[str, Any] = {"checked": checked}
        if not checked and prior.checked:
            update["position_in_list"] = self._next_unchecked_position(prior.category_id, item_id)
        toggled = prior.model_copy(update=update)

        def apply() -> Item:
            self._put(EntityKind.ITEMS, toggled)
            return toggled

        def commit(server: Item) -> Item:
            self._put(EntityKind.ITEMS, server)
            return server

        return await self._run_mutation(OptimisticMutation(
            action=SyncAction.ITEMS_TOGGLE_CHECK,
            payload={"id": item_id, "checked": checked},
            apply=apply,
            remote=lambda cid: self.remote.toggle_item_check(item_id, checked, cid),
            commit=commit,
            revert=lambda: self._put(EntityKind.ITEMS, prior),
            keys=[(EntityKind.ITEMS, item_id)],
        ))

    async def delete_item(self, item_id: RecordId) -> None:
        self._require(EntityKind.ITEMS, item_id)
        await self._run_mutation(OptimisticMutation(
            action=SyncAction.ITEMS_DELETE,
            payload={"id": item_id},
            apply=lambda: self._remove(EntityKind.ITEMS, item_id),
            remote=lambda cid: self.remote.delete_item(item_id, cid),
            keys=[(EntityKind.ITEMS, item_id)],
        ))

    async def delete_checked_items(self) -> int:
        """Remove every checked item. Returns how many were removed locally."""
        checked_ids = [item.id for item in self.checked_items]

        def apply() -> int:
            for item_id in checked_ids:
                self._remove(EntityKind.ITEMS, item_id)
            return len(checked_ids)

        await self._run_mutation(OptimisticMutation(
            action=SyncAction.ITEMS_DELETE_CHECKED,
            payload={},
            apply=apply,
            remote=lambda cid: self.remote.delete_checked_items(cid),
        ))
        return len(checked_ids)

    # === Recipes ===

    @staticmethod
    def _recipe_body(name: str, ingredients: Iterable[Ingredient | dict[str, Any]]) -> dict[str, Any]:
        lines = []
        for position, ingredient in enumerate(ingredients):
            if isinstance(ingredient, dict):
                ingredient = Ingredient.model_validate(ingredient)
            lines.append({
                "name": ingredient.name.strip(),
                "description": ingredient.description,
                "amount": ingredient.amount,
                "category_id": ingredient.category_id,
                "position": ingredient.position or position,
            })
        return {"name": name.strip(), "ingredients": lines}

    async def create_recipe(
        self, name: str, ingredients: Iterable[Ingredient | dict[str, Any]] = ()
    ) -> Recipe:
        body = self._recipe_body(name, ingredients)
        temp = Recipe(id=new_temp_id(), **body)

        def apply() -> Recipe:
            self._put(EntityKind.RECIPES, temp)
            return temp

        return await self._run_mutation(OptimisticMutation(
            action=SyncAction.RECIPES_CREATE,
            payload={"recipe": body, "temp_id": temp.id},
            apply=apply,
            remote=lambda cid: self.remote.create_recipe(body, cid),
            commit=lambda server: self._replace_temp(EntityKind.RECIPES, temp.id, server),
            keys=[(EntityKind.RECIPES, temp.id)],
        ))

    async def update_recipe(
        self,
        recipe_id: RecordId,
        name: str,
        ingredients: Iterable[Ingredient | dict[str, Any]] = (),
    ) -> Recipe:
        current = self._require(EntityKind.RECIPES, recipe_id)
        body = self._recipe_body(name, ingredients)
        updated = Recipe(id=current.id, created_at=current.created_at, **body)

        def apply() -> Recipe:
            self._put(EntityKind.RECIPES, updated)
            return updated

        def commit(server: Recipe) -> Recipe:
            self._put(EntityKind.RECIPES, server)
            return server

        return await self._run_mutation(OptimisticMutation(
            action=SyncAction.RECIPES_UPDATE,
            payload={"id": recipe_id, "recipe": body},
            apply=apply,
            remote=lambda cid: self.remote.update_recipe(recipe_id, body, cid),
            commit=commit,
            keys=[(EntityKind.RECIPES, recipe_id)],
        ))

    async def delete_recipe(self, recipe_id: RecordId) -> None:
        self._require(EntityKind.RECIPES, recipe_id)
        await self._run_mutation(OptimisticMutation(
            action=SyncAction.RECIPES_DELETE,
            payload={"id": recipe_id},
            apply=lambda: self._remove(EntityKind.RECIPES, recipe_id),
            remote=lambda cid: self.remote.delete_recipe(recipe_id, cid),
            keys=[(EntityKind.RECIPES, recipe_id)],
        ))

    async def add_recipe_to_list(self, recipe_id: RecordId) -> list[Item]:
        """
        Add a recipe's ingredients to the list.

        Ingredients already cached for the recipe appear immediately as
        temporary items; the server's items replace them.
        """
        recipe = self.get(EntityKind.RECIPES, recipe_id)
        next_position = max((i.position_in_list for i in self.items), default=0) + 1
        temps = [
            Item(
                id=new_temp_id(),
                name=ingredient.name,
                description=ingredient.description,
                amount=ingredient.amount,
                category_id=ingredient.category_id,
                position_in_list=next_position + offset,
                **self._category_display(ingredient.category_id),
            )
            for offset, ingredient in enumerate(recipe.ingredients if recipe else [])
        ]

        def apply() -> list[Item]:
            for item in temps:
                self._put(EntityKind.ITEMS, item)
            return temps

        def commit(server: list[Item]) -> list[Item]:
            for item in temps:
                self._remove(EntityKind.ITEMS, item.id)
            for item in server:
                self._put(EntityKind.ITEMS, item)
            return server

        return await self._run_mutation(OptimisticMutation(
            action=SyncAction.RECIPES_ADD_TO_LIST,
            payload={"id": recipe_id},
            apply=apply,
            remote=lambda cid: self.remote.add_recipe_to_list(recipe_id, cid),
            commit=commit,
            keys=[(EntityKind.ITEMS, item.id) for item in temps],
        ))

    # === Fetching ===

    async def hydrate(self) -> None:
        """Load the cached snapshot, before anything is known about the network."""
        for kind in EntityKind:
            self._records[kind] = {str(r.id): r for r in await self.local_store.get_all(kind)}
        await self.refresh_pending()

    async def _fetch(self, kind: EntityKind, loader: Callable[[], Awaitable[list[Any]]]) -> None:
        self.loading[kind] = True
        self._notify()
        try:
            try:
                records = await loader()
            except NetworkFailure as e:
                logger.info("Offline, showing cached %s: %s", kind.value, e)
                self.connectivity.mark_offline()
                cached = await self.local_store.get_all(kind)
                self._records[kind] = {str(r.id): r for r in cached}
                return
            except ApplicationError as e:
                # Keep showing what we have; stale beats empty
                self.set_error(f"Failed to load {kind.value}: {e}")
                return

            self.connectivity.mark_online()
            if await self.local_store.queue_length():
                # Local optimistic values stand until the queue has synced
                logger.info("Keeping local %s until queued changes sync", kind.value)
                return

            # A mutation may be awaiting its response while this fetch ran
            in_flight = {
                rid: self._records[kind][rid]
                for (k, rid), state in self._record_states.items()
                if k is kind and state is RecordState.OPTIMISTIC_PENDING and rid in self._records[kind]
            }
            fresh = {str(r.id): r for r in records}
            fresh.update(in_flight)
            self._replace(kind, fresh.values())
            for key in [k for k in self._record_states if k[0] is kind and k[1] not in in_flight]:
                del self._record_states[key]
            await self._flush()
        finally:
            self.loading[kind] = False
            self._notify()

    async def fetch_categories(self) -> None:
        await self._fetch(EntityKind.CATEGORIES, self.remote.list_categories)

    async def fetch_items(self) -> None:
        await self._fetch(EntityKind.ITEMS, self.remote.list_items)

    async def fetch_recipes(self) -> None:
        await self._fetch(EntityKind.RECIPES, self.remote.list_recipes)

    async def fetch_recipe(self, recipe_id: RecordId) -> Recipe | None:
        """Load one recipe with its ingredients; falls back to the cache when offline."""
        try:
            recipe = await self.remote.get_recipe(recipe_id)
        except NetworkFailure:
            self.connectivity.mark_offline()
            return self.get(EntityKind.RECIPES, recipe_id)
        except ApplicationError as e:
            self.set_error(f"Failed to load recipe: {e}")
            return self.get(EntityKind.RECIPES, recipe_id)
        self.connectivity.mark_online()
        self._put(EntityKind.RECIPES, recipe)
        await self._flush()
        self._notify()
        return recipe

    async def refresh_all(self) -> None:
        """Full refetch of every entity kind."""
        await self.fetch_categories()
        await self.fetch_items()
        await self.fetch_recipes()
        await self.refresh_pending()

    # === Live updates ===

    async def handle_remote_change(self, event: ChangeEvent) -> bool:
        """
        Merge a change pushed by the server.

        Returns False when the event was skipped: an echo of our own write,
        an unknown type, or a payload that does not parse.
        """
        if event.change_id and event.change_id in self.own_changes:
            logger.debug("Skipping echo of own change %s (%s)", event.change_id, event.type)
            return False

        try:
            event_type = EventType(event.type)
        except ValueError:
            logger.warning("Ignoring unknown live update type %r", event.type)
            return False

        try:
            self._apply_remote(event_type, event.data)
        except (ValidationError, KeyError, TypeError) as e:
            self._pending_writes.clear()
            logger.error("Ignoring malformed %s payload: %s", event.type, e)
            return False

        await self._flush()
        self._notify()
        return True

    def _apply_remote(self, event_type: EventType, data: Any) -> None:
        if event_type in (EventType.ITEM_CREATED, EventType.ITEM_UPDATED):
            self._put(EntityKind.ITEMS, Item.model_validate(data))
        elif event_type is EventType.ITEM_DELETED:
            self._remove(EntityKind.ITEMS, data["id"])
        elif event_type is EventType.ITEMS_DELETED_CHECKED:
            for item in self.checked_items:
                self._remove(EntityKind.ITEMS, item.id)
        elif event_type in (EventType.CATEGORY_CREATED, EventType.CATEGORY_UPDATED):
            self._put(EntityKind.CATEGORIES, Category.model_validate(data))
        elif event_type is EventType.CATEGORY_DELETED:
            self._remove(EntityKind.CATEGORIES, data["id"])
        elif event_type is EventType.CATEGORIES_REORDERED:
            self._merge_records(EntityKind.CATEGORIES, data)
        elif event_type in (EventType.RECIPE_CREATED, EventType.RECIPE_UPDATED):
            self._put(EntityKind.RECIPES, Recipe.model_validate(data))
        elif event_type is EventType.RECIPE_DELETED:
            self._remove(EntityKind.RECIPES, data["id"])

    def _merge_records(self, kind: EntityKind, entries: list[dict[str, Any]]) -> None:
        """Apply full or partial ({id, sort_order} style) records, all or none."""
        merged = []
        for entry in entries:
            current = self.get(kind, entry["id"])
            merged.append(kind.model.model_validate(
                {**current.model_dump(), **entry} if current else entry
            ))
        for record in merged:
            self._put(kind, record)


def _references_unsynced(payload: Any) -> bool:
    """Whether a payload targets a record that only exists locally so far."""
    if isinstance(payload, dict):
        return any(
            is_temp_id(value) if key in ("id", "category_id") else _references_unsynced(value)
            for key, value in payload.items()
        )
    if isinstance(payload, list):
        return any(_references_unsynced(value) for value in payload)
    return False
