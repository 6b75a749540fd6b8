"""
Pytest configuration and shared fixtures for grocery client tests.
"""

import asyncio
import itertools
import json
import re
import tempfile
from collections.abc import Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

API_URL = "http://groceries.test/api"


class FakeGroceryServer:
    """
    In-process stand-in for the grocery REST API.

    Serve it through httpx.MockTransport. Setting online = False makes every
    request fail with a connection error; fail_next() forces one error answer.
    """

    def __init__(self):
        self.online = True
        self.categories: dict[int, dict[str, Any]] = {}
        self.items: dict[int, dict[str, Any]] = {}
        self.recipes: dict[int, dict[str, Any]] = {}
        self.requests: list[tuple[str, str, Any]] = []
        self.change_ids: list[str] = []
        self._forced: list[tuple[str, str, int, str]] = []
        self._ids = itertools.count(1)

        self._routes = [
            ("GET", r"/categories", self._list_categories),
            ("POST", r"/categories", self._create_category),
            ("PUT", r"/categories/reorder", self._reorder_categories),
            ("PUT", r"/categories/(\w+)", self._update_category),
            ("DELETE", r"/categories/(\w+)", self._delete_category),
            ("GET", r"/items", self._list_items),
            ("POST", r"/items", self._create_item),
            ("DELETE", r"/items/checked", self._delete_checked),
            ("PATCH", r"/items/(\w+)/check", self._toggle_check),
            ("PUT", r"/items/(\w+)", self._update_item),
            ("DELETE", r"/items/(\w+)", self._delete_item),
            ("GET", r"/recipes", self._list_recipes),
            ("POST", r"/recipes", self._create_recipe),
            ("POST", r"/recipes/(\w+)/add-to-list", self._add_to_list),
            ("GET", r"/recipes/(\w+)", self._get_recipe),
            ("PUT", r"/recipes/(\w+)", self._update_recipe),
            ("DELETE", r"/recipes/(\w+)", self._delete_recipe),
        ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail_next(self, method: str, path: str, status: int, message: str = "Refused") -> None:
        """Answer the next request matching method and path (regex) with an error."""
        self._forced.append((method, path, status, message))

    # === Seeding ===

    def add_category(self, name: str, sort_order: int | None = None) -> dict[str, Any]:
        if sort_order is None:
            sort_order = max((c["sort_order"] for c in self.categories.values()), default=0) + 1
        category = {"id": next(self._ids), "name": name, "sort_order": sort_order}
        self.categories[category["id"]] = category
        return category

    def add_item(
        self,
        name: str,
        category_id: int | None = None,
        checked: bool = False,
        position: int | None = None,
        **fields: Any,
    ) -> dict[str, Any]:
        if position is None:
            position = self._next_position()
        item = {
            "id": next(self._ids),
            "name": name,
            "description": fields.get("description"),
            "amount": fields.get("amount"),
            "category_id": category_id,
            "checked": checked,
            "position_in_list": position,
            "created_at": datetime.now().isoformat(),
        }
        self.items[item["id"]] = item
        return self._joined(item)

    def add_recipe(self, name: str, ingredients: list[dict[str, Any]] = ()) -> dict[str, Any]:
        recipe = {
            "id": next(self._ids),
            "name": name,
            "ingredients": [
                {"id": next(self._ids), "position": i, **ingredient}
                for i, ingredient in enumerate(ingredients)
            ],
        }
        self.recipes[recipe["id"]] = recipe
        return recipe

    # === Transport ===

    def handle(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path.removeprefix("/api")
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))
        if isinstance(body, dict) and body.get("changeId"):
            self.change_ids.append(body["changeId"])

        for forced in self._forced:
            method, pattern, status, message = forced
            if method == request.method and re.fullmatch(pattern, path):
                self._forced.remove(forced)
                return httpx.Response(status, json={"error": message})

        for method, pattern, route in self._routes:
            if method != request.method:
                continue
            match = re.fullmatch(pattern, path)
            if match:
                status, data = route(body or {}, *[int(g) if g.isdigit() else g for g in match.groups()])
                if status == 204:
                    return httpx.Response(204)
                return httpx.Response(status, json=data)
        return httpx.Response(404, json={"error": "Route not found"})

    # === Helpers ===

    def _next_position(self) -> int:
        return max((i["position_in_list"] for i in self.items.values()), default=0) + 1

    def _joined(self, item: dict[str, Any]) -> dict[str, Any]:
        category = self.categories.get(item["category_id"])
        return {
            **item,
            "category_name": category["name"] if category else None,
            "category_sort_order": category["sort_order"] if category else None,
        }

    def _not_found(self, kind: str) -> tuple[int, dict[str, Any]]:
        return 404, {"error": f"{kind} not found"}

    # === Categories ===

    def _list_categories(self, body):
        return 200, sorted(self.categories.values(), key=lambda c: c["sort_order"])

    def _create_category(self, body):
        if not body.get("name", "").strip():
            return 400, {"error": "Category name is required"}
        return 201, self.add_category(body["name"].strip())

    def _reorder_categories(self, body):
        for order in body["categories"]:
            self.categories[order["id"]]["sort_order"] = order["sort_order"]
        return self._list_categories(body)

    def _update_category(self, body, category_id):
        if category_id not in self.categories:
            return self._not_found("Category")
        self.categories[category_id]["name"] = body["name"].strip()
        return 200, self.categories[category_id]

    def _delete_category(self, body, category_id):
        if category_id not in self.categories:
            return self._not_found("Category")
        if any(i["category_id"] == category_id for i in self.items.values()):
            return 409, {"error": "Cannot delete category with items"}
        del self.categories[category_id]
        return 204, None

    # === Items ===

    def _list_items(self, body):
        def order(item):
            category = self.categories.get(item["category_id"])
            return (
                item["checked"],
                category["sort_order"] if category else 1 << 30,
                item["position_in_list"],
            )

        return 200, [self._joined(i) for i in sorted(self.items.values(), key=order)]

    def _create_item(self, body):
        if not body.get("name", "").strip():
            return 400, {"error": "Item name is required"}
        return 201, self.add_item(
            body["name"].strip(),
            category_id=body.get("category_id"),
            description=body.get("description"),
            amount=body.get("amount"),
        )

    def _update_item(self, body, item_id):
        if item_id not in self.items:
            return self._not_found("Item")
        item = self.items[item_id]
        for key in ("name", "description", "amount", "category_id"):
            item[key] = body.get(key)
        return 200, self._joined(item)

    def _toggle_check(self, body, item_id):
        if item_id not in self.items:
            return self._not_found("Item")
        item = self.items[item_id]
        if item["checked"] and not body["checked"]:
            positions = [
                i["position_in_list"]
                for i in self.items.values()
                if not i["checked"] and i["category_id"] == item["category_id"]
            ]
            item["position_in_list"] = max(positions, default=0) + 1
        item["checked"] = body["checked"]
        return 200, self._joined(item)

    def _delete_item(self, body, item_id):
        if item_id not in self.items:
            return self._not_found("Item")
        del self.items[item_id]
        return 204, None

    def _delete_checked(self, body):
        checked = [i for i, item in self.items.items() if item["checked"]]
        for item_id in checked:
            del self.items[item_id]
        return 200, {"deletedCount": len(checked)}

    # === Recipes ===

    def _list_recipes(self, body):
        return 200, [
            {"id": r["id"], "name": r["name"]}
            for r in sorted(self.recipes.values(), key=lambda r: r["name"])
        ]

    def _get_recipe(self, body, recipe_id):
        if recipe_id not in self.recipes:
            return self._not_found("Recipe")
        return 200, self.recipes[recipe_id]

    def _create_recipe(self, body):
        if not body.get("name", "").strip():
            return 400, {"error": "Recipe name is required"}
        return 201, self.add_recipe(body["name"].strip(), body.get("ingredients", []))

    def _update_recipe(self, body, recipe_id):
        if recipe_id not in self.recipes:
            return self._not_found("Recipe")
        self.recipes[recipe_id]["name"] = body["name"]
        self.recipes[recipe_id]["ingredients"] = body.get("ingredients", [])
        return 200, self.recipes[recipe_id]

    def _delete_recipe(self, body, recipe_id):
        if recipe_id not in self.recipes:
            return self._not_found("Recipe")
        del self.recipes[recipe_id]
        return 204, None

    def _add_to_list(self, body, recipe_id):
        if recipe_id not in self.recipes:
            return self._not_found("Recipe")
        added = [
            self.add_item(
                ingredient["name"],
                category_id=ingredient.get("category_id"),
                amount=ingredient.get("amount"),
                description=ingredient.get("description"),
            )
            for ingredient in self.recipes[recipe_id]["ingredients"]
        ]
        return 201, {"items": added}


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """
    Records reconnect delays instead of waiting.

    After `limit` calls it parks forever, so a reconnect loop stops at a
    known point; `parked` is set when that happens.
    """

    def __init__(self, limit: int = 10):
        self.limit = limit
        self.delays: list[float] = []
        self.parked = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if len(self.delays) >= self.limit:
            self.parked.set()
            await asyncio.Event().wait()
        await asyncio.sleep(0)


def sse_message(event: dict[str, Any]) -> bytes:
    """Encode one change event as a Server-Sent Events message."""
    return f"data: {json.dumps(event)}\n\n".encode()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def server():
    """Fake grocery server with an empty database."""
    return FakeGroceryServer()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def remote(server):
    """RemoteClient talking to the fake server."""
    from groceries.remote import RemoteClient

    client = RemoteClient(API_URL, transport=server.transport())
    yield client
    await client.close()


@pytest.fixture
async def dict_store():
    """Create an in-memory DictStore."""
    from groceries.storage import DictStore

    store = DictStore()
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def sqlite_store(temp_dir):
    """Create a SQLiteStore in a temp directory."""
    from groceries.storage import SQLiteStore

    store = SQLiteStore(temp_dir / "groceries.sqlite")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def connectivity():
    from groceries.sync import ConnectivityMonitor

    return ConnectivityMonitor()


@pytest.fixture
def own_changes(clock):
    from groceries.sync import OwnChangeSet

    return OwnChangeSet(clock=clock)


@pytest.fixture
def store(remote, dict_store, own_changes, connectivity):
    """GroceryStore wired to the fake server and an in-memory cache."""
    from groceries.store import GroceryStore

    return GroceryStore(remote, dict_store, own_changes=own_changes, connectivity=connectivity)


@pytest.fixture
def engine(dict_store, remote, connectivity, own_changes):
    """SyncEngine sharing the store fixture's cache and connectivity."""
    from groceries.sync import SyncEngine

    return SyncEngine(dict_store, remote, connectivity, own_changes=own_changes)


@pytest.fixture
def config(temp_dir):
    """Client config pointing at the fake server with an in-memory cache."""
    from groceries.config import ClientConfig

    return ClientConfig(server_url="http://groceries.test", data_dir=temp_dir, ephemeral=True)
