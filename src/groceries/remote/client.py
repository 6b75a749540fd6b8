"""
HTTP client for the authoritative grocery server.

Stateless request wrapper: one coroutine per server operation. Mutating
calls forward the caller's change id so the server can echo it back in the
matching live update.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from groceries.errors import NetworkFailure, error_for_status
from groceries.schema.models import Category, Item, Recipe, RecordId

logger = logging.getLogger(__name__)

# Gateway answers that mean "server unreachable" rather than "request refused"
UNREACHABLE_STATUS_CODES = frozenset({502, 503, 504})


class RemoteClient:
    """
    Async client for the grocery REST API.

    Raises NetworkFailure when the server cannot be reached and an
    ApplicationError subclass when it answers with an error.
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TransportError as e:
            raise NetworkFailure(f"{method} {path}: {e}") from e

        if response.status_code in UNREACHABLE_STATUS_CODES:
            raise NetworkFailure(f"{method} {path}: HTTP {response.status_code}")

        if response.status_code == 204:
            return None

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.is_error:
            message = None
            if isinstance(data, dict):
                message = data.get("error")
            raise error_for_status(
                response.status_code,
                message or f"Request failed: {response.status_code}",
            )

        return data

    @staticmethod
    def _with_change_id(body: dict[str, Any], change_id: str | None) -> dict[str, Any]:
        if change_id:
            return {**body, "changeId": change_id}
        return body

    # === Categories ===

    async def list_categories(self) -> list[Category]:
        data = await self._request("GET", "/categories")
        return [Category.model_validate(c) for c in data]

    async def create_category(self, name: str, change_id: str | None = None) -> Category:
        data = await self._request(
            "POST", "/categories", json=self._with_change_id({"name": name}, change_id)
        )
        return Category.model_validate(data)

    async def update_category(
        self, category_id: RecordId, name: str, change_id: str | None = None
    ) -> Category:
        data = await self._request(
            "PUT",
            f"/categories/{category_id}",
            json=self._with_change_id({"name": name}, change_id),
        )
        return Category.model_validate(data)

    async def delete_category(self, category_id: RecordId, change_id: str | None = None) -> None:
        await self._request(
            "DELETE", f"/categories/{category_id}", json=self._with_change_id({}, change_id)
        )

    async def reorder_categories(
        self, orders: list[dict[str, Any]], change_id: str | None = None
    ) -> list[Category]:
        """Send the full ordering as dense 1-based [{id, sort_order}] pairs."""
        # Server contract assumed to take {"categories": [...]} so changeId fits beside it
        data = await self._request(
            "PUT",
            "/categories/reorder",
            json=self._with_change_id({"categories": orders}, change_id),
        )
        return [Category.model_validate(c) for c in data]

    # === Items ===

    async def list_items(self) -> list[Item]:
        data = await self._request("GET", "/items")
        return [Item.model_validate(i) for i in data]

    async def create_item(self, fields: dict[str, Any], change_id: str | None = None) -> Item:
        data = await self._request("POST", "/items", json=self._with_change_id(fields, change_id))
        return Item.model_validate(data)

    async def update_item(
        self, item_id: RecordId, fields: dict[str, Any], change_id: str | None = None
    ) -> Item:
        data = await self._request(
            "PUT", f"/items/{item_id}", json=self._with_change_id(fields, change_id)
        )
        return Item.model_validate(data)

    async def toggle_item_check(
        self, item_id: RecordId, checked: bool, change_id: str | None = None
    ) -> Item:
        """Unchecking moves the item to the end of its category server-side."""
        data = await self._request(
            "PATCH",
            f"/items/{item_id}/check",
            json=self._with_change_id({"checked": checked}, change_id),
        )
        return Item.model_validate(data)

    async def delete_item(self, item_id: RecordId, change_id: str | None = None) -> None:
        await self._request("DELETE", f"/items/{item_id}", json=self._with_change_id({}, change_id))

    async def delete_checked_items(self, change_id: str | None = None) -> int:
        data = await self._request("DELETE", "/items/checked", json=self._with_change_id({}, change_id))
        return int((data or {}).get("deletedCount", 0))

    # === Recipes ===

    async def list_recipes(self) -> list[Recipe]:
        data = await self._request("GET", "/recipes")
        return [Recipe.model_validate(r) for r in data]

    async def get_recipe(self, recipe_id: RecordId) -> Recipe:
        data = await self._request("GET", f"/recipes/{recipe_id}")
        return Recipe.model_validate(data)

    async def create_recipe(self, recipe: dict[str, Any], change_id: str | None = None) -> Recipe:
        data = await self._request("POST", "/recipes", json=self._with_change_id(recipe, change_id))
        return Recipe.model_validate(data)

    async def update_recipe(
        self, recipe_id: RecordId, recipe: dict[str, Any], change_id: str | None = None
    ) -> Recipe:
        data = await self._request(
            "PUT", f"/recipes/{recipe_id}", json=self._with_change_id(recipe, change_id)
        )
        return Recipe.model_validate(data)

    async def delete_recipe(self, recipe_id: RecordId, change_id: str | None = None) -> None:
        await self._request(
            "DELETE", f"/recipes/{recipe_id}", json=self._with_change_id({}, change_id)
        )

    async def add_recipe_to_list(
        self, recipe_id: RecordId, change_id: str | None = None
    ) -> list[Item]:
        """Expand a recipe's ingredients into new list items."""
        data = await self._request(
            "POST",
            f"/recipes/{recipe_id}/add-to-list",
            json=self._with_change_id({}, change_id),
        )
        items = [Item.model_validate(i) for i in data.get("items", [])]
        logger.debug("Recipe %s added %d items", recipe_id, len(items))
        return items
