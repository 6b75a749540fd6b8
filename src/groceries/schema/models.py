"""
Core data model for the shared grocery list.

Items, categories and recipes mirror the server's rows. Queue entries and
change events describe pending work and live updates between clients.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

# Server ids are integers; records created offline carry a temporary string id
RecordId = Union[int, str]

TEMP_ID_PREFIX = "tmp-"


def new_temp_id() -> str:
    """Generate a temporary identity for a record created before the server has seen it."""
    return f"{TEMP_ID_PREFIX}{uuid4().hex[:12]}"


def is_temp_id(record_id: Any) -> bool:
    """Check whether an id was assigned locally rather than by the server."""
    return isinstance(record_id, str) and record_id.startswith(TEMP_ID_PREFIX)


class Category(BaseModel):
    """A grocery category; sort_order defines display order."""

    id: RecordId
    name: str
    sort_order: int = 0
    created_at: datetime | None = None

    model_config = ConfigDict(extra="ignore")


class Item(BaseModel):
    """
    A single grocery list entry.

    position_in_list orders unchecked items within their category. The server
    joins in category_name and category_sort_order for display.
    """

    id: RecordId
    name: str
    description: str | None = None
    amount: str | None = None
    category_id: RecordId | None = None
    checked: bool = False
    position_in_list: int = 0

    category_name: str | None = None
    category_sort_order: int | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(extra="ignore")


class Ingredient(BaseModel):
    """An ingredient line, owned by exactly one recipe."""

    id: int | None = None
    name: str
    description: str | None = None
    amount: str | None = None
    category_id: RecordId | None = None
    position: int = 0
    category_name: str | None = None

    model_config = ConfigDict(extra="ignore")


class Recipe(BaseModel):
    """A named recipe with its ordered ingredients."""

    id: RecordId
    name: str
    ingredients: list[Ingredient] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(extra="ignore")


class EntityKind(str, Enum):
    """Entity types held by the local cache."""

    CATEGORIES = "categories"
    ITEMS = "items"
    RECIPES = "recipes"

    @property
    def model(self) -> type[BaseModel]:
        return {
            EntityKind.CATEGORIES: Category,
            EntityKind.ITEMS: Item,
            EntityKind.RECIPES: Recipe,
        }[self]


class EventType(str, Enum):
    """Change event types pushed by the server."""

    ITEM_CREATED = "item-created"
    ITEM_UPDATED = "item-updated"
    ITEM_DELETED = "item-deleted"
    ITEMS_DELETED_CHECKED = "items-deleted-checked"
    CATEGORY_CREATED = "category-created"
    CATEGORY_UPDATED = "category-updated"
    CATEGORY_DELETED = "category-deleted"
    CATEGORIES_REORDERED = "categories-reordered"
    RECIPE_CREATED = "recipe-created"
    RECIPE_UPDATED = "recipe-updated"
    RECIPE_DELETED = "recipe-deleted"


class ChangeEvent(BaseModel):
    """
    A live update message: {type, data, changeId, timestamp}.

    type is kept as a plain string so that event types this client does not
    know yet still parse.
    """

    type: str
    data: Any = None
    change_id: str | None = Field(default=None, alias="changeId")
    timestamp: datetime | None = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SyncAction(str, Enum):
    """Queued mutation tags, one per replayable server call."""

    CATEGORIES_CREATE = "categories.create"
    CATEGORIES_UPDATE = "categories.update"
    CATEGORIES_DELETE = "categories.delete"
    CATEGORIES_REORDER = "categories.reorder"
    ITEMS_CREATE = "items.create"
    ITEMS_UPDATE = "items.update"
    ITEMS_TOGGLE_CHECK = "items.toggleCheck"
    ITEMS_DELETE = "items.delete"
    ITEMS_DELETE_CHECKED = "items.deleteChecked"
    RECIPES_CREATE = "recipes.create"
    RECIPES_UPDATE = "recipes.update"
    RECIPES_DELETE = "recipes.delete"
    RECIPES_ADD_TO_LIST = "recipes.addToList"


class QueueEntry(BaseModel):
    """
    A durable record of a mutation still owed to the server.

    action stays a plain string: entries written by an older client may carry
    tags this version no longer handles, and the sync engine discards those.
    """

    id: int
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime = Field(default_factory=datetime.now)


class RecordState(str, Enum):
    """Reconciliation state of a single record."""

    SYNCED = "synced"  # Matches last known server state
    OPTIMISTIC_PENDING = "optimistic_pending"  # Applied locally, call in flight
    QUEUED_OFFLINE = "queued_offline"  # Durably queued until connectivity returns
    ROLLED_BACK = "rolled_back"  # Reverted after the server refused it
