"""Data model for the grocery list client."""

from groceries.schema.models import (
    TEMP_ID_PREFIX,
    Category,
    ChangeEvent,
    EntityKind,
    EventType,
    Ingredient,
    Item,
    QueueEntry,
    Recipe,
    RecordId,
    RecordState,
    SyncAction,
    is_temp_id,
    new_temp_id,
)

__all__ = [
    "TEMP_ID_PREFIX",
    "Category",
    "ChangeEvent",
    "EntityKind",
    "EventType",
    "Ingredient",
    "Item",
    "QueueEntry",
    "Recipe",
    "RecordId",
    "RecordState",
    "SyncAction",
    "is_temp_id",
    "new_temp_id",
]
