"""
Groceries

An offline-first client for a shared grocery list.

The client provides:
- A local cache that keeps the list usable without a connection
- Optimistic updates with a durable queue for changes made offline
- Live updates from other household members over Server-Sent Events
- Categories, items and recipes that can be added to the list

Quick Start:
    from groceries import ClientConfig, GroceryClient

    client = GroceryClient(ClientConfig.from_env())
    await client.start()

    # Add an item
    item = await client.store.create_item("milk", amount="2 l")

    # Check it off
    await client.store.toggle_item_check(item.id, True)

    await client.close()
"""

__version__ = "0.1.0"

from groceries.client import GroceryClient
from groceries.config import ClientConfig
from groceries.errors import (
    ApplicationError,
    ConflictError,
    GroceryError,
    LocalPersistenceFailure,
    NetworkFailure,
    NotFoundError,
    ValidationError,
)
from groceries.live.channel import ChannelState, LiveUpdateChannel
from groceries.remote.client import RemoteClient
from groceries.schema.models import (
    Category,
    ChangeEvent,
    EntityKind,
    EventType,
    Ingredient,
    Item,
    Recipe,
    RecordState,
    SyncAction,
)
from groceries.storage import BaseStore, DictStore, SQLiteStore
from groceries.store.app_state import GroceryStore
from groceries.sync import ConnectivityMonitor, OwnChangeSet, SyncEngine

__all__ = [
    # Client
    "GroceryClient",
    "ClientConfig",
    "GroceryStore",
    # Schema
    "Category",
    "ChangeEvent",
    "EntityKind",
    "EventType",
    "Ingredient",
    "Item",
    "Recipe",
    "RecordState",
    "SyncAction",
    # Components
    "BaseStore",
    "DictStore",
    "SQLiteStore",
    "RemoteClient",
    "SyncEngine",
    "ConnectivityMonitor",
    "OwnChangeSet",
    "LiveUpdateChannel",
    "ChannelState",
    # Errors
    "GroceryError",
    "NetworkFailure",
    "ApplicationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "LocalPersistenceFailure",
]
