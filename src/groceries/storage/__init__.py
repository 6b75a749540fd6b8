"""Local cache backends for the grocery client."""

from groceries.storage.base import BaseStore
from groceries.storage.dict_store import DictStore
from groceries.storage.sqlite_store import SQLiteStore

__all__ = [
    "BaseStore",
    "DictStore",
    "SQLiteStore",
]
