"""
Base interface for the local cache.

The local store mirrors server state per entity kind and holds the durable
queue of mutations that have not reached the server yet.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from groceries.schema.models import EntityKind, QueueEntry, RecordId


class BaseStore(ABC):
    """
    Abstract base class for local cache backends.

    No validation happens here: records are whatever the server (or an
    optimistic update) last said they were. Writes are complete only once
    persisted.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create tables, etc.)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        pass

    # Entity cache
    @abstractmethod
    async def replace_all(self, kind: EntityKind, records: list[BaseModel]) -> None:
        """Replace every cached record of a kind."""
        pass

    @abstractmethod
    async def put(self, kind: EntityKind, record: BaseModel) -> None:
        """Insert or replace one record by identity."""
        pass

    @abstractmethod
    async def delete(self, kind: EntityKind, record_id: RecordId) -> bool:
        """Delete one record. Returns False if it was not cached."""
        pass

    @abstractmethod
    async def get_all(self, kind: EntityKind) -> list[Any]:
        """Return every cached record of a kind."""
        pass

    # Mutation queue
    @abstractmethod
    async def enqueue(self, action: str, payload: dict[str, Any]) -> QueueEntry:
        """Append a mutation to the queue. The queue assigns its id."""
        pass

    @abstractmethod
    async def queue_entries(self) -> list[QueueEntry]:
        """Return all queued mutations in enqueue order."""
        pass

    @abstractmethod
    async def remove_entry(self, entry_id: int) -> bool:
        """Remove a queued mutation. Returns False if it was already gone."""
        pass

    async def queue_length(self) -> int:
        """Number of mutations still owed to the server."""
        return len(await self.queue_entries())


def sort_records(kind: EntityKind, records: list[Any]) -> list[Any]:
    """Categories are returned in display order; other kinds as stored."""
    if kind is EntityKind.CATEGORIES:
        return sorted(records, key=lambda c: c.sort_order)
    return records
