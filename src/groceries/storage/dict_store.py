"""
In-memory dictionary store.

Fast, non-durable cache for tests and throwaway sessions.
"""

from __future__ import annotations

import itertools
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from groceries.schema.models import EntityKind, QueueEntry, RecordId
from groceries.storage.base import BaseStore, sort_records


class DictStore(BaseStore):
    """
    Dictionary-backed local store.

    Features:
    - O(1) access by identity
    - Insertion-ordered records per kind
    - No persistence (ephemeral)
    """

    def __init__(self):
        self._records: dict[EntityKind, dict[str, dict[str, Any]]] = {
            kind: {} for kind in EntityKind
        }
        self._queue: dict[int, QueueEntry] = {}
        self._queue_ids = itertools.count(1)

    async def initialize(self) -> None:
        """Nothing to prepare."""
        pass

    async def close(self) -> None:
        """Nothing to release."""
        pass

    async def replace_all(self, kind: EntityKind, records: list[BaseModel]) -> None:
        self._records[kind] = {
            str(record.id): record.model_dump(mode="json") for record in records
        }

    async def put(self, kind: EntityKind, record: BaseModel) -> None:
        self._records[kind][str(record.id)] = record.model_dump(mode="json")

    async def delete(self, kind: EntityKind, record_id: RecordId) -> bool:
        return self._records[kind].pop(str(record_id), None) is not None

    async def get_all(self, kind: EntityKind) -> list[Any]:
        # Stored as dumped JSON so callers never share mutable state with the cache
        records = [kind.model.model_validate(data) for data in self._records[kind].values()]
        return sort_records(kind, records)

    async def enqueue(self, action: str, payload: dict[str, Any]) -> QueueEntry:
        entry = QueueEntry(
            id=next(self._queue_ids),
            action=action,
            payload=dict(payload),
            enqueued_at=datetime.now(),
        )
        self._queue[entry.id] = entry
        return entry

    async def queue_entries(self) -> list[QueueEntry]:
        return [entry.model_copy(deep=True) for entry in self._queue.values()]

    async def remove_entry(self, entry_id: int) -> bool:
        return self._queue.pop(entry_id, None) is not None

    async def queue_length(self) -> int:
        return len(self._queue)
