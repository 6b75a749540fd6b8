"""
SQLite store for the durable local cache.

Single-file, human-inspectable database holding the entity mirror and the
mutation queue. Every write is committed before the call returns so that
state survives an unexpected exit.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from groceries.errors import LocalPersistenceFailure
from groceries.schema.models import EntityKind, QueueEntry, RecordId
from groceries.storage.base import BaseStore, sort_records


class SQLiteStore(BaseStore):
    """
    SQLite-based local store.

    Features:
    - Records kept as JSON documents keyed by (kind, id)
    - AUTOINCREMENT queue ids, so enqueue order is never reused
    - WAL journal, one transaction per write
    """

    def __init__(self, db_path: str | Path):
        self._db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Open the database and create tables."""
        if self._conn:
            return

        with self._persisting("initialize"):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

            self._conn = sqlite3.connect(str(self._db_path))
            self._conn.row_factory = sqlite3.Row

            # WAL keeps readers unblocked while a write commits
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=FULL")

            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    kind TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data_json TEXT NOT NULL,
                    PRIMARY KEY (kind, id)
                )
            """)

            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    action TEXT NOT NULL,
                    payload_json TEXT NOT NULL,
                    enqueued_at TEXT NOT NULL
                )
            """)

            self._conn.commit()

    async def close(self) -> None:
        """Close SQLite connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _persisting(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            raise LocalPersistenceFailure(f"Local cache {operation} failed: {e}") from e

    def _connection(self) -> sqlite3.Connection:
        if not self._conn:
            raise RuntimeError("Store not initialized")
        return self._conn

    # === Entity cache ===

    async def replace_all(self, kind: EntityKind, records: list[BaseModel]) -> None:
        conn = self._connection()
        with self._persisting(f"replace_all({kind.value})"), conn:
            conn.execute("DELETE FROM records WHERE kind = ?", (kind.value,))
            conn.executemany(
                "INSERT INTO records (kind, id, data_json) VALUES (?, ?, ?)",
                [(kind.value, str(r.id), r.model_dump_json()) for r in records],
            )

    async def put(self, kind: EntityKind, record: BaseModel) -> None:
        conn = self._connection()
        with self._persisting(f"put({kind.value})"), conn:
            conn.execute(
                "INSERT OR REPLACE INTO records (kind, id, data_json) VALUES (?, ?, ?)",
                (kind.value, str(record.id), record.model_dump_json()),
            )

    async def delete(self, kind: EntityKind, record_id: RecordId) -> bool:
        conn = self._connection()
        with self._persisting(f"delete({kind.value})"), conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE kind = ? AND id = ?",
                (kind.value, str(record_id)),
            )
        return cursor.rowcount > 0

    async def get_all(self, kind: EntityKind) -> list[Any]:
        conn = self._connection()
        with self._persisting(f"get_all({kind.value})"):
            rows = conn.execute(
                "SELECT data_json FROM records WHERE kind = ? ORDER BY rowid",
                (kind.value,),
            ).fetchall()
        records = [kind.model.model_validate_json(row["data_json"]) for row in rows]
        return sort_records(kind, records)

    # === Mutation queue ===

    async def enqueue(self, action: str, payload: dict[str, Any]) -> QueueEntry:
        conn = self._connection()
        enqueued_at = datetime.now()
        with self._persisting("enqueue"), conn:
            cursor = conn.execute(
                "INSERT INTO sync_queue (action, payload_json, enqueued_at) VALUES (?, ?, ?)",
                (action, json.dumps(payload), enqueued_at.isoformat()),
            )
        return QueueEntry(
            id=cursor.lastrowid,
            action=action,
            payload=payload,
            enqueued_at=enqueued_at,
        )

    async def queue_entries(self) -> list[QueueEntry]:
        conn = self._connection()
        with self._persisting("queue_entries"):
            rows = conn.execute(
                "SELECT id, action, payload_json, enqueued_at FROM sync_queue ORDER BY id"
            ).fetchall()
        return [
            QueueEntry(
                id=row["id"],
                action=row["action"],
                payload=json.loads(row["payload_json"]),
                enqueued_at=datetime.fromisoformat(row["enqueued_at"]),
            )
            for row in rows
        ]

    async def remove_entry(self, entry_id: int) -> bool:
        conn = self._connection()
        with self._persisting("remove_entry"), conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry_id,))
        return cursor.rowcount > 0

    async def queue_length(self) -> int:
        conn = self._connection()
        with self._persisting("queue_length"):
            row = conn.execute("SELECT COUNT(*) AS n FROM sync_queue").fetchone()
        return row["n"]
