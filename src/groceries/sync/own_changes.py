"""
Expiring set of change ids issued by this client.

Used to recognise our own writes when the server echoes them back over the
live channel. Entries are kept as id -> expiry and swept lazily on access.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from uuid import uuid4

from groceries.config import OWN_CHANGE_TTL_SECONDS


def new_change_id() -> str:
    """Generate a change id for a mutation."""
    return str(uuid4())


class OwnChangeSet:
    """
    Change ids this client generated within the last ttl seconds.

    Expiry is unconditional: an id is forgotten after ttl whether or not its
    echo arrived. A late echo is then treated as a remote change, which is
    harmless because applying a server record is idempotent.
    """

    def __init__(
        self,
        ttl: float = OWN_CHANGE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._expiries: dict[str, float] = {}

    def add(self, change_id: str) -> None:
        """Register (or refresh) a change id."""
        self._sweep()
        self._expiries[change_id] = self._clock() + self.ttl

    def issue(self) -> str:
        """Generate a new change id and register it."""
        change_id = new_change_id()
        self.add(change_id)
        return change_id

    def __contains__(self, change_id: object) -> bool:
        if not isinstance(change_id, str):
            return False
        self._sweep()
        return change_id in self._expiries

    def __len__(self) -> int:
        self._sweep()
        return len(self._expiries)

    def discard(self, change_id: str) -> None:
        self._expiries.pop(change_id, None)

    def _sweep(self) -> None:
        now = self._clock()
        expired = [cid for cid, expiry in self._expiries.items() if expiry <= now]
        for cid in expired:
            del self._expiries[cid]
