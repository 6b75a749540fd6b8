"""Client for the authoritative grocery server."""

from groceries.remote.client import RemoteClient

__all__ = ["RemoteClient"]
