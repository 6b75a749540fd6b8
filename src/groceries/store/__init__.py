"""Reconciled application state."""

from groceries.store.app_state import GroceryStore, OptimisticMutation

__all__ = [
    "GroceryStore",
    "OptimisticMutation",
]
