"""Graph persistence for agent-contextgraph."""

from .base import ContextStore
from .memory import InMemoryContextStore
from .sqlite import SQLiteContextStore

__all__ = ["ContextStore", "InMemoryContextStore", "SQLiteContextStore"]
