"""
Record store abstraction for nestedset.

This module provides a pluggable store interface supporting:
- SQLite (persistent collections)
- In-memory (for testing)

The tree engines talk to the store only through find_one, find,
update_many and update_one; insert_one, delete_many and count serve the
host lifecycle.

Invariants:
    - Filters have identical semantics on every backend
    - find() defaults to insertion order
    - Store failures surface as StoreError
"""

from .base import NodeStore, create_node_store
from .memory import InMemoryNodeStore
from .sqlite import SqliteNodeStore

__all__ = [
    # Protocol
    "NodeStore",
    # Factory
    "create_node_store",
    # Implementations
    "InMemoryNodeStore",
    "SqliteNodeStore",
]
