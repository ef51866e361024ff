"""
Base protocol for the record store backing a nested-set collection.

The tree engines only need four operations (find_one, find, update_many,
update_one). The remaining methods are the host lifecycle the tree facade
and CLI use to create, delete and count records.

Invariants:
    - find() returns nodes in insertion order unless a sort is given
    - update_many() only increments integer structural fields
    - Returned nodes are copies; mutating them never changes the store

How to change safely:
    - Protocol changes require updating all implementations
    - Keep filter semantics identical across backends (tests run on both)
"""

from __future__ import annotations

from abc import abstractmethod
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from ..filters import Filter, SortSpec
from ..node import Node

if TYPE_CHECKING:
    from ..config import StorageConfig

INCREMENTABLE_FIELDS = ("lft", "rgt", "lvl")


@runtime_checkable
class NodeStore(Protocol):
    """Protocol for nested-set record stores.

    Example:
        >>> store = InMemoryNodeStore()
        >>> await store.initialize()
        >>> root = await store.insert_one(Node(lft=1, rgt=2))
        >>> await store.update_many({"rgt": {"$gte": 2}}, {"rgt": 2})
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the collection if it does not exist."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources."""
        ...

    @abstractmethod
    async def find_one(self, filters: Filter) -> Optional[Node]:
        """Return the first node matching the filter, or None."""
        ...

    @abstractmethod
    async def find(
        self,
        filters: Filter,
        fields: Optional[Sequence[str]] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[Node]:
        """Return all nodes matching the filter.

        Args:
            filters: Filter dict (envelope allowed)
            fields: Payload fields to keep (None keeps all)
            sort: Sequence of (field, 1 | -1)
            limit: Maximum nodes to return
            skip: Nodes to skip

        Raises:
            InvalidFilterError: If the filter is malformed
            StoreError: If the store fails
        """
        ...

    @abstractmethod
    async def update_many(self, filters: Filter, increments: Dict[str, int]) -> int:
        """Add a per-field delta to every matching node.

        Returns:
            Number of nodes updated

        Raises:
            InvalidUpdateError: If a field is not incrementable
        """
        ...

    @abstractmethod
    async def update_one(self, filters: Filter, values: Dict[str, Any]) -> Optional[Node]:
        """Set exact values on the first matching node.

        Structural keys replace columns; other keys are merged into the payload.

        Returns:
            The updated node, or None if nothing matched
        """
        ...

    @abstractmethod
    async def insert_one(self, node: Node) -> Node:
        """Persist a new node, assigning its id if absent."""
        ...

    @abstractmethod
    async def delete_many(self, filters: Filter) -> int:
        """Delete every matching node and return the count."""
        ...

    @abstractmethod
    async def count(self, filters: Filter) -> int:
        """Count matching nodes."""
        ...


def create_node_store(config: "StorageConfig", indexed_fields: Sequence[str] = ()) -> NodeStore:
    """Factory function to create a store from configuration.

    Args:
        config: Storage configuration
        indexed_fields: Payload fields to index (the grouping key)

    Returns:
        Appropriate NodeStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryNodeStore
    from .sqlite import SqliteNodeStore

    if config.backend == StoreBackend.MEMORY:
        return InMemoryNodeStore()
    elif config.backend == StoreBackend.SQLITE:
        return SqliteNodeStore(
            config.db_path,
            collection=config.collection,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
            indexed_fields=indexed_fields,
        )
    else:
        raise ValueError(f"Unsupported store backend: {config.backend}")
