"""
In-memory node store implementation for testing.

This module provides a simple in-memory store for:
- Unit tests
- Integration tests
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Same filter semantics as the SQLite store
    - Returned nodes are copies

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with NodeStore protocol
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

from ..errors import InvalidUpdateError, StoreError
from ..filters import Filter, SortSpec, match_filter, sort_nodes, unwrap_envelope
from ..node import Node
from .base import INCREMENTABLE_FIELDS

logger = logging.getLogger(__name__)


class InMemoryNodeStore:
    """In-memory implementation of NodeStore for testing.

    Nodes are kept in insertion order, which is also the default result
    order of find().

    Thread safety:
        Uses an asyncio lock around writes. Safe to use from multiple
        coroutines.

    Example:
        >>> store = InMemoryNodeStore()
        >>> await store.initialize()
        >>> root = await store.insert_one(Node(lft=1, rgt=2))
        >>> await store.find({"parent_id": root.id})
        []
    """

    def __init__(self) -> None:
        self._nodes: List[Node] = []
        self._lock = asyncio.Lock()
        self._failures: Dict[str, Exception] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Initialize (no-op for in-memory)."""
        self._initialized = True
        logger.debug("InMemoryNodeStore initialized")

    async def close(self) -> None:
        """Close and clear all data."""
        self._initialized = False
        self._nodes.clear()
        self._failures.clear()
        logger.debug("InMemoryNodeStore closed")

    async def find_one(self, filters: Filter) -> Optional[Node]:
        self._check_failure("find_one")
        nodes = await self.find(filters, limit=1)
        return nodes[0] if nodes else None

    async def find(
        self,
        filters: Filter,
        fields: Optional[Sequence[str]] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        skip: int = 0,
    ) -> List[Node]:
        self._check_failure("find")
        predicate, orderby = unwrap_envelope(filters)
        matched = [n for n in self._nodes if match_filter(n, predicate)]
        matched = sort_nodes(matched, sort or orderby)
        end = None if limit is None else skip + limit
        return [n.project(fields) for n in matched[skip:end]]

    async def update_many(self, filters: Filter, increments: Dict[str, int]) -> int:
        self._check_failure("update_many")
        for name in increments:
            if name not in INCREMENTABLE_FIELDS:
                raise InvalidUpdateError(f"Cannot increment field: {name}", field_name=name)

        predicate, _ = unwrap_envelope(filters)
        now = int(time.time() * 1000)
        count = 0
        async with self._lock:
            # Match first so one increment cannot make a node match mid-update
            matched = [n for n in self._nodes if match_filter(n, predicate)]
            for node in matched:
                for name, delta in increments.items():
                    current = getattr(node, name)
                    if current is not None:
                        setattr(node, name, current + delta)
                node.updated_at = now
                count += 1
        return count

    async def update_one(self, filters: Filter, values: Dict[str, Any]) -> Optional[Node]:
        self._check_failure("update_one")
        if "id" in values:
            raise InvalidUpdateError("Node id is immutable", field_name="id")

        predicate, _ = unwrap_envelope(filters)
        async with self._lock:
            for node in self._nodes:
                if match_filter(node, predicate):
                    for name, value in values.items():
                        if name in Node.STRUCTURAL:
                            setattr(node, name, value)
                        else:
                            node.fields[name] = value
                    node.updated_at = int(time.time() * 1000)
                    return node.copy()
        return None

    async def insert_one(self, node: Node) -> Node:
        self._check_failure("insert_one")
        async with self._lock:
            if node.id is None:
                node.id = uuid.uuid4().hex
            elif any(n.id == node.id for n in self._nodes):
                raise StoreError(f"Duplicate node id: {node.id}", operation="insert_one")
            now = int(time.time() * 1000)
            node.created_at = node.created_at or now
            node.updated_at = now
            self._nodes.append(node.copy())

        logger.debug("Inserted node", extra={"node_id": node.id, "parent_id": node.parent_id})
        return node

    async def delete_many(self, filters: Filter) -> int:
        self._check_failure("delete_many")
        predicate, _ = unwrap_envelope(filters)
        async with self._lock:
            kept = [n for n in self._nodes if not match_filter(n, predicate)]
            deleted = len(self._nodes) - len(kept)
            self._nodes = kept
        return deleted

    async def count(self, filters: Filter) -> int:
        self._check_failure("count")
        predicate, _ = unwrap_envelope(filters)
        return sum(1 for n in self._nodes if match_filter(n, predicate))

    def _check_failure(self, operation: str) -> None:
        exc = self._failures.pop(operation, None)
        if exc is not None:
            raise exc

    # Testing helpers

    def get_all_nodes(self) -> List[Node]:
        """Get copies of all nodes in insertion order (testing helper)."""
        return [n.copy() for n in self._nodes]

    def get_node(self, node_id: str) -> Optional[Node]:
        """Get a copy of one node by id (testing helper)."""
        for node in self._nodes:
            if node.id == node_id:
                return node.copy()
        return None

    def clear(self) -> None:
        """Remove all nodes (testing helper)."""
        self._nodes.clear()

    def inject_failure(self, operation: str, exception: Exception) -> None:
        """Make the next call of `operation` raise `exception` (testing helper)."""
        self._failures[operation] = exception
