"""
NestedSetTree - the entry point a host application uses.

Wires the mutation, rebuild and query engines to one store and plays the part
of save/remove hooks: insert() positions a node and persists it, remove()
closes its gap and deletes it with its descendants.

Invariants:
    - Structural fields change only through insert, remove and rebuild
    - With serialize_writes, structural mutations of one forest never
      interleave within this process

How to change safely:
    - Keep the raw engines lock-free; locking belongs here
    - Cross-process writers still need external mutual exclusion
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from .config import TreeSettings
from .errors import InvalidUpdateError, NodeNotFoundError
from .filters import QueryOptions
from .integrity import TreeIssue, check_forest
from .interval import self_and_descendants_filter
from .mutation import MutationEngine
from .node import Node
from .query import TreeQueries
from .rebuild import RebuildEngine
from .store.base import NodeStore

logger = logging.getLogger(__name__)


class NestedSetTree:
    """Nested-set ordering over one collection.

    Attributes:
        store: Record store
        settings: Grouping key and locking behaviour
        mutations: Insert/remove renumbering
        rebuilder: Rebuild from parent links
        queries: Relationship queries

    Example:
        >>> tree = NestedSetTree(store)
        >>> root = await tree.insert(Node(fields={"name": "root"}))
        >>> child = await tree.insert(Node(parent_id=root.id, fields={"name": "a"}))
        >>> [n.fields["name"] for n in await tree.ancestors(child)]
        ['root']
    """

    def __init__(self, store: NodeStore, settings: Optional[TreeSettings] = None) -> None:
        self.store = store
        self.settings = settings or TreeSettings()
        grouping_key = self.settings.grouping_key
        self.mutations = MutationEngine(store, grouping_key)
        self.rebuilder = RebuildEngine(store, grouping_key)
        self.queries = TreeQueries(store, grouping_key)
        # Entries live only while some coroutine holds or awaits the lock
        self._locks: Dict[Any, asyncio.Lock] = {}
        self._lock_users: Dict[Any, int] = {}

    @property
    def grouping_key(self) -> Optional[str]:
        return self.settings.grouping_key

    def group_of(self, node: Node) -> Any:
        """Grouping key value of the node's forest (None without grouping)."""
        if self.grouping_key is None:
            return None
        return node.get(self.grouping_key)

    @asynccontextmanager
    async def forest_lock(self, group_value: Any) -> AsyncIterator[None]:
        """Serialize structural mutations of one forest."""
        if not self.settings.serialize_writes:
            yield
            return
        lock = self._locks.get(group_value)
        if lock is None:
            lock = self._locks[group_value] = asyncio.Lock()
        self._lock_users[group_value] = self._lock_users.get(group_value, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[group_value] -= 1
            if not self._lock_users[group_value]:
                del self._lock_users[group_value]
                del self._locks[group_value]

    async def get(self, node_id: str) -> Optional[Node]:
        return await self.store.find_one({"id": node_id})

    async def insert(self, node: Node) -> Node:
        """Position a new node and persist it.

        Args:
            node: New node; parent_id selects where it goes

        Returns:
            The persisted node with id and boundaries assigned
        """
        async with self.forest_lock(self.group_of(node)):
            await self.mutations.on_insert(node)
            return await self.store.insert_one(node)

    async def remove(self, node: Node) -> int:
        """Delete a node and its descendants, closing the gap they leave.

        When the forest is not built under the node only the node itself is
        deleted; its children stay until the next rebuild.

        Returns:
            Number of records deleted

        Raises:
            NodeNotFoundError: If the node is not in the store
        """
        current = await self.store.find_one({"id": node.id})
        if current is None:
            raise NodeNotFoundError(f"Node {node.id} not found", node_id=node.id)

        # Keyed on the stored record; the caller may hold a projected copy
        async with self.forest_lock(self.group_of(current)):
            current = await self.store.find_one({"id": node.id})
            if current is None:
                raise NodeNotFoundError(f"Node {node.id} not found", node_id=node.id)

            # Collected before the shift moves later nodes into this interval
            subtree = [current]
            if current.is_built:
                subtree = await self.store.find(
                    {
                        **self_and_descendants_filter(current.built()),
                        **self.mutations.forest_scope(current),
                    }
                )

            renumbered = await self.mutations.on_remove(node)
            doomed = [n.id for n in subtree] if renumbered else [current.id]
            deleted = await self.store.delete_many({"id": {"$in": doomed}})

        logger.debug(
            "Removed node",
            extra={"node_id": node.id, "deleted": deleted, "renumbered": renumbered},
        )
        return deleted

    async def update(self, node: Node, values: Dict[str, Any]) -> Node:
        """Update payload fields of a node.

        Raises:
            InvalidUpdateError: If values touch a structural field or the grouping key
            NodeNotFoundError: If the node is not in the store
        """
        for name in values:
            if name in Node.STRUCTURAL or name == self.grouping_key:
                raise InvalidUpdateError(
                    f"Field '{name}' can only change through insert, remove or rebuild",
                    field_name=name,
                )

        updated = await self.store.update_one({"id": node.id}, values)
        if updated is None:
            raise NodeNotFoundError(f"Node {node.id} not found", node_id=node.id)
        node.fields.update(values)
        return updated

    async def rebuild_tree(self, parent: Node, left: int = 1, level: Optional[int] = None) -> Node:
        async with self.forest_lock(await self.queries.group_value(parent)):
            return await self.rebuilder.rebuild_tree(parent, left, level)

    async def rebuild_forest(self, group_value: Any = None) -> List[Node]:
        async with self.forest_lock(group_value):
            return await self.rebuilder.rebuild_forest(group_value)

    async def check_forest(self, group_value: Any = None) -> List[TreeIssue]:
        return await check_forest(self.store, self.grouping_key, group_value)

    # Queries

    async def parent(self, node: Node, options: Optional[QueryOptions] = None) -> Optional[Node]:
        return await self.queries.parent(node, options)

    async def children(self, node: Node, options: Optional[QueryOptions] = None) -> List[Node]:
        return await self.queries.children(node, options)

    async def self_and_children(
        self, node: Node, options: Optional[QueryOptions] = None
    ) -> List[Node]:
        return await self.queries.self_and_children(node, options)

    async def siblings(self, node: Node, options: Optional[QueryOptions] = None) -> List[Node]:
        return await self.queries.siblings(node, options)

    async def self_and_siblings(
        self, node: Node, options: Optional[QueryOptions] = None
    ) -> List[Node]:
        return await self.queries.self_and_siblings(node, options)

    async def ancestors(self, node: Node, options: Optional[QueryOptions] = None) -> List[Node]:
        return await self.queries.ancestors(node, options)

    async def self_and_ancestors(
        self, node: Node, options: Optional[QueryOptions] = None
    ) -> List[Node]:
        return await self.queries.self_and_ancestors(node, options)

    async def descendants(self, node: Node, options: Optional[QueryOptions] = None) -> List[Node]:
        return await self.queries.descendants(node, options)

    async def self_and_descendants(
        self, node: Node, options: Optional[QueryOptions] = None
    ) -> List[Node]:
        return await self.queries.self_and_descendants(node, options)

    async def level(self, node: Node) -> int:
        return await self.queries.level(node)
