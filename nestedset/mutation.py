"""
Boundary renumbering on insert and remove.

Insert opens a two-unit gap right after the last sibling (or right inside the
parent's left boundary when the node is the first child) and places the new
node in it. Remove closes the gap the removed subtree occupied.

Both operations are best-effort: when the parent or a sibling has no
boundaries yet the forest is "not built" under that parent, the engine logs a
warning and leaves the boundaries alone. An explicit rebuild recovers.

Invariants:
    - Every bulk shift is scoped to the node's forest (grouping key)
    - lft and rgt are shifted by two independent range updates
    - The engine never inserts or deletes records

Concurrency:
    The shifts and the final assignment are separate store operations. Two
    interleaved mutations of one forest can corrupt it; callers must serialize
    them (NestedSetTree does so per forest within a process).
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .errors import NodeNotFoundError, TreeNotBuiltError
from .filters import Filter
from .interval import Built, parent_filter, siblings_filter
from .node import Node
from .store.base import NodeStore

logger = logging.getLogger(__name__)


class MutationEngine:
    """Positions nodes on insert and closes gaps on remove.

    Attributes:
        store: Record store
        grouping_key: Payload field partitioning the collection into forests

    Example:
        >>> engine = MutationEngine(store)
        >>> child = Node(parent_id=root.id)
        >>> await engine.on_insert(child)
        True
        >>> await store.insert_one(child)
    """

    def __init__(self, store: NodeStore, grouping_key: Optional[str] = None) -> None:
        self.store = store
        self.grouping_key = grouping_key

    def forest_scope(self, node: Node) -> Filter:
        """Filter restricting a query to the node's forest."""
        if self.grouping_key is None:
            return {}
        return {self.grouping_key: node.get(self.grouping_key)}

    async def on_insert(self, node: Node) -> bool:
        """Assign boundaries to a node that is about to be inserted.

        Args:
            node: New node, not yet persisted

        Returns:
            True if boundaries were assigned, False if skipped (not built)
        """
        if node.parent_id is None:
            await self._place_root(node)
            return True

        try:
            parent = await self._built_parent(node)
            node.lvl = parent.lvl + 1
            siblings = await self._built_siblings(node)
        except TreeNotBuiltError as e:
            logger.warning(
                f"Tree is not built, skipping insert renumbering: {e.message}",
                extra={"node_id": node.id, "parent_id": node.parent_id},
            )
            return False

        max_rgt = max((s.rgt for s in siblings), default=parent.lft)

        await self._shift(node, max_rgt, 2)
        node.set_boundary(max_rgt + 1, max_rgt + 2)

        logger.debug(
            "Positioned node",
            extra={"node_id": node.id, "parent_id": node.parent_id, "lft": node.lft, "rgt": node.rgt},
        )
        return True

    async def on_remove(self, node: Node) -> bool:
        """Close the gap a node's subtree occupies before it is deleted.

        The node is reloaded from the store first, so a stale or projected
        copy never drives the shift or picks the forest.

        Args:
            node: Node about to be deleted (descendants go with it)

        Returns:
            True if the gap was closed, False if skipped (not built)

        Raises:
            NodeNotFoundError: If the node is no longer in the store
        """
        if node.id is not None:
            current = await self.store.find_one({"id": node.id})
            if current is None:
                raise NodeNotFoundError(f"Node {node.id} not found", node_id=node.id)
            node.parent_id = current.parent_id
            node.lft, node.rgt, node.lvl = current.lft, current.rgt, current.lvl
            node.fields = current.fields

        boundary = node.boundary
        try:
            if not isinstance(boundary, Built):
                raise TreeNotBuiltError(f"Node {node.id} has no lft/rgt", node_id=node.id)
            if node.parent_id is not None:
                await self._built_parent(node)
                await self._built_siblings(node)
        except TreeNotBuiltError as e:
            logger.warning(
                f"Tree is not built, skipping remove renumbering: {e.message}",
                extra={"node_id": node.id, "parent_id": node.parent_id},
            )
            return False

        await self._shift(node, boundary.rgt, -boundary.width)
        return True

    async def _place_root(self, node: Node) -> None:
        """Append a root after everything already numbered in its forest."""
        last = await self.store.find(
            {"rgt": {"$ne": None}, **self.forest_scope(node)},
            sort=[("rgt", -1)],
            limit=1,
        )
        lft = (last[0].rgt if last else 0) + 1
        node.set_boundary(lft, lft + 1, 0)

    async def _built_parent(self, node: Node) -> Node:
        parent = await self.store.find_one(parent_filter(node.parent_id))
        if parent is None:
            raise TreeNotBuiltError(f"Parent {node.parent_id} not found", node_id=node.parent_id)
        if not parent.is_built:
            raise TreeNotBuiltError(f"Parent {parent.id} has no lft/rgt", node_id=parent.id)
        return parent

    async def _built_siblings(self, node: Node) -> List[Node]:
        siblings = await self.store.find(
            {**siblings_filter(node.id, node.parent_id), **self.forest_scope(node)}
        )
        unbuilt = [s for s in siblings if not s.is_built]
        if unbuilt:
            raise TreeNotBuiltError(
                f"{len(unbuilt)} sibling(s) of node {node.id} have no lft/rgt",
                node_id=unbuilt[0].id,
            )
        return siblings

    async def _shift(self, node: Node, after: int, delta: int) -> None:
        """Move every boundary greater than `after` by `delta` within the forest."""
        scope = self.forest_scope(node)
        moved_lft = await self.store.update_many({"lft": {"$gt": after}, **scope}, {"lft": delta})
        moved_rgt = await self.store.update_many({"rgt": {"$gt": after}, **scope}, {"rgt": delta})

        logger.debug(
            "Shifted boundaries",
            extra={
                "after": after,
                "delta": delta,
                "lft_updated": moved_lft,
                "rgt_updated": moved_rgt,
                "scope": scope,
            },
        )
