"""
Rebuild nested-set boundaries from parent links.

The rebuild ignores existing lft/rgt values. It walks the tree depth-first in
store order and hands out boundary values from a single increasing counter:
a node takes the next value as lft, its children are numbered inside, and the
next value after the last child becomes its rgt.

Invariants:
    - Values are consumed strictly in preorder, so containment holds by
      construction
    - Same parent links and store order give identical numbering
    - One find and one update per node, not batched

Failure:
    A missing children result or a node that disappears mid-rebuild raises
    NodeNotFoundError. Nodes already written keep their new values.
"""

from __future__ import annotations

import logging
import time
from typing import Any, List, Optional

from .errors import NodeNotFoundError
from .interval import children_filter
from .node import Node
from .store.base import NodeStore

logger = logging.getLogger(__name__)


class RebuildEngine:
    """Renumbers subtrees and whole forests from parent_id links.

    Example:
        >>> engine = RebuildEngine(store)
        >>> root = await store.find_one({"parent_id": None})
        >>> await engine.rebuild_tree(root)
        >>> root.lft, root.rgt
        (1, 8)
    """

    def __init__(self, store: NodeStore, grouping_key: Optional[str] = None) -> None:
        self.store = store
        self.grouping_key = grouping_key

    async def rebuild_tree(self, parent: Node, left: int = 1, level: Optional[int] = None) -> Node:
        """Renumber `parent` and its whole subtree starting at `left`.

        Args:
            parent: Subtree root (updated in place)
            left: Boundary value given to parent.lft
            level: Depth of parent; defaults to 0 for a root, else its cached lvl

        Returns:
            The parent with its final lft/rgt/lvl

        Raises:
            NodeNotFoundError: If children or a node cannot be located
        """
        if level is None:
            level = 0 if parent.parent_id is None else parent.lvl

        logger.info(
            f"Rebuilding subtree of {parent.id}",
            extra={"node_id": parent.id, "left": left, "level": level},
        )
        start = time.monotonic()
        count = await self._rebuild(parent, left, level)

        logger.info(
            f"Rebuilt subtree of {parent.id}: {count} node(s)",
            extra={
                "node_id": parent.id,
                "lft": parent.lft,
                "rgt": parent.rgt,
                "nodes": count,
                "elapsed_ms": int((time.monotonic() - start) * 1000),
            },
        )
        return parent

    async def rebuild_forest(self, group_value: Any = None) -> List[Node]:
        """Renumber every tree of a forest, roots numbered one after another.

        Args:
            group_value: Grouping key value selecting the forest (ignored
                without a grouping key)

        Returns:
            The rebuilt roots in store order
        """
        scope = {} if self.grouping_key is None else {self.grouping_key: group_value}
        roots = await self.store.find({"parent_id": None, **scope})

        logger.info(
            f"Rebuilding forest: {len(roots)} root(s)",
            extra={"grouping_key": self.grouping_key, "group_value": group_value},
        )
        start = time.monotonic()
        left = 1
        count = 0
        for root in roots:
            count += await self._rebuild(root, left, 0)
            left = root.rgt + 1

        logger.info(
            f"Rebuilt forest: {len(roots)} root(s), {count} node(s)",
            extra={
                "grouping_key": self.grouping_key,
                "group_value": group_value,
                "roots": len(roots),
                "nodes": count,
                "elapsed_ms": int((time.monotonic() - start) * 1000),
            },
        )
        return roots

    async def _rebuild(self, parent: Node, left: int, level: int) -> int:
        """Number one subtree and return how many nodes it holds."""
        parent.set_boundary(left, left + 1, level)

        children = await self.store.find(children_filter(parent.id))
        if children is None:
            raise NodeNotFoundError(f"Children of node {parent.id} not found", node_id=parent.id)

        count = 1
        for child in children:
            count += await self._rebuild(child, parent.rgt, level + 1)
            parent.rgt = child.rgt + 1

        updated = await self.store.update_one(
            {"id": parent.id},
            {"lft": parent.lft, "rgt": parent.rgt, "lvl": parent.lvl},
        )
        if updated is None:
            raise NodeNotFoundError(f"Node {parent.id} not found", node_id=parent.id)
        return count
