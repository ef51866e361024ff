"""
Tree queries expressed as store filters.

Link queries (parent, children, siblings) filter on id/parent_id. Interval
queries (ancestors, descendants) filter on lft/rgt and therefore need a
built node. Every query accepts QueryOptions whose filter is merged with the
relationship constraint (inside a $query envelope when one is present).
"""

from __future__ import annotations

from typing import Any, List, Optional

from . import interval
from .filters import Filter, QueryOptions, merge_constraint
from .node import Node
from .store.base import NodeStore


class TreeQueries:
    """Relationship queries for nodes of one collection.

    Sibling and interval queries are restricted to the node's forest when a
    grouping key is configured.

    Example:
        >>> queries = TreeQueries(store)
        >>> names = QueryOptions(fields=("name",), sort=[("lft", 1)])
        >>> path = await queries.self_and_ancestors(node, names)
    """

    def __init__(self, store: NodeStore, grouping_key: Optional[str] = None) -> None:
        self.store = store
        self.grouping_key = grouping_key

    async def parent(self, node: Node, options: Optional[QueryOptions] = None) -> Optional[Node]:
        if node.parent_id is None:
            return None
        nodes = await self._find(interval.parent_filter(node.parent_id), options, limit=1)
        return nodes[0] if nodes else None

    async def children(self, node: Node, options: Optional[QueryOptions] = None) -> List[Node]:
        return await self._find(interval.children_filter(node.id), options)

    async def self_and_children(
        self, node: Node, options: Optional[QueryOptions] = None
    ) -> List[Node]:
        return await self._find(interval.self_and_children_filter(node.id), options)

    async def siblings(self, node: Node, options: Optional[QueryOptions] = None) -> List[Node]:
        constraint = interval.siblings_filter(node.id, node.parent_id)
        return await self._find(await self._scoped(constraint, node), options)

    async def self_and_siblings(
        self, node: Node, options: Optional[QueryOptions] = None
    ) -> List[Node]:
        constraint = interval.self_and_siblings_filter(node.parent_id)
        return await self._find(await self._scoped(constraint, node), options)

    async def ancestors(self, node: Node, options: Optional[QueryOptions] = None) -> List[Node]:
        constraint = interval.ancestors_filter(node.built())
        return await self._find(await self._scoped(constraint, node), options)

    async def self_and_ancestors(
        self, node: Node, options: Optional[QueryOptions] = None
    ) -> List[Node]:
        constraint = interval.self_and_ancestors_filter(node.built())
        return await self._find(await self._scoped(constraint, node), options)

    async def descendants(self, node: Node, options: Optional[QueryOptions] = None) -> List[Node]:
        constraint = interval.descendants_filter(node.built())
        return await self._find(await self._scoped(constraint, node), options)

    async def self_and_descendants(
        self, node: Node, options: Optional[QueryOptions] = None
    ) -> List[Node]:
        constraint = interval.self_and_descendants_filter(node.built())
        return await self._find(await self._scoped(constraint, node), options)

    async def level(self, node: Node) -> int:
        """Depth of the node, counted from its ancestors. Root level is 0."""
        return len(await self.ancestors(node))

    async def group_value(self, node: Node) -> Any:
        """Grouping value of the node's forest.

        Read from the store when the node was loaded without the grouping
        field, e.g. through a field selection.
        """
        if self.grouping_key is None:
            return None
        if self.grouping_key in node.fields or node.id is None:
            return node.get(self.grouping_key)
        stored = await self.store.find_one({"id": node.id})
        if stored is None:
            return None
        return stored.get(self.grouping_key)

    async def _scoped(self, constraint: Filter, node: Node) -> Filter:
        if self.grouping_key is None:
            return constraint
        return {**constraint, self.grouping_key: await self.group_value(node)}

    async def _find(
        self,
        constraint: Filter,
        options: Optional[QueryOptions],
        limit: Optional[int] = None,
    ) -> List[Node]:
        options = options or QueryOptions()
        filters = merge_constraint(options.filters, constraint)
        return await self.store.find(
            filters,
            fields=options.fields,
            sort=options.sort,
            limit=options.limit if limit is None else limit,
            skip=options.skip,
        )
