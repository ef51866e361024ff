"""
Filter and query-option handling shared by all stores.

Filters are Mongo-style dicts:

    {"parent_id": "abc"}                          equality (None matches null)
    {"lft": {"$gt": 4}, "rgt": {"$lt": 9}}        operators, implicitly AND-ed
    {"$or": [{"parent_id": "abc"}, {"id": "abc"}]}
    {"$query": {...}, "$orderby": {"lft": 1}}     legacy envelope

Invariants:
    - merge_constraint never mutates the caller's filter
    - Unknown operators raise InvalidFilterError in every store
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import InvalidFilterError
from .node import Node

Filter = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]

COMPARISON_OPERATORS = ("$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin", "$exists")
LOGICAL_OPERATORS = ("$or", "$and")

ENVELOPE_KEY = "$query"
ORDERBY_KEY = "$orderby"


@dataclass(frozen=True)
class QueryOptions:
    """Optional extras for a tree query.

    Attributes:
        filters: Additional filter merged with the relationship constraint
        fields: Payload fields to return (structural fields always returned)
        sort: Sequence of (field, 1 | -1)
        limit: Maximum nodes to return
        skip: Nodes to skip before returning
    """

    filters: Optional[Filter] = None
    fields: Optional[Tuple[str, ...]] = None
    sort: Optional[SortSpec] = None
    limit: Optional[int] = None
    skip: int = 0


def merge_constraint(filters: Optional[Filter], constraint: Filter) -> Filter:
    """Merge a relationship constraint into a caller filter.

    If the filter carries a $query envelope the constraint goes inside it,
    otherwise it is merged at the top level. Constraint keys win.
    """
    merged = copy.deepcopy(filters) if filters else {}
    envelope = merged.get(ENVELOPE_KEY)
    if isinstance(envelope, dict):
        envelope.update(constraint)
    else:
        merged.update(constraint)
    return merged


def unwrap_envelope(filters: Optional[Filter]) -> Tuple[Filter, Optional[SortSpec]]:
    """Split a filter into (predicate, orderby).

    Returns:
        The predicate without envelope keys and the $orderby sort, if any
    """
    if not filters:
        return {}, None
    if ENVELOPE_KEY not in filters:
        return filters, None

    predicate = filters[ENVELOPE_KEY]
    if not isinstance(predicate, dict):
        raise InvalidFilterError("$query must be a dict", operator=ENVELOPE_KEY)

    orderby = filters.get(ORDERBY_KEY)
    sort: Optional[SortSpec] = None
    if orderby:
        if not isinstance(orderby, dict):
            raise InvalidFilterError("$orderby must be a dict", operator=ORDERBY_KEY)
        sort = [(name, int(direction)) for name, direction in orderby.items()]
    return predicate, sort


def is_operator_dict(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(
        isinstance(k, str) and k.startswith("$") for k in value
    )


def match_filter(node: Node, filters: Optional[Filter]) -> bool:
    """Evaluate a filter against a node in-process."""
    if not filters:
        return True

    for key, condition in filters.items():
        if key == "$or":
            if not any(match_filter(node, sub) for sub in _clauses(key, condition)):
                return False
        elif key == "$and":
            if not all(match_filter(node, sub) for sub in _clauses(key, condition)):
                return False
        elif key.startswith("$"):
            raise InvalidFilterError(f"Unsupported top-level operator: {key}", operator=key)
        elif not _match_field(node, key, condition):
            return False
    return True


def _clauses(op: str, condition: Any) -> List[Filter]:
    if not isinstance(condition, list):
        raise InvalidFilterError(f"{op} requires a list of filters", operator=op)
    return condition


def _match_field(node: Node, name: str, condition: Any) -> bool:
    value = node.get(name)
    if is_operator_dict(condition):
        return all(_eval_op(op, value, arg, name, node) for op, arg in condition.items())
    return value == condition


def _eval_op(op: str, value: Any, arg: Any, name: str, node: Node) -> bool:
    if op == "$eq":
        return value == arg
    if op == "$ne":
        return value != arg
    if op == "$in":
        return value in _as_list(op, arg)
    if op == "$nin":
        return value not in _as_list(op, arg)
    if op == "$exists":
        present = name in Node.STRUCTURAL and value is not None or name in node.fields
        return present == bool(arg)
    if op in ("$gt", "$gte", "$lt", "$lte"):
        if value is None or arg is None:
            return False
        try:
            if op == "$gt":
                return value > arg
            if op == "$gte":
                return value >= arg
            if op == "$lt":
                return value < arg
            return value <= arg
        except TypeError:
            return False
    raise InvalidFilterError(f"Unsupported operator: {op}", operator=op)


def _as_list(op: str, arg: Any) -> List[Any]:
    if not isinstance(arg, (list, tuple, set)):
        raise InvalidFilterError(f"{op} requires a list", operator=op)
    return list(arg)


def sort_nodes(nodes: Iterable[Node], sort: Optional[SortSpec]) -> List[Node]:
    """Stable multi-key sort; None values sort first, as SQLite does."""
    result = list(nodes)
    if not sort:
        return result
    for name, direction in reversed(list(sort)):
        result.sort(
            key=lambda n: (n.get(name) is not None, n.get(name)),
            reverse=direction < 0,
        )
    return result
