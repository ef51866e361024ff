"""
Interval math for the nested-set model.

A built node owns the closed interval [lft, rgt]. Every relationship the tree
needs is an interval test:

    ancestor(A, B)   A.lft < B.lft < A.rgt
    leaf(N)          N.rgt - N.lft == 1
    disjoint(A, B)   A.rgt < B.lft or B.rgt < A.lft

The predicates here are pure and total over Built boundaries. Unbuilt nodes
have no interval; callers must branch on the Boundary variant first.

The *_filter builders turn the same relationships into store filters so the
query layer, mutation engine and integrity checker agree on them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

Filter = Dict[str, Any]


@dataclass(frozen=True)
class Unbuilt:
    """Boundaries not assigned yet (tree not built for this node)."""

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class Built:
    """Assigned nested-set boundaries.

    Attributes:
        lft: Left boundary
        rgt: Right boundary, always greater than lft
        lvl: Cached depth, 0 for a root
    """

    lft: int
    rgt: int
    lvl: int = 0

    @property
    def width(self) -> int:
        """Number of boundary values the subtree consumes."""
        return self.rgt - self.lft + 1


Boundary = Union[Unbuilt, Built]

UNBUILT = Unbuilt()


def boundary_of(lft: Optional[int], rgt: Optional[int], lvl: int = 0) -> Boundary:
    """Classify raw boundary fields.

    Zero counts as unset, matching records created with placeholder defaults.
    """
    if not lft or not rgt:
        return UNBUILT
    return Built(lft, rgt, lvl)


def is_leaf(node: Built) -> bool:
    return node.rgt - node.lft == 1


def is_descendant_of(node: Built, other: Built) -> bool:
    """True if node lies strictly inside other."""
    return other.lft < node.lft < other.rgt


def is_ancestor_of(node: Built, other: Built) -> bool:
    """True if other lies strictly inside node."""
    return node.lft < other.lft < node.rgt


def is_disjoint(a: Built, b: Built) -> bool:
    return a.rgt < b.lft or b.rgt < a.lft


def overlaps_partially(a: Built, b: Built) -> bool:
    """True if neither interval contains the other and they still intersect."""
    if a == b or is_disjoint(a, b):
        return False
    a_in_b = b.lft <= a.lft and a.rgt <= b.rgt
    b_in_a = a.lft <= b.lft and b.rgt <= a.rgt
    return not (a_in_b or b_in_a)


# Filter builders

def parent_filter(parent_id: Optional[str]) -> Filter:
    return {"id": parent_id}


def children_filter(node_id: Optional[str]) -> Filter:
    return {"parent_id": node_id}


def self_and_children_filter(node_id: Optional[str]) -> Filter:
    return {"$or": [{"parent_id": node_id}, {"id": node_id}]}


def siblings_filter(node_id: Optional[str], parent_id: Optional[str]) -> Filter:
    return {"parent_id": parent_id, "id": {"$ne": node_id}}


def self_and_siblings_filter(parent_id: Optional[str]) -> Filter:
    return {"parent_id": parent_id}


def ancestors_filter(node: Built) -> Filter:
    return {"lft": {"$lt": node.lft}, "rgt": {"$gt": node.rgt}}


def self_and_ancestors_filter(node: Built) -> Filter:
    return {"lft": {"$lte": node.lft}, "rgt": {"$gte": node.rgt}}


def descendants_filter(node: Built) -> Filter:
    return {"lft": {"$gt": node.lft}, "rgt": {"$lt": node.rgt}}


def self_and_descendants_filter(node: Built) -> Filter:
    return {"lft": {"$gte": node.lft}, "rgt": {"$lte": node.rgt}}
