"""
Node record for nested-set collections.

A node carries four structural fields maintained by the engines (parent_id,
lft, rgt, lvl) plus an arbitrary payload owned by the host application. The
grouping key, when configured, is a payload field.

Invariants:
    - id is assigned by the store and never changes
    - lft/rgt are written only by the mutation and rebuild engines
    - lft is None or rgt is None means the node is not built yet
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from . import interval
from .errors import TreeNotBuiltError
from .interval import Boundary, Built


@dataclass
class Node:
    """A record in a nested-set collection.

    Attributes:
        id: Store-assigned identifier (None until inserted)
        parent_id: Identifier of the parent node, None for a root
        lft: Left boundary, None until built
        rgt: Right boundary, None until built
        lvl: Cached depth, 0 for a root
        fields: Host payload, including the grouping key field
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
    """

    id: Optional[str] = None
    parent_id: Optional[str] = None
    lft: Optional[int] = None
    rgt: Optional[int] = None
    lvl: int = 0
    fields: Dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0

    STRUCTURAL = ("id", "parent_id", "lft", "rgt", "lvl")

    @property
    def boundary(self) -> Boundary:
        return interval.boundary_of(self.lft, self.rgt, self.lvl)

    @property
    def is_built(self) -> bool:
        return isinstance(self.boundary, Built)

    def built(self) -> Built:
        """Return the built boundary or raise.

        Raises:
            TreeNotBuiltError: If lft/rgt are not assigned
        """
        boundary = self.boundary
        if not isinstance(boundary, Built):
            raise TreeNotBuiltError(f"Node {self.id} has no lft/rgt", node_id=self.id)
        return boundary

    def get(self, name: str, default: Any = None) -> Any:
        """Resolve a structural or payload field by name."""
        if name in self.STRUCTURAL:
            return getattr(self, name)
        return self.fields.get(name, default)

    def set_boundary(self, lft: int, rgt: int, lvl: Optional[int] = None) -> None:
        self.lft = lft
        self.rgt = rgt
        if lvl is not None:
            self.lvl = lvl

    def is_leaf(self) -> bool:
        """True if the node is built and has no descendants."""
        boundary = self.boundary
        return isinstance(boundary, Built) and interval.is_leaf(boundary)

    def is_child(self) -> bool:
        """True if the node has a parent."""
        return self.parent_id is not None

    def is_descendant_of(self, other: Node) -> bool:
        return interval.is_descendant_of(self.built(), other.built())

    def is_ancestor_of(self, other: Node) -> bool:
        return interval.is_ancestor_of(self.built(), other.built())

    def copy(self) -> Node:
        return copy.deepcopy(self)

    def project(self, names: Optional[Iterable[str]]) -> Node:
        """Copy keeping only the selected payload fields.

        Structural fields and timestamps are always kept.
        """
        result = self.copy()
        if names is not None:
            keep = set(names)
            result.fields = {k: v for k, v in result.fields.items() if k in keep}
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "lft": self.lft,
            "rgt": self.rgt,
            "lvl": self.lvl,
            "fields": dict(self.fields),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __str__(self) -> str:
        return f"Node(id={self.id}, parent={self.parent_id}, [{self.lft}, {self.rgt}] lvl={self.lvl})"
