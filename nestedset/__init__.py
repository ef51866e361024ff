"""
nestedset - Nested-set (modified preorder tree traversal) ordering for
records in a flat collection.

Every node stores a left boundary (lft), a right boundary (rgt), a cached
depth (lvl) and a parent link (parent_id). Ancestors, descendants and levels
become interval filters, so whole subtrees are read without recursion.

Architecture:
    ┌──────────────┐     ┌───────────────────────────────────────────┐
    │     Host     │────▶│              NestedSetTree                │
    │ application  │     │  insert / remove / rebuild / queries      │
    └──────────────┘     └───┬──────────────┬──────────────┬─────────┘
                             │              │              │
                             ▼              ▼              ▼
                     ┌──────────────┐ ┌─────────────┐ ┌────────────┐
                     │MutationEngine│ │RebuildEngine│ │TreeQueries │
                     └──────┬───────┘ └──────┬──────┘ └─────┬──────┘
                            └────────────────┼──────────────┘
                                             ▼
                                  ┌──────────────────┐
                                  │    NodeStore     │
                                  │ (SQLite, memory) │
                                  └──────────────────┘

Invariants:
    - Within a forest, two intervals either nest or are disjoint
    - A is an ancestor of B iff A.lft < B.lft < A.rgt
    - A node is a leaf iff rgt - lft == 1
    - lvl equals the number of strict ancestors
    - Children tile their parent's open interval in lft order

How to change safely:
    - Structural mutations of one forest must be serialized
    - An unbuilt subtree stays unbuilt until rebuild_forest/rebuild_tree
    - Changing the grouping key of a collection requires a rebuild

Example:
    >>> from nestedset import NestedSetTree, Node, SqliteNodeStore
    >>>
    >>> store = SqliteNodeStore("/var/lib/nestedset/tree.db")
    >>> await store.initialize()
    >>> tree = NestedSetTree(store)
    >>> root = await tree.insert(Node(fields={"name": "root"}))
    >>> leaf = await tree.insert(Node(parent_id=root.id, fields={"name": "leaf"}))
    >>> await tree.level(leaf)
    1
"""

from ._version import __version__
from .config import (
    ObservabilityConfig,
    StorageConfig,
    StoreBackend,
    TreeConfig,
    TreeSettings,
)
from .errors import (
    InvalidFilterError,
    InvalidUpdateError,
    NestedSetError,
    NodeNotFoundError,
    StoreError,
    StoreNotInitializedError,
    TreeNotBuiltError,
)
from .filters import QueryOptions
from .integrity import TreeIssue, check_forest
from .interval import UNBUILT, Boundary, Built, Unbuilt
from .mutation import MutationEngine
from .node import Node
from .query import TreeQueries
from .rebuild import RebuildEngine
from .store import InMemoryNodeStore, NodeStore, SqliteNodeStore, create_node_store
from .tree import NestedSetTree

__all__ = [
    # Version
    "__version__",
    # Model
    "Node",
    "Boundary",
    "Built",
    "Unbuilt",
    "UNBUILT",
    "QueryOptions",
    # Engines
    "NestedSetTree",
    "MutationEngine",
    "RebuildEngine",
    "TreeQueries",
    "TreeIssue",
    "check_forest",
    # Stores
    "NodeStore",
    "InMemoryNodeStore",
    "SqliteNodeStore",
    "create_node_store",
    # Config
    "TreeConfig",
    "TreeSettings",
    "StorageConfig",
    "StoreBackend",
    "ObservabilityConfig",
    # Errors
    "NestedSetError",
    "TreeNotBuiltError",
    "NodeNotFoundError",
    "StoreError",
    "StoreNotInitializedError",
    "InvalidFilterError",
    "InvalidUpdateError",
]
