"""
Forest integrity checks.

Loads one forest and verifies the nested-set invariants against the parent
links: intervals nest or are disjoint, children tile their parent's interval
without gaps, lvl equals the number of enclosing intervals, and every node's
enclosing interval belongs to its parent.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .node import Node
from .store.base import NodeStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreeIssue:
    """One invariant violation.

    Attributes:
        node_id: Offending node
        kind: unbuilt, bad_interval, duplicate_boundary, overlap,
            parent_mismatch, gap, level
        message: Human-readable description
    """

    node_id: Optional[str]
    kind: str
    message: str

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


async def check_forest(
    store: NodeStore,
    grouping_key: Optional[str] = None,
    group_value: Any = None,
) -> List[TreeIssue]:
    """Check every invariant of one forest.

    Args:
        store: Record store
        grouping_key: Payload field partitioning the collection
        group_value: Forest to check (ignored without a grouping key)

    Returns:
        Issues found, empty when the forest is consistent
    """
    scope = {} if grouping_key is None else {grouping_key: group_value}
    nodes = await store.find(scope)
    issues: List[TreeIssue] = []

    built: List[Node] = []
    for node in nodes:
        if not node.is_built:
            issues.append(TreeIssue(node.id, "unbuilt", f"Node {node.id} has no lft/rgt"))
        elif node.lft >= node.rgt:
            issues.append(
                TreeIssue(node.id, "bad_interval", f"Node {node.id} has lft {node.lft} >= rgt {node.rgt}")
            )
        else:
            built.append(node)

    issues.extend(_check_duplicates(built))
    issues.extend(_check_nesting(built))
    issues.extend(_check_tiling(built))

    logger.debug(
        "Checked forest",
        extra={"group_value": group_value, "nodes": len(nodes), "issues": len(issues)},
    )
    return issues


def _check_duplicates(built: List[Node]) -> List[TreeIssue]:
    issues = []
    owners: Dict[int, Optional[str]] = {}
    for node in built:
        for value in (node.lft, node.rgt):
            if value in owners:
                issues.append(
                    TreeIssue(
                        node.id,
                        "duplicate_boundary",
                        f"Boundary {value} of node {node.id} is also used by {owners[value]}",
                    )
                )
            else:
                owners[value] = node.id
    return issues


def _check_nesting(built: List[Node]) -> List[TreeIssue]:
    """Sweep nodes by lft keeping the chain of open intervals."""
    issues = []
    stack: List[Node] = []
    for node in sorted(built, key=lambda n: n.lft):
        while stack and stack[-1].rgt < node.lft:
            stack.pop()

        enclosing = stack[-1] if stack else None
        if enclosing is not None and node.rgt > enclosing.rgt:
            issues.append(
                TreeIssue(
                    node.id,
                    "overlap",
                    f"Node {node.id} [{node.lft}, {node.rgt}] partially overlaps "
                    f"{enclosing.id} [{enclosing.lft}, {enclosing.rgt}]",
                )
            )
            continue

        expected_parent = enclosing.id if enclosing is not None else None
        if node.parent_id != expected_parent:
            issues.append(
                TreeIssue(
                    node.id,
                    "parent_mismatch",
                    f"Node {node.id} has parent {node.parent_id} but sits inside {expected_parent}",
                )
            )
        if node.lvl != len(stack):
            issues.append(
                TreeIssue(
                    node.id,
                    "level",
                    f"Node {node.id} has lvl {node.lvl}, expected {len(stack)}",
                )
            )
        stack.append(node)
    return issues


def _check_tiling(built: List[Node]) -> List[TreeIssue]:
    """Children must fill (parent.lft, parent.rgt) exactly, in lft order."""
    issues = []
    children_of: Dict[Optional[str], List[Node]] = defaultdict(list)
    for node in built:
        children_of[node.parent_id].append(node)

    for parent in built:
        cursor = parent.lft + 1
        for child in sorted(children_of.get(parent.id, []), key=lambda n: n.lft):
            if child.lft != cursor:
                issues.append(
                    TreeIssue(
                        child.id,
                        "gap",
                        f"Child {child.id} of {parent.id} starts at {child.lft}, expected {cursor}",
                    )
                )
            cursor = child.rgt + 1
        if cursor != parent.rgt:
            issues.append(
                TreeIssue(
                    parent.id,
                    "gap",
                    f"Node {parent.id} ends at {parent.rgt}, expected {cursor}",
                )
            )
    return issues
