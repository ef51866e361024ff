"""
Tree CLI tool for nestedset collections.

This tool maintains a collection offline:
- rebuild: Renumber a forest from parent links
- check: Verify nested-set invariants
- show: Print a forest as an outline

Usage:
    nestedset-tree rebuild --db tree.db
    nestedset-tree check --db tree.db --grouping-key tenant --group acme
    nestedset-tree show --db tree.db --label name --format json

Invariants:
    - check exits non-zero when any invariant is violated
    - show output is ordered by lft, unbuilt nodes last

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts parsing it
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any, List, Optional

import json_log_formatter

from ..config import TreeConfig
from ..integrity import TreeIssue
from ..node import Node
from ..store.base import NodeStore, create_node_store
from ..tree import NestedSetTree

logger = logging.getLogger(__name__)


def setup_logging(config: TreeConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Tree configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class TreeCLI:
    """CLI commands over one collection.

    Example:
        >>> cli = TreeCLI(NestedSetTree(store))
        >>> roots = await cli.rebuild()
        >>> issues = await cli.check()
    """

    def __init__(self, tree: NestedSetTree) -> None:
        self.tree = tree

    async def rebuild(self, group_value: Any = None) -> List[Node]:
        """Renumber the forest and return its roots."""
        return await self.tree.rebuild_forest(group_value)

    async def check(self, group_value: Any = None) -> List[TreeIssue]:
        """Return every invariant violation in the forest."""
        return await self.tree.check_forest(group_value)

    async def show(self, group_value: Any = None, label: str = "name", fmt: str = "text") -> str:
        """Render the forest.

        Args:
            group_value: Forest to render
            label: Payload field used as the node label (falls back to id)
            fmt: text (indented outline) or json

        Returns:
            Rendered forest
        """
        grouping_key = self.tree.grouping_key
        scope = {} if grouping_key is None else {grouping_key: group_value}
        nodes = await self.tree.store.find(scope, sort=[("lft", 1)])

        built = [n for n in nodes if n.is_built]
        unbuilt = [n for n in nodes if not n.is_built]

        if fmt == "json":
            return json.dumps([n.to_dict() for n in built + unbuilt], indent=2, sort_keys=True)

        lines = []
        for node in built:
            name = node.fields.get(label, node.id)
            lines.append(f"{'  ' * node.lvl}{name} [{node.lft}, {node.rgt}] lvl={node.lvl}")
        for node in unbuilt:
            name = node.fields.get(label, node.id)
            lines.append(f"{name} (unbuilt, parent={node.parent_id})")
        return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="nestedset tree maintenance tool")
    parser.add_argument("--db", help="SQLite database file (default: NESTEDSET_DB_PATH)")
    parser.add_argument("--collection", help="Table holding the nodes (default: NESTEDSET_COLLECTION)")
    parser.add_argument(
        "--grouping-key", help="Payload field partitioning forests (default: NESTEDSET_GROUPING_KEY)"
    )
    parser.add_argument(
        "--group", help="Grouping key value selecting the forest (required with a grouping key)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("rebuild", help="Renumber lft/rgt/lvl from parent links")
    subparsers.add_parser("check", help="Verify nested-set invariants")

    show_parser = subparsers.add_parser("show", help="Print the forest as an outline")
    show_parser.add_argument("--label", default="name", help="Payload field to print per node")
    show_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )
    return parser


def load_config(args: argparse.Namespace) -> TreeConfig:
    """Environment configuration with command-line overrides applied."""
    config = TreeConfig.from_env()
    storage = config.storage
    if args.db:
        storage = dataclasses.replace(storage, db_path=args.db)
    if args.collection:
        storage = dataclasses.replace(storage, collection=args.collection)
    tree = config.tree
    if args.grouping_key:
        tree = dataclasses.replace(tree, grouping_key=args.grouping_key)

    config = dataclasses.replace(config, storage=storage, tree=tree)
    config.validate()
    if tree.grouping_key is not None and args.group is None:
        raise ValueError(f"--group is required when grouping by '{tree.grouping_key}'")
    return config


async def run(args: argparse.Namespace, config: TreeConfig) -> int:
    """Execute one command and return the exit code."""
    grouping_key = config.tree.grouping_key
    store: NodeStore = create_node_store(
        config.storage, indexed_fields=(grouping_key,) if grouping_key else ()
    )
    await store.initialize()
    cli = TreeCLI(NestedSetTree(store, config.tree))

    try:
        if args.command == "rebuild":
            roots = await cli.rebuild(args.group)
            print(f"Rebuilt {len(roots)} root(s)")
            return 0

        if args.command == "check":
            issues = await cli.check(args.group)
            if not issues:
                print("Tree is consistent")
                return 0
            print(f"Tree check FAILED with {len(issues)} issue(s):")
            for issue in issues:
                print(f"  - {issue}")
            return 1

        if args.command == "show":
            print(await cli.show(args.group, label=args.label, fmt=args.format))
            return 0

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for the tree tool."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except ValueError as e:
        parser.error(str(e))

    setup_logging(config)
    config.log_config()
    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
