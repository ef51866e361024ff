"""
Integration tests for the tree maintenance CLI.

Tests cover:
- rebuild / check / show commands against a SQLite file
- Exit codes
- Configuration errors
- Logging setup
"""

import asyncio
import json
import logging
import os
import tempfile

import json_log_formatter
import pytest

from nestedset.config import ObservabilityConfig, TreeConfig, TreeSettings
from nestedset.node import Node
from nestedset.store import InMemoryNodeStore, SqliteNodeStore
from nestedset.tools.tree_cli import TreeCLI, main, setup_logging
from nestedset.tree import NestedSetTree


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch):
    """Keep setup_logging from leaking handlers into other tests."""
    for name in ("NESTEDSET_STORE", "NESTEDSET_GROUPING_KEY", "LOG_FORMAT", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, "tree.db")


def seed(db_path, *rows):
    """Insert (id, parent_id, lft, rgt, lvl) rows into a fresh database."""

    async def _seed():
        store = SqliteNodeStore(db_path, wal_mode=False)
        await store.initialize()
        for node_id, parent_id, lft, rgt, lvl in rows:
            await store.insert_one(
                Node(
                    id=node_id,
                    parent_id=parent_id,
                    lft=lft,
                    rgt=rgt,
                    lvl=lvl,
                    fields={"name": node_id.lower()},
                )
            )

    asyncio.run(_seed())


def run_cli(*argv):
    with pytest.raises(SystemExit) as exc_info:
        main(list(argv))
    return exc_info.value.code


class TestTreeCommands:
    """Tests for main()."""

    def test_check_consistent(self, db_path, capsys):
        seed(db_path, ("R", None, 1, 4, 0), ("A", "R", 2, 3, 1))

        assert run_cli("--db", db_path, "check") == 0
        assert "Tree is consistent" in capsys.readouterr().out

    def test_check_reports_issues(self, db_path, capsys):
        seed(db_path, ("R", None, 1, 4, 0), ("A", "R", None, None, 0))

        assert run_cli("--db", db_path, "check") == 1
        out = capsys.readouterr().out
        assert "FAILED with 2 issue(s)" in out
        assert "[unbuilt]" in out
        assert "[gap]" in out

    def test_rebuild_then_check(self, db_path, capsys):
        seed(
            db_path,
            ("R", None, None, None, 0),
            ("A", "R", None, None, 0),
            ("B", "R", None, None, 0),
            ("S", None, None, None, 0),
        )

        assert run_cli("--db", db_path, "rebuild") == 0
        assert "Rebuilt 2 root(s)" in capsys.readouterr().out

        assert run_cli("--db", db_path, "check") == 0

    def test_show_text(self, db_path, capsys):
        seed(
            db_path,
            ("R", None, 1, 6, 0),
            ("A", "R", 2, 3, 1),
            ("B", "R", 4, 5, 1),
            ("U", "R", None, None, 0),
        )

        assert run_cli("--db", db_path, "show") == 0
        lines = capsys.readouterr().out.splitlines()

        assert lines == [
            "r [1, 6] lvl=0",
            "  a [2, 3] lvl=1",
            "  b [4, 5] lvl=1",
            "u (unbuilt, parent=R)",
        ]

    def test_show_json(self, db_path, capsys):
        seed(db_path, ("R", None, 1, 2, 0))

        assert run_cli("--db", db_path, "show", "--format", "json") == 0
        [node] = json.loads(capsys.readouterr().out)

        assert node["id"] == "R"
        assert node["fields"] == {"name": "r"}

    def test_check_empty_database(self, db_path):
        """initialize() creates the file, so an empty store is consistent."""
        assert run_cli("--db", db_path, "check") == 0

    def test_invalid_grouping_key(self, db_path, capsys):
        assert run_cli("--db", db_path, "--grouping-key", "lft", "check") == 2
        assert "structural" in capsys.readouterr().err

    def test_group_required_with_grouping_key(self, db_path, capsys):
        assert run_cli("--db", db_path, "--grouping-key", "tenant", "check") == 2
        assert "--group is required" in capsys.readouterr().err

    def test_grouped_rebuild_touches_one_forest(self, db_path, capsys):
        async def _seed():
            store = SqliteNodeStore(db_path, wal_mode=False)
            await store.initialize()
            await store.insert_one(Node(id="R", fields={"name": "r", "tenant": "a"}))
            await store.insert_one(Node(id="A", parent_id="R", fields={"name": "a", "tenant": "a"}))
            await store.insert_one(Node(id="X", fields={"name": "x", "tenant": "b"}))

        asyncio.run(_seed())

        assert run_cli("--db", db_path, "--grouping-key", "tenant", "--group", "a", "rebuild") == 0
        assert run_cli("--db", db_path, "--grouping-key", "tenant", "--group", "a", "check") == 0
        assert run_cli("--db", db_path, "--grouping-key", "tenant", "--group", "b", "check") == 1
        assert "[unbuilt]" in capsys.readouterr().out

    def test_command_required(self):
        assert run_cli() == 2


class TestTreeCLI:
    """Tests for TreeCLI against the in-memory store."""

    @pytest.mark.asyncio
    async def test_show_uses_label_and_group(self):
        store = InMemoryNodeStore()
        await store.initialize()
        await store.insert_one(Node(id="R", lft=1, rgt=2, fields={"title": "Top", "tenant": "a"}))
        await store.insert_one(Node(id="X", lft=1, rgt=2, fields={"title": "Other", "tenant": "b"}))

        cli = TreeCLI(NestedSetTree(store, TreeSettings(grouping_key="tenant")))

        assert await cli.show("a", label="title") == "Top [1, 2] lvl=0"
        assert await cli.show("b", label="missing") == "X [1, 2] lvl=0"


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self):
        setup_logging(TreeConfig(observability=ObservabilityConfig(log_format="json")))

        [handler] = logging.getLogger().handlers
        assert isinstance(handler.formatter, json_log_formatter.JSONFormatter)

    def test_text_format_and_level(self):
        setup_logging(TreeConfig(observability=ObservabilityConfig(log_level="debug")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
