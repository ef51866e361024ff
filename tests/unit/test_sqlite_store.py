"""
Unit tests for the SQLite node store.

Tests cover:
- Schema creation and lifecycle
- Filter compilation (operators, nulls, payload fields, envelope)
- Increments and exact updates
- Error mapping
"""

import os
import sqlite3
import tempfile

import pytest

from nestedset.errors import (
    InvalidFilterError,
    InvalidUpdateError,
    StoreError,
    StoreNotInitializedError,
)
from nestedset.node import Node
from nestedset.store import NodeStore, SqliteNodeStore


class TestSqliteNodeStore:
    """Tests for SqliteNodeStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    async def store(self, data_dir):
        store = SqliteNodeStore(
            os.path.join(data_dir, "tree.db"),
            collection="categories",
            wal_mode=False,
            indexed_fields=("tenant",),
        )
        await store.initialize()
        yield store
        await store.close()

    @pytest.fixture
    async def seeded(self, store):
        """R(1,8) with A(2,3), B(4,7) and C(5,6) under B, plus an unbuilt U."""
        for node in (
            Node(id="R", lft=1, rgt=8, lvl=0, fields={"name": "root", "rank": 1}),
            Node(id="A", parent_id="R", lft=2, rgt=3, lvl=1, fields={"name": "a", "rank": 2}),
            Node(id="B", parent_id="R", lft=4, rgt=7, lvl=1, fields={"name": "b"}),
            Node(id="C", parent_id="B", lft=5, rgt=6, lvl=2, fields={"name": "c", "rank": 3}),
            Node(id="U", parent_id="R", fields={"name": "u", "flag": True}),
        ):
            await store.insert_one(node)
        return store

    def test_satisfies_protocol(self, data_dir):
        assert isinstance(SqliteNodeStore(os.path.join(data_dir, "x.db")), NodeStore)

    def test_rejects_memory_database(self):
        with pytest.raises(ValueError):
            SqliteNodeStore(":memory:")

    def test_rejects_bad_identifiers(self, data_dir):
        with pytest.raises(ValueError):
            SqliteNodeStore(os.path.join(data_dir, "x.db"), collection="bad name")
        with pytest.raises(ValueError):
            SqliteNodeStore(os.path.join(data_dir, "x.db"), indexed_fields=("a.b",))

    @pytest.mark.asyncio
    async def test_requires_initialize(self, data_dir):
        store = SqliteNodeStore(os.path.join(data_dir, "missing.db"))
        with pytest.raises(StoreNotInitializedError) as exc_info:
            await store.find({})
        assert exc_info.value.operation == "find"
        assert exc_info.value.code == "STORE_ERROR"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, store):
        await store.insert_one(Node(id="a"))
        await store.initialize()
        assert await store.count({}) == 1

    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        inserted = await store.insert_one(
            Node(parent_id="p", lft=2, rgt=3, lvl=1, fields={"name": "x", "tags": ["a"]})
        )

        fetched = await store.find_one({"id": inserted.id})

        assert fetched.parent_id == "p"
        assert fetched.boundary == inserted.boundary
        assert fetched.fields == {"name": "x", "tags": ["a"]}
        assert fetched.created_at == inserted.created_at

    @pytest.mark.asyncio
    async def test_duplicate_id(self, store):
        await store.insert_one(Node(id="a"))
        with pytest.raises(StoreError) as exc_info:
            await store.insert_one(Node(id="a"))
        assert exc_info.value.operation == "insert_one"

    @pytest.mark.asyncio
    async def test_interval_filters(self, seeded):
        ancestors = await seeded.find({"lft": {"$lt": 5}, "rgt": {"$gt": 6}}, sort=[("lft", 1)])
        assert [n.id for n in ancestors] == ["R", "B"]

        subtree = await seeded.find({"lft": {"$gte": 4}, "rgt": {"$lte": 7}})
        assert {n.id for n in subtree} == {"B", "C"}

    @pytest.mark.asyncio
    async def test_null_semantics(self, seeded):
        """Equality with None is IS NULL; comparisons never match NULL."""
        roots = await seeded.find({"parent_id": None})
        assert [n.id for n in roots] == ["R"]

        unbuilt = await seeded.find({"rgt": None})
        assert [n.id for n in unbuilt] == ["U"]

        built = await seeded.find({"rgt": {"$ne": None}})
        assert len(built) == 4

        assert await seeded.count({"lft": {"$gte": 0}}) == 4

    @pytest.mark.asyncio
    async def test_payload_filters(self, seeded):
        assert [n.id for n in await seeded.find({"name": "b"})] == ["B"]
        assert [n.id for n in await seeded.find({"flag": True})] == ["U"]
        assert {n.id for n in await seeded.find({"rank": {"$gte": 2}})} == {"A", "C"}
        assert {n.id for n in await seeded.find({"rank": {"$exists": False}})} == {"B", "U"}

    @pytest.mark.asyncio
    async def test_in_nin_with_null(self, seeded):
        found = await seeded.find({"parent_id": {"$in": [None, "B"]}})
        assert {n.id for n in found} == {"R", "C"}

        found = await seeded.find({"parent_id": {"$nin": ["R"]}})
        assert {n.id for n in found} == {"R", "C"}

        found = await seeded.find({"parent_id": {"$nin": [None, "R"]}})
        assert [n.id for n in found] == ["C"]

    @pytest.mark.asyncio
    async def test_or_and_siblings(self, seeded):
        found = await seeded.find({"$or": [{"parent_id": "B"}, {"id": "B"}]})
        assert {n.id for n in found} == {"B", "C"}

        siblings = await seeded.find({"parent_id": "R", "id": {"$ne": "A"}})
        assert {n.id for n in siblings} == {"B", "U"}

        assert await seeded.find({"$or": []}) == []

    @pytest.mark.asyncio
    async def test_envelope(self, seeded):
        found = await seeded.find({"$query": {"parent_id": "R"}, "$orderby": {"lft": -1}})
        # NULL sorts last when descending
        assert [n.id for n in found] == ["B", "A", "U"]

    @pytest.mark.asyncio
    async def test_paging_and_projection(self, seeded):
        found = await seeded.find({}, fields=["name"], sort=[("lft", 1)], limit=2, skip=1)

        assert [n.id for n in found] == ["R", "A"]
        assert found[0].fields == {"name": "root"}

    @pytest.mark.asyncio
    async def test_unknown_operator(self, seeded):
        with pytest.raises(InvalidFilterError):
            await seeded.find({"lft": {"$regex": "1"}})

    @pytest.mark.asyncio
    async def test_invalid_field_name(self, seeded):
        with pytest.raises(InvalidFilterError):
            await seeded.find({"name') OR 1=1 --": "x"})

    @pytest.mark.asyncio
    async def test_update_many(self, seeded):
        count = await seeded.update_many({"rgt": {"$gt": 5}}, {"rgt": 2})

        assert count == 3
        assert (await seeded.find_one({"id": "R"})).rgt == 10
        assert (await seeded.find_one({"id": "A"})).rgt == 3
        assert (await seeded.find_one({"id": "U"})).rgt is None

    @pytest.mark.asyncio
    async def test_update_many_restricted(self, seeded):
        with pytest.raises(InvalidUpdateError):
            await seeded.update_many({}, {"parent_id": 1})

    @pytest.mark.asyncio
    async def test_update_one_merges_payload(self, seeded):
        updated = await seeded.update_one({"id": "U"}, {"lft": 9, "rgt": 10, "name": "renamed"})

        assert updated.boundary.lft == 9
        fetched = await seeded.find_one({"id": "U"})
        assert fetched.rgt == 10
        assert fetched.fields == {"name": "renamed", "flag": True}

    @pytest.mark.asyncio
    async def test_update_one_missing(self, seeded):
        assert await seeded.update_one({"id": "nope"}, {"lft": 1}) is None

    @pytest.mark.asyncio
    async def test_update_one_rejects_id(self, seeded):
        with pytest.raises(InvalidUpdateError):
            await seeded.update_one({"id": "A"}, {"id": "Z"})

    @pytest.mark.asyncio
    async def test_delete_many(self, seeded):
        deleted = await seeded.delete_many({"lft": {"$gte": 4}, "rgt": {"$lte": 7}})

        assert deleted == 2
        assert await seeded.count({}) == 3

    @pytest.mark.asyncio
    async def test_data_survives_new_instance(self, seeded):
        reopened = SqliteNodeStore(str(seeded.db_path), collection="categories")
        assert await reopened.count({}) == 5

    @pytest.mark.asyncio
    async def test_find_one_honours_envelope_orderby(self, seeded):
        deepest = await seeded.find_one({"$query": {"rgt": {"$ne": None}}, "$orderby": {"lvl": -1}})
        assert deepest.id == "C"

    @pytest.mark.asyncio
    async def test_indexed_fields_create_expression_index(self, store):
        conn = sqlite3.connect(str(store.db_path))
        try:
            names = {
                row[0]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = ?",
                    (store.collection,),
                )
            }
        finally:
            conn.close()

        assert "idx_categories_f_tenant" in names
        assert "idx_categories_lft_rgt" in names
