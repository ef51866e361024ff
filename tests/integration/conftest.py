"""
Integration test fixtures.

Every engine test runs once per store backend so filter semantics stay
identical across them.
"""

import os
import tempfile

import pytest

from nestedset.store import InMemoryNodeStore, SqliteNodeStore


@pytest.fixture(params=["memory", "sqlite"])
async def store(request):
    """Initialized store, one per backend."""
    if request.param == "memory":
        store = InMemoryNodeStore()
        await store.initialize()
        yield store
        await store.close()
        return

    with tempfile.TemporaryDirectory() as tmpdir:
        store = SqliteNodeStore(os.path.join(tmpdir, "tree.db"), wal_mode=False)
        await store.initialize()
        yield store
        await store.close()
