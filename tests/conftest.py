"""Shared test fixtures for KVL."""

import pytest
import pytest_asyncio

from kvl.core.client import KVL
from kvl.core.config import KvlConfig
from kvl.store.memory import InMemoryRecordStore
from kvl.store.sqlite import SQLiteRecordStore


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return KvlConfig()


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def record_store(request, tmp_path):
    """Each RecordStore implementation, initialized and closed around the test."""
    if request.param == "memory":
        store = InMemoryRecordStore()
    else:
        store = SQLiteRecordStore(tmp_path / "records.db")
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def kvl(tmp_path):
    """A SQLite-backed KVL with expiry disabled."""
    store = KVL(tmp_path / "kvl.db")
    await store.initialize()
    yield store
    await store.close()
