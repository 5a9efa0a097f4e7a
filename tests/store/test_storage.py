"""Tests for record store backends."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from kvl.core.errors import LockTimeoutError, NotFoundError, QueryError, StorageIOError
from kvl.store.base import prefix_bounds
from kvl.store.memory import InMemoryRecordStore
from kvl.store.sqlite import SQLiteRecordStore


async def _insert(store, key, value="v", t=1000, labels=None):
    await store.insert_if_absent(key, value, t, t)
    if labels is not None:
        await store.update_labels(key, labels, t)


# ━━━ Contract tests (both backends) ━━━


@pytest.mark.asyncio
async def test_insert_and_get(record_store):
    inserted = await record_store.insert_if_absent("k", "v", 100, 200)
    assert inserted is True

    record = await record_store.get("k")
    assert record is not None
    assert record.key == "k"
    assert record.value == "v"
    assert record.labels is None
    assert record.create_time == 100
    assert record.update_time == 200


@pytest.mark.asyncio
async def test_insert_existing_is_noop(record_store):
    await record_store.insert_if_absent("k", "first", 100, 100)
    inserted = await record_store.insert_if_absent("k", "second", 500, 500)
    assert inserted is False

    record = await record_store.get("k")
    assert record.value == "first"
    assert record.create_time == 100


@pytest.mark.asyncio
async def test_get_missing(record_store):
    assert await record_store.get("nope") is None


@pytest.mark.asyncio
async def test_update_value(record_store):
    await record_store.insert_if_absent("k", "old", 100, 100)
    assert await record_store.update_value("k", "new", 300) == 1

    record = await record_store.get("k")
    assert record.value == "new"
    assert record.create_time == 100
    assert record.update_time == 300


@pytest.mark.asyncio
async def test_update_missing_affects_nothing(record_store):
    assert await record_store.update_value("ghost", "v", 1) == 0
    assert await record_store.update_labels("ghost", "x", 1) == 0


@pytest.mark.asyncio
async def test_labels(record_store):
    await record_store.insert_if_absent("k", "v", 100, 100)
    assert await record_store.get_labels("k") is None

    assert await record_store.update_labels("k", "red,blue", 400) == 1
    assert await record_store.get_labels("k") == "red,blue"
    assert (await record_store.get("k")).update_time == 400


@pytest.mark.asyncio
async def test_get_labels_missing_raises(record_store):
    with pytest.raises(NotFoundError) as exc_info:
        await record_store.get_labels("ghost")
    assert exc_info.value.key == "ghost"


@pytest.mark.asyncio
async def test_ids_increase(record_store):
    for key in ("a", "b", "c"):
        await _insert(record_store, key)
    ids = [(await record_store.get(k)).id for k in ("a", "b", "c")]
    assert ids == sorted(ids)
    assert len(set(ids)) == 3


@pytest.mark.asyncio
async def test_take_one_by_id(record_store):
    for i in range(3):
        await _insert(record_store, f"q:{i}", value=str(i))

    newest = await record_store.take_one("q:", "DESC")
    oldest = await record_store.take_one("q:", "ASC")
    assert newest.value == "2"
    assert oldest.value == "0"
    assert await record_store.count("q:") == 1


@pytest.mark.asyncio
async def test_take_one_empty(record_store):
    assert await record_store.take_one("q:", "ASC") is None
    assert await record_store.take_one("q:", "DESC") is None


@pytest.mark.asyncio
async def test_take_one_ignores_ids_after_delete(record_store):
    """Ids are never reused, so a re-push after popping stays newest."""
    await _insert(record_store, "q:a", value="a")
    await _insert(record_store, "q:b", value="b")
    await record_store.take_one("q:", "DESC")
    await _insert(record_store, "q:c", value="c")

    assert (await record_store.take_one("q:", "DESC")).value == "c"
    assert (await record_store.take_one("q:", "DESC")).value == "a"


@pytest.mark.asyncio
async def test_scan_prefix_isolated(record_store):
    await _insert(record_store, "a:1")
    await _insert(record_store, "ab:1")
    await _insert(record_store, "a")
    await _insert(record_store, "b:1")

    keys = [r.key for r in await record_store.scan_prefix("a:")]
    assert keys == ["a:1"]


@pytest.mark.asyncio
async def test_scan_prefix_wildcards_are_literal(record_store):
    await _insert(record_store, "a_b:1")
    await _insert(record_store, "axb:1")
    await _insert(record_store, "100%:1")
    await _insert(record_store, "1000:1")

    assert [r.key for r in await record_store.scan_prefix("a_b:")] == ["a_b:1"]
    assert [r.key for r in await record_store.scan_prefix("100%:")] == ["100%:1"]


@pytest.mark.asyncio
async def test_scan_prefix_is_case_sensitive(record_store):
    await _insert(record_store, "Q:1")
    await _insert(record_store, "q:1")
    assert [r.key for r in await record_store.scan_prefix("q:")] == ["q:1"]


@pytest.mark.asyncio
async def test_scan_prefix_ordering(record_store):
    await record_store.insert_if_absent("l:a", "a", 300, 300)
    await record_store.insert_if_absent("l:b", "b", 100, 900)
    await record_store.insert_if_absent("l:c", "c", 200, 200)

    by_create = await record_store.scan_prefix("l:", "createTime", "ASC")
    assert [r.value for r in by_create] == ["b", "c", "a"]

    by_update = await record_store.scan_prefix("l:", "updateTime", "DESC")
    assert [r.value for r in by_update] == ["b", "a", "c"]


@pytest.mark.asyncio
async def test_scan_prefix_ties_break_on_id(record_store):
    for v in ("x", "y", "z"):
        await record_store.insert_if_absent(f"l:{v}", v, 500, 500)

    desc = await record_store.scan_prefix("l:", "createTime", "DESC")
    asc = await record_store.scan_prefix("l:", "createTime", "ASC")
    assert [r.value for r in desc] == ["z", "y", "x"]
    assert [r.value for r in asc] == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_scan_prefix_limit_offset(record_store):
    for i in range(5):
        await record_store.insert_if_absent(f"l:{i}", str(i), i, i)

    window = await record_store.scan_prefix("l:", "createTime", "ASC", limit=2, offset=2)
    assert [r.value for r in window] == ["2", "3"]

    tail = await record_store.scan_prefix("l:", "createTime", "ASC", offset=3)
    assert [r.value for r in tail] == ["3", "4"]


@pytest.mark.asyncio
async def test_scan_prefix_rejects_bad_order(record_store):
    with pytest.raises(QueryError):
        await record_store.scan_prefix("l:", "id; DROP TABLE kvl", "ASC")
    with pytest.raises(QueryError):
        await record_store.scan_prefix("l:", "createTime", "sideways")


@pytest.mark.asyncio
async def test_tag_filters(record_store):
    await _insert(record_store, "l:1", labels="red,big")
    await _insert(record_store, "l:2", labels="red")
    await _insert(record_store, "l:3", labels="blue,big")
    await _insert(record_store, "l:4")

    assert await record_store.count("l:") == 4
    assert await record_store.count("l:", ["red"]) == 2
    assert await record_store.count("l:", ["red", "big"], "AND") == 1
    assert await record_store.count("l:", ["red", "big"], "OR") == 3
    assert await record_store.count("l:", ["green"]) == 0

    both = await record_store.scan_prefix("l:", tags=["red", "big"], tags_operator="AND")
    assert [r.key for r in both] == ["l:1"]


@pytest.mark.asyncio
async def test_tag_match_is_substring_not_pattern(record_store):
    await _insert(record_store, "l:1", labels="50%off")
    await _insert(record_store, "l:2", labels="50 off")
    assert await record_store.count("l:", ["50%"]) == 1
    assert await record_store.count("l:", ["Off"]) == 0


@pytest.mark.asyncio
async def test_delete(record_store):
    await _insert(record_store, "k")
    assert await record_store.delete("k") is True
    assert await record_store.delete("k") is False
    assert await record_store.get("k") is None


@pytest.mark.asyncio
async def test_delete_expired(record_store):
    await record_store.insert_if_absent("old", "v", 100, 100)
    await record_store.insert_if_absent("edge", "v", 100, 500)
    await record_store.insert_if_absent("new", "v", 100, 900)

    assert await record_store.delete_expired(500) == 2
    assert await record_store.get("old") is None
    assert await record_store.get("edge") is None
    assert await record_store.get("new") is not None


# ━━━ Helpers ━━━


def test_prefix_bounds():
    assert prefix_bounds("q:") == ("q:", "q;")
    with pytest.raises(ValueError):
        prefix_bounds("")


# ━━━ In-Memory Store ━━━


@pytest.mark.asyncio
async def test_memory_maintenance_is_noop():
    store = InMemoryRecordStore()
    await store.compact()
    await store.wal_checkpoint()
    assert await store.wal_size() is None
    await store.close()


@pytest.mark.asyncio
async def test_memory_returns_copies():
    store = InMemoryRecordStore()
    await store.insert_if_absent("k", "v", 1, 1)
    record = await store.get("k")
    record.value = "mutated"
    assert (await store.get("k")).value == "v"
    await store.close()


# ━━━ SQLite Store ━━━


@pytest.mark.asyncio
async def test_sqlite_creates_directory(tmp_path: Path):
    """SQLite store creates parent directories."""
    db_path = tmp_path / "deep" / "nested" / "dir" / "test.db"
    store = SQLiteRecordStore(db_path)
    await store.initialize()
    await store.insert_if_absent("k", "v", 1, 1)
    assert db_path.exists()
    await store.close()


@pytest.mark.asyncio
async def test_sqlite_persistence(tmp_path: Path):
    """Data persists across connections."""
    db_path = tmp_path / "persist.db"

    store1 = SQLiteRecordStore(db_path)
    await store1.initialize()
    await store1.insert_if_absent("k", "persisted", 1, 1)
    await store1.update_labels("k", "tag", 2)
    await store1.close()

    store2 = SQLiteRecordStore(db_path)
    await store2.initialize()
    record = await store2.get("k")
    assert record.value == "persisted"
    assert record.labels == "tag"
    await store2.close()


@pytest.mark.asyncio
async def test_sqlite_lazy_initialize(tmp_path: Path):
    store = SQLiteRecordStore(tmp_path / "lazy.db")
    assert await store.get("k") is None
    await store.close()


@pytest.mark.asyncio
async def test_sqlite_wal_and_compact(tmp_path: Path):
    store = SQLiteRecordStore(tmp_path / "wal.db")
    assert await store.wal_size() is None  # nothing opened yet

    await store.initialize()
    await store.insert_if_absent("k", "v" * 1000, 1, 1)
    size = await store.wal_size()
    assert size is not None and size > 0

    await store.wal_checkpoint()
    await store.delete("k")
    await store.compact()
    assert await store.get("k") is None
    await store.close()


@pytest.mark.asyncio
async def test_sqlite_bad_path_raises_storage_error(tmp_path: Path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    store = SQLiteRecordStore(blocker / "sub" / "x.db")
    with pytest.raises((StorageIOError, OSError)):
        await store.initialize()


@pytest.mark.asyncio
async def test_sqlite_concurrent_takes_across_connections(tmp_path: Path):
    """Two connections draining one list never receive the same record."""
    db_path = tmp_path / "shared.db"
    a = SQLiteRecordStore(db_path)
    b = SQLiteRecordStore(db_path)
    await a.initialize()
    await b.initialize()

    for i in range(20):
        await a.insert_if_absent(f"q:{i:02d}", str(i), i, i)

    async def drain(store, direction):
        taken = []
        while True:
            record = await store.take_one("q:", direction)
            if record is None:
                return taken
            taken.append(record.value)

    got_a, got_b = await asyncio.gather(drain(a, "ASC"), drain(b, "DESC"))
    assert sorted(got_a + got_b, key=int) == [str(i) for i in range(20)]
    assert len(set(got_a) & set(got_b)) == 0

    await a.close()
    await b.close()


@pytest.mark.asyncio
async def test_sqlite_writes_and_compact_share_one_connection(tmp_path: Path):
    """A VACUUM issued while other coroutines write on the same connection succeeds."""
    store = SQLiteRecordStore(tmp_path / "shared-conn.db")
    await store.initialize()

    results = await asyncio.gather(
        store.insert_if_absent("k", "v", 1, 1),
        store.compact(),
        store.update_value("k", "v2", 2),
        store.insert_if_absent("q:1", "a", 3, 3),
        store.compact(),
        store.take_one("q:", "ASC"),
    )

    assert results[0] is True
    assert results[2] == 1
    assert results[5].value == "a"
    assert (await store.get("k")).value == "v2"
    await store.close()


@pytest.mark.asyncio
async def test_sqlite_failed_commit_rolls_back(tmp_path: Path):
    """A write whose commit fails never lands through a later commit."""
    db_path = tmp_path / "rollback.db"
    store = SQLiteRecordStore(db_path)
    await store.initialize()
    await store.insert_if_absent("other", "v", 1, 1)

    store._db.commit = AsyncMock(
        side_effect=aiosqlite.OperationalError("database is locked")
    )
    with pytest.raises(LockTimeoutError):
        await store.insert_if_absent("k", "v", 1, 1)
    with pytest.raises(LockTimeoutError):
        await store.update_value("other", "changed", 2)
    del store._db.commit

    # Later writes commit normally and carry nothing from the failed ones
    assert await store.delete("gone") is False
    await store.insert_if_absent("later", "v", 3, 3)
    await store.close()

    reopened = SQLiteRecordStore(db_path)
    assert await reopened.get("k") is None
    assert (await reopened.get("other")).value == "v"
    assert await reopened.get("later") is not None
    await reopened.close()
