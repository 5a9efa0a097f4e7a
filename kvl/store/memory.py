"""
In-memory record store — for testing.

Dict-based storage. Data lost when process exits. No method awaits
anything, so each one runs to completion on the event loop and is
atomic with respect to other coroutines.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from kvl.core.errors import NotFoundError
from kvl.core.types import Record
from kvl.query.page import match_tags, normalize_order
from kvl.store.base import RecordStore


class InMemoryRecordStore(RecordStore):
    """
    In-memory record store for testing.

    Usage:
        store = InMemoryRecordStore()
        await store.insert_if_absent("key", "value", now, now)
        assert (await store.get("key")).value == "value"
    """

    def __init__(self) -> None:
        self._data: dict[str, Record] = {}
        self._next_id = 1

    async def insert_if_absent(
        self, key: str, value: str, create_time: int, update_time: int
    ) -> bool:
        if key in self._data:
            return False
        self._data[key] = Record(
            id=self._next_id,
            key=key,
            value=value,
            create_time=create_time,
            update_time=update_time,
        )
        self._next_id += 1
        return True

    async def update_value(self, key: str, value: str, update_time: int) -> int:
        record = self._data.get(key)
        if record is None:
            return 0
        record.value = value
        record.update_time = update_time
        return 1

    async def update_labels(self, key: str, labels: str, update_time: int) -> int:
        record = self._data.get(key)
        if record is None:
            return 0
        record.labels = labels
        record.update_time = update_time
        return 1

    async def get(self, key: str) -> Record | None:
        record = self._data.get(key)
        return replace(record) if record else None

    async def get_labels(self, key: str) -> str | None:
        record = self._data.get(key)
        if record is None:
            raise NotFoundError(key)
        return record.labels

    def _members(
        self,
        prefix: str,
        tags: Sequence[str] | None = None,
        tags_operator: str = "AND",
    ) -> list[Record]:
        return [
            r
            for k, r in self._data.items()
            if k.startswith(prefix) and match_tags(r.labels, tags, tags_operator)
        ]

    async def scan_prefix(
        self,
        prefix: str,
        order_by: str = "createTime",
        order_dir: str = "DESC",
        limit: int | None = None,
        offset: int = 0,
        tags: Sequence[str] | None = None,
        tags_operator: str = "AND",
    ) -> list[Record]:
        column, direction = normalize_order(order_by, order_dir)
        attr = "create_time" if column == "createTime" else "update_time"
        members = sorted(
            self._members(prefix, tags, tags_operator),
            key=lambda r: (getattr(r, attr), r.id),
            reverse=direction == "DESC",
        )
        end = None if limit is None else offset + limit
        return [replace(r) for r in members[offset:end]]

    async def take_one(self, prefix: str, order_dir: str) -> Record | None:
        _, direction = normalize_order(None, order_dir)
        members = self._members(prefix)
        if not members:
            return None
        pick = max if direction == "DESC" else min
        record = pick(members, key=lambda r: r.id)
        del self._data[record.key]
        return record

    async def delete(self, key: str) -> bool:
        if key in self._data:
            del self._data[key]
            return True
        return False

    async def delete_expired(self, threshold: int) -> int:
        expired = [k for k, r in self._data.items() if r.update_time <= threshold]
        for key in expired:
            del self._data[key]
        return len(expired)

    async def count(
        self,
        prefix: str,
        tags: Sequence[str] | None = None,
        tags_operator: str = "AND",
    ) -> int:
        return len(self._members(prefix, tags, tags_operator))

    async def close(self) -> None:
        self._data.clear()
