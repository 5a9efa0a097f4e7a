"""
KVL: the public key/value, list, tag and pagination API.

Everything here is built from single RecordStore statements:

    set    → insert_if_absent + update_value
    push   → set("<name>:<uuid>", value)
    pop    → take_one("<name>:", "DESC")   (newest first, LIFO)
    shift  → take_one("<name>:", "ASC")    (oldest first, FIFO)
    page   → count + scan_prefix with the same tag filter

List membership is purely a key prefix. Callers never build composed
keys themselves; push() hands back the key it generated.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Sequence

from kvl.core.config import KvlConfig
from kvl.core.errors import NotFoundError
from kvl.core.types import Page, Record, now_ms
from kvl.query.page import (
    DEFAULT_ORDER_BY,
    DEFAULT_ORDER_DIR,
    DEFAULT_PAGE_SIZE,
    clamp_page,
    normalize_operator,
    normalize_order,
    page_count,
    page_offset,
)
from kvl.store.base import RecordStore
from kvl.store.sqlite import SQLiteRecordStore
from kvl.sweeper.engine import COMPACT_INTERVAL, SWEEP_INTERVAL, WAL_LIMIT_BYTES, Sweeper

logger = logging.getLogger(__name__)

LIST_SEPARATOR = ":"


def list_prefix(name: str) -> str:
    return f"{name}{LIST_SEPARATOR}"


class KVL:
    """
    Embedded durable key/value store with lists, tags and expiry.

    Usage:
        async with KVL("data.db", expire_time_ms=86_400_000) as kvl:
            await kvl.set("greeting", "hello")
            key = await kvl.push("jobs", "payload")
            job = await kvl.shift("jobs")
            page = await kvl.page("jobs", tags=["urgent"])
    """

    def __init__(
        self,
        path: str | Path | None = None,
        expire_time_ms: int | None = None,
        timeout: float = 5.0,
        sweep_interval: float = SWEEP_INTERVAL,
        compact_interval: float = COMPACT_INTERVAL,
        wal_check: bool = False,
        wal_limit_bytes: int = WAL_LIMIT_BYTES,
        store: RecordStore | None = None,
    ) -> None:
        if store is None:
            if path is None:
                raise ValueError("KVL needs either a path or a store")
            store = SQLiteRecordStore(path, timeout=timeout)
        self._store = store
        self._sweeper = Sweeper(
            store,
            expire_time_ms=expire_time_ms,
            interval=sweep_interval,
            compact_interval=compact_interval,
            wal_limit_bytes=wal_limit_bytes,
            wal_check=wal_check,
        )

    @classmethod
    def from_config(cls, config: KvlConfig) -> KVL:
        return cls(
            config.get_db_path(),
            expire_time_ms=config.store.expire_time_ms,
            timeout=config.store.timeout,
            sweep_interval=config.sweeper.interval,
            compact_interval=config.sweeper.compact_interval,
            wal_check=config.sweeper.wal_check,
            wal_limit_bytes=config.sweeper.wal_limit_mb * 1024 * 1024,
        )

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def sweeper(self) -> Sweeper:
        return self._sweeper

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def initialize(self, sweep: bool = True) -> KVL:
        """Open the store, run one expiry pass and start the background sweeper."""
        await self._store.initialize()
        if sweep:
            await self._sweeper.start()
        logger.debug(f"KVL ready on {type(self._store).__name__} (sweep={sweep})")
        return self

    async def close(self) -> None:
        await self._sweeper.stop()
        await self._store.close()

    async def __aenter__(self) -> KVL:
        return await self.initialize()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Key/Value ────────────────────────────────────────────────────────────

    async def set(self, key: str, value: str) -> KVL:
        """
        Upsert key. Insert-if-absent then an unconditional update, so the
        row always ends up holding `value` with a fresh update_time, and two
        concurrent sets of the same key cannot conflict.
        """
        t = now_ms()
        await self._store.insert_if_absent(key, value, t, t)
        await self._store.update_value(key, value, t)
        return self

    async def get(self, key: str) -> str | None:
        record = await self._store.get(key)
        return record.value if record else None

    async def delete(self, key: str) -> bool:
        return await self._store.delete(key)

    # ── Lists ────────────────────────────────────────────────────────────────

    async def push(self, name: str, value: str) -> str:
        """Append value to list `name`. Returns the generated member key."""
        key = f"{list_prefix(name)}{uuid.uuid4().hex}"
        await self.set(key, value)
        return key

    async def pop(self, name: str) -> str | None:
        """Remove and return the most recently pushed member (stack)."""
        record = await self._store.take_one(list_prefix(name), "DESC")
        return record.value if record else None

    async def shift(self, name: str) -> str | None:
        """Remove and return the oldest member (queue)."""
        record = await self._store.take_one(list_prefix(name), "ASC")
        return record.value if record else None

    async def all(self, name: str) -> list[Record]:
        """Every member of list `name`, most recently created first."""
        return await self._store.scan_prefix(list_prefix(name), "createTime", "DESC")

    # ── Tags ─────────────────────────────────────────────────────────────────

    async def tags(self, key: str, tags: str | None = None) -> str | None:
        """
        Read labels of key, or overwrite them when `tags` is given.

        Raises NotFoundError when key does not exist. Labels are stored
        verbatim.

        Returns:
            On read, the stored labels string, or None if the record exists
            but was never tagged. On write, always None.
        """
        if tags is None:
            return await self._store.get_labels(key)
        changed = await self._store.update_labels(key, tags, now_ms())
        if changed < 1:
            raise NotFoundError(key)
        return None

    async def get_tags(self, key: str) -> str | None:
        return await self.tags(key)

    async def set_tags(self, key: str, tags: str) -> None:
        await self.tags(key, tags)

    # ── Pagination ───────────────────────────────────────────────────────────

    async def page(
        self,
        name: str,
        page_num: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        tags: Sequence[str] | None = None,
        tags_operator: str = "AND",
        order_by: str = DEFAULT_ORDER_BY,
        order_dir: str = DEFAULT_ORDER_DIR,
    ) -> Page:
        """
        One page of list `name`, filtered by label substrings.

        `page_num` is clamped into [1, pages]; an empty result is a single
        empty page. Default order is createTime DESC, matching all().
        """
        column, direction = normalize_order(order_by, order_dir)
        operator = normalize_operator(tags_operator)
        prefix = list_prefix(name)

        total = await self._store.count(prefix, tags, operator)
        pages = page_count(total, page_size)
        page_num = clamp_page(page_num, pages)

        items: list[Record] = []
        if total > 0:
            items = await self._store.scan_prefix(
                prefix,
                column,
                direction,
                limit=page_size,
                offset=page_offset(page_num, page_size),
                tags=tags,
                tags_operator=operator,
            )
        return Page(items=items, total=total, pages=pages, page_num=page_num)

    # ── Maintenance ──────────────────────────────────────────────────────────

    async def expire(self) -> int:
        return await self._sweeper.expire()

    async def wal_clean(self) -> bool:
        return await self._sweeper.wal_clean()
