"""
SQLite record store.

Uses aiosqlite for async SQLite access.
WAL mode enabled for concurrent read support.

One connection is shared by every coroutine (foreground calls and the
sweeper). sqlite3 opens an implicit transaction before each DML
statement, so each execute + commit unit runs under self._lock; nothing
else can join or observe the open transaction, and a failed unit is
rolled back before the error is raised.

Table: kvl
    id          INTEGER  PK AUTOINCREMENT
    key         TEXT     UNIQUE
    value       TEXT
    labels      TEXT     (nullable)
    createTime  INTEGER  (ms)
    updateTime  INTEGER  (ms)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Sequence

import aiosqlite

from kvl.core.errors import LockTimeoutError, NotFoundError, StorageIOError
from kvl.core.types import Record
from kvl.query.page import build_tag_clause, normalize_order
from kvl.store.base import RecordStore, prefix_bounds

logger = logging.getLogger(__name__)

_COLUMNS = "id, key, value, labels, createTime, updateTime"


class SQLiteRecordStore(RecordStore):
    """
    SQLite-based record storage.

    Usage:
        store = SQLiteRecordStore("~/.kvl/kvl.db", timeout=5.0)
        await store.initialize()

        await store.insert_if_absent("user:1", "Alex", now, now)
        record = await store.get("user:1")
    """

    def __init__(self, db_path: str | Path, timeout: float = 5.0) -> None:
        self._db_path = Path(db_path).expanduser()
        self._timeout = timeout
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def wal_path(self) -> Path:
        return self._db_path.with_name(self._db_path.name + "-wal")

    async def initialize(self) -> None:
        """Initialize the database and create tables."""
        async with self._init_lock:
            if self._db is not None:
                return
            await self._connect()

    async def _connect(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(str(self._db_path), timeout=self._timeout)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")
            await self._db.execute(f"PRAGMA busy_timeout={int(self._timeout * 1000)}")

            # AUTOINCREMENT: ids never get reused after the newest row is popped
            await self._db.execute(
                """
                CREATE TABLE IF NOT EXISTS kvl (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL UNIQUE,
                    value TEXT NOT NULL,
                    labels TEXT,
                    createTime INTEGER NOT NULL,
                    updateTime INTEGER NOT NULL
                )
                """
            )

            # UNIQUE(key) already gives the key index used by prefix scans
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_kvl_updateTime ON kvl(updateTime)"
            )

            await self._db.commit()
            logger.debug(f"SQLite record store initialized at {self._db_path}")

        except aiosqlite.Error as e:
            if self._db is not None:
                await self._db.close()
                self._db = None
            raise StorageIOError(
                f"Failed to initialize SQLite at {self._db_path}: {e}"
            ) from e

    async def _ensure_db(self) -> aiosqlite.Connection:
        """Ensure database is initialized."""
        if self._db is None:
            await self.initialize()
        return self._db  # type: ignore[return-value]

    def _wrap(self, action: str, e: aiosqlite.Error) -> StorageIOError:
        message = f"Failed to {action}: {e}"
        text = str(e).lower()
        if "locked" in text or "busy" in text:
            return LockTimeoutError(message, details={"timeout": self._timeout})
        return StorageIOError(message)

    async def _rollback(self, db: aiosqlite.Connection) -> None:
        """Discard a failed unit so its writes can't ride along with the next commit."""
        try:
            await db.rollback()
        except aiosqlite.Error as e:
            logger.warning(f"Rollback failed on {self._db_path}: {e}")

    async def _write(self, action: str, sql: str, params: Sequence) -> int:
        """Run one DML statement and commit it. Returns rows affected."""
        db = await self._ensure_db()
        async with self._lock:
            try:
                cursor = await db.execute(sql, params)
                await db.commit()
                return cursor.rowcount
            except aiosqlite.Error as e:
                await self._rollback(db)
                raise self._wrap(action, e) from e

    async def _read(self, action: str, sql: str, params: Sequence) -> list[aiosqlite.Row]:
        db = await self._ensure_db()
        async with self._lock:
            try:
                async with db.execute(sql, params) as cursor:
                    return list(await cursor.fetchall())
            except aiosqlite.Error as e:
                raise self._wrap(action, e) from e

    # ── Writes ───────────────────────────────────────────────────────────────

    async def insert_if_absent(
        self, key: str, value: str, create_time: int, update_time: int
    ) -> bool:
        inserted = await self._write(
            f"insert key '{key}'",
            """
            INSERT OR IGNORE INTO kvl (key, value, createTime, updateTime)
            VALUES (?, ?, ?, ?)
            """,
            (key, value, create_time, update_time),
        )
        return inserted > 0

    async def update_value(self, key: str, value: str, update_time: int) -> int:
        return await self._write(
            f"update key '{key}'",
            "UPDATE kvl SET value = ?, updateTime = ? WHERE key = ?",
            (value, update_time, key),
        )

    async def update_labels(self, key: str, labels: str, update_time: int) -> int:
        return await self._write(
            f"update labels of '{key}'",
            "UPDATE kvl SET labels = ?, updateTime = ? WHERE key = ?",
            (labels, update_time, key),
        )

    async def take_one(self, prefix: str, order_dir: str) -> Record | None:
        _, direction = normalize_order(None, order_dir)
        low, high = prefix_bounds(prefix)
        db = await self._ensure_db()
        async with self._lock:
            try:
                # Select and delete in one statement: concurrent callers can
                # never be handed the same row.
                async with db.execute(
                    f"""
                    DELETE FROM kvl WHERE id = (
                        SELECT id FROM kvl WHERE key >= ? AND key < ?
                        ORDER BY id {direction} LIMIT 1
                    )
                    RETURNING {_COLUMNS}
                    """,
                    (low, high),
                ) as cursor:
                    rows = await cursor.fetchall()
                await db.commit()
            except aiosqlite.Error as e:
                await self._rollback(db)
                raise self._wrap(f"take from '{prefix}'", e) from e
        return Record.from_row(rows[0]) if rows else None

    async def delete(self, key: str) -> bool:
        deleted = await self._write(
            f"delete key '{key}'", "DELETE FROM kvl WHERE key = ?", (key,)
        )
        return deleted > 0

    async def delete_expired(self, threshold: int) -> int:
        return await self._write(
            "delete expired records",
            "DELETE FROM kvl WHERE updateTime <= ?",
            (threshold,),
        )

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get(self, key: str) -> Record | None:
        rows = await self._read(
            f"get key '{key}'", f"SELECT {_COLUMNS} FROM kvl WHERE key = ?", (key,)
        )
        return Record.from_row(rows[0]) if rows else None

    async def get_labels(self, key: str) -> str | None:
        rows = await self._read(
            f"get labels of '{key}'", "SELECT labels FROM kvl WHERE key = ?", (key,)
        )
        if not rows:
            raise NotFoundError(key)
        return rows[0]["labels"]

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
        low, high = prefix_bounds(prefix)
        tag_clause, tag_params = build_tag_clause(tags, tags_operator)

        sql = (
            f"SELECT {_COLUMNS} FROM kvl WHERE key >= ? AND key < ? AND {tag_clause} "
            f"ORDER BY {column} {direction}, id {direction}"
        )
        params: list = [low, high, *tag_params]
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params += [limit, offset]
        elif offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(offset)

        rows = await self._read(f"scan prefix '{prefix}'", sql, params)
        return [Record.from_row(r) for r in rows]

    async def count(
        self,
        prefix: str,
        tags: Sequence[str] | None = None,
        tags_operator: str = "AND",
    ) -> int:
        low, high = prefix_bounds(prefix)
        tag_clause, tag_params = build_tag_clause(tags, tags_operator)
        rows = await self._read(
            f"count prefix '{prefix}'",
            f"SELECT COUNT(1) AS total FROM kvl WHERE key >= ? AND key < ? AND {tag_clause}",
            [low, high, *tag_params],
        )
        return rows[0]["total"] if rows else 0

    # ── Maintenance ──────────────────────────────────────────────────────────

    async def compact(self) -> None:
        db = await self._ensure_db()
        async with self._lock:
            try:
                await db.execute("VACUUM")
            except aiosqlite.Error as e:
                raise self._wrap("vacuum database", e) from e
        logger.debug(f"Vacuumed {self._db_path}")

    async def wal_size(self) -> int | None:
        try:
            return self.wal_path.stat().st_size
        except OSError:
            return None

    async def wal_checkpoint(self) -> None:
        await self._read("checkpoint WAL", "PRAGMA wal_checkpoint(RESTART)", ())
        logger.debug(f"WAL checkpoint (RESTART) on {self._db_path}")

    async def close(self) -> None:
        if self._db:
            async with self._lock:
                await self._db.close()
                self._db = None
