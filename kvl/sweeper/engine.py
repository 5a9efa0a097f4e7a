"""
Sweeper — the background asyncio task that expires stale records.

Design:
- Runs expire() once on start, then ticks every `interval` seconds
- A tick deletes every record whose update_time is older than
  now - expire_time_ms; with no expire_time_ms a tick does nothing
- Deleting rows only *requests* a VACUUM. VACUUM locks the whole file,
  so at most one runs per `compact_interval`; a request made inside the
  window is carried over and served by the first tick after it
- With wal_check enabled each tick also restarts an oversized WAL
- The task belongs to the store: KVL.initialize() starts it and
  KVL.close() cancels it. A pending asyncio task never keeps the
  interpreter alive.
"""

from __future__ import annotations

import asyncio
import logging
import time

from kvl.core.types import now_ms
from kvl.store.base import RecordStore

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 1.0          # seconds between ticks
COMPACT_INTERVAL = 60.0       # minimum seconds between VACUUMs
WAL_LIMIT_BYTES = 32 * 1024 * 1024


class Sweeper:
    """
    Expiry and compaction for one record store.

    Usage:
        sweeper = Sweeper(store, expire_time_ms=60_000)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        store: RecordStore,
        expire_time_ms: int | None = None,
        interval: float = SWEEP_INTERVAL,
        compact_interval: float = COMPACT_INTERVAL,
        wal_limit_bytes: int = WAL_LIMIT_BYTES,
        wal_check: bool = False,
    ) -> None:
        self._store = store
        self._expire_time_ms = expire_time_ms
        self._interval = interval
        self._compact_interval = compact_interval
        self._wal_limit_bytes = wal_limit_bytes
        self._wal_check = wal_check
        self._task: asyncio.Task | None = None
        self._running = False
        self._compact_pending = False
        self._last_compact: float | None = None  # time.monotonic() of last VACUUM

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def compact_pending(self) -> bool:
        return self._compact_pending

    async def start(self) -> None:
        """Run one sweep immediately, then start the background loop."""
        if self.running:
            return
        await self.expire()
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="kvl-sweeper")
        logger.debug(f"Sweeper started (expire_time_ms={self._expire_time_ms})")

    async def stop(self) -> None:
        """Cancel the background loop."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.debug("Sweeper stopped")

    # ── Internal loop ─────────────────────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            try:
                await self.tick()
            except Exception as e:
                logger.warning(f"Sweeper tick error (non-fatal): {e}")

    async def tick(self) -> None:
        """One scheduled pass: expire, serve a deferred VACUUM, check the WAL."""
        await self.expire()
        await self._maybe_compact()
        if self._wal_check:
            await self.wal_clean()

    # ── Operations ────────────────────────────────────────────────────────────

    async def expire(self) -> int:
        """Delete records not updated within expire_time_ms. Returns rows deleted."""
        if not self._expire_time_ms:
            return 0
        threshold = now_ms() - self._expire_time_ms
        deleted = await self._store.delete_expired(threshold)
        if deleted > 0:
            logger.debug(f"Expired {deleted} record(s) with updateTime <= {threshold}")
            self._compact_pending = True
            await self._maybe_compact()
        return deleted

    async def _maybe_compact(self) -> bool:
        if not self._compact_pending:
            return False
        now = time.monotonic()
        if (
            self._last_compact is not None
            and now - self._last_compact < self._compact_interval
        ):
            return False
        # A failed VACUUM leaves the request pending and opens no window
        await self._store.compact()
        self._compact_pending = False
        self._last_compact = time.monotonic()
        return True

    async def wal_clean(self) -> bool:
        """Restart the WAL if it grew past the limit. Returns True if it did."""
        size = await self._store.wal_size()
        if size is None or size <= self._wal_limit_bytes:
            return False
        logger.debug(f"WAL is {size} bytes (limit {self._wal_limit_bytes}), checkpointing")
        await self._store.wal_checkpoint()
        return True
