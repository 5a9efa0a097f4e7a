"""
Record Store interface.

The narrow contract the KVL facade and the sweeper need from a durable
engine. Every method is individually atomic; nothing here spans more
than one statement.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from kvl.core.types import Record


class RecordStore(ABC):
    """
    Abstract base class for record storage backends.

    Keys are unique strings. List members share a "<name>:" prefix; the
    store only knows about prefixes, never about lists.

    Implementations:
        SQLiteRecordStore — file-based, default
        InMemoryRecordStore — for testing
    """

    async def initialize(self) -> None:
        """Open the backend and create the schema. Safe to call twice."""
        return None

    @abstractmethod
    async def insert_if_absent(
        self, key: str, value: str, create_time: int, update_time: int
    ) -> bool:
        """Insert a new record. Returns False (and changes nothing) if the key exists."""
        ...

    @abstractmethod
    async def update_value(self, key: str, value: str, update_time: int) -> int:
        """Set value and update_time for key. Returns rows affected."""
        ...

    @abstractmethod
    async def update_labels(self, key: str, labels: str, update_time: int) -> int:
        """Set labels and update_time for key. Returns rows affected."""
        ...

    @abstractmethod
    async def get(self, key: str) -> Record | None:
        """Get a record by key. Returns None if not found."""
        ...

    @abstractmethod
    async def get_labels(self, key: str) -> str | None:
        """Get the labels of key. Raises NotFoundError if the key does not exist."""
        ...

    @abstractmethod
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
        """Records whose key starts with prefix, filtered by tags and ordered."""
        ...

    @abstractmethod
    async def take_one(self, prefix: str, order_dir: str) -> Record | None:
        """
        Atomically remove and return the record under prefix with the
        smallest ("ASC") or largest ("DESC") id. None if there is none.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if existed."""
        ...

    @abstractmethod
    async def delete_expired(self, threshold: int) -> int:
        """Delete every record with update_time <= threshold. Returns rows deleted."""
        ...

    @abstractmethod
    async def count(
        self,
        prefix: str,
        tags: Sequence[str] | None = None,
        tags_operator: str = "AND",
    ) -> int:
        """Number of records under prefix matching the tag filter."""
        ...

    async def compact(self) -> None:
        """Reclaim unused space in the backing file."""
        return None

    async def wal_size(self) -> int | None:
        """Size in bytes of the write-ahead log, or None if unavailable."""
        return None

    async def wal_checkpoint(self) -> None:
        """Checkpoint the write-ahead log and restart it."""
        return None

    @abstractmethod
    async def close(self) -> None:
        """Close the storage backend."""
        ...


def prefix_bounds(prefix: str) -> tuple[str, str]:
    """
    Half-open key range [low, high) covering every key that starts with prefix.

    "q:" -> ("q:", "q;"). Incrementing the last character gives the
    smallest string greater than every string with that prefix.
    """
    if not prefix:
        raise ValueError("prefix must not be empty")
    return prefix, prefix[:-1] + chr(ord(prefix[-1]) + 1)
