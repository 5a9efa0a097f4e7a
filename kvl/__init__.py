"""
KVL — embedded durable key/value store with lists, tags and expiry.

Public API:
    from kvl import KVL, Record, Page, NotFoundError
"""

__version__ = "0.1.0"

# Core
from kvl.core.client import KVL
from kvl.core.config import KvlConfig
from kvl.core.types import Page, Record
from kvl.core.errors import (
    KvlError,
    ConfigError,
    StorageIOError,
    LockTimeoutError,
    NotFoundError,
    QueryError,
)

# Stores
from kvl.store.base import RecordStore
from kvl.store.sqlite import SQLiteRecordStore
from kvl.store.memory import InMemoryRecordStore

__all__ = [
    # Core
    "KVL",
    "KvlConfig",
    "Page",
    "Record",
    # Errors
    "KvlError",
    "ConfigError",
    "StorageIOError",
    "LockTimeoutError",
    "NotFoundError",
    "QueryError",
    # Stores
    "RecordStore",
    "SQLiteRecordStore",
    "InMemoryRecordStore",
]
