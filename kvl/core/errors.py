"""
KVL exception hierarchy.

Every error raised by the package inherits from KvlError.
Each layer has its own error class for targeted catching.

Usage:
    try:
        labels = await kvl.tags("user:42")
    except NotFoundError as e:
        # The key was never written (or has expired)
    except StorageIOError as e:
        # The database file could not be read or written
    except KvlError as e:
        # Anything else raised by kvl
"""


class KvlError(Exception):
    """Base exception for all KVL errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Configuration ━━━


class ConfigError(KvlError):
    """Configuration is invalid, missing, or malformed."""

    pass


# ━━━ Storage ━━━


class StorageIOError(KvlError):
    """Storage engine failure: I/O errors, corruption, constraint violations."""

    pass


class LockTimeoutError(StorageIOError):
    """The database stayed locked by another writer past the busy timeout."""

    pass


# ━━━ Query ━━━


class NotFoundError(KvlError):
    """A keyed mutation or label read targeted a key that does not exist."""

    def __init__(self, key: str, details: dict | None = None):
        self.key = key
        super().__init__(f"Item does not exist: '{key}'", details)


class QueryError(KvlError):
    """Invalid pagination, ordering, or filter arguments."""

    pass
