"""
Core data types shared by the store, the query helpers and the facade.

Record is the single persisted unit. Page is the result of a filtered,
paginated view over one list.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass
class Record:
    """A stored key/value pair with its labels and timestamps."""

    id: int              # store-assigned, strictly increasing
    key: str
    value: str
    labels: str | None = None
    create_time: int = 0  # ms since epoch, never changes
    update_time: int = 0  # ms since epoch, refreshed on every mutation

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "labels": self.labels,
            "create_time": self.create_time,
            "update_time": self.update_time,
        }

    @classmethod
    def from_row(cls, row) -> "Record":
        """Build a Record from a sqlite3.Row (or any mapping with the table columns)."""
        return cls(
            id=row["id"],
            key=row["key"],
            value=row["value"],
            labels=row["labels"],
            create_time=row["createTime"],
            update_time=row["updateTime"],
        )


@dataclass
class Page:
    """One page of a filtered list view."""

    items: list[Record] = field(default_factory=list)
    total: int = 0
    pages: int = 1
    page_num: int = 1

    def to_dict(self) -> dict:
        return {
            "items": [r.to_dict() for r in self.items],
            "total": self.total,
            "pages": self.pages,
            "page_num": self.page_num,
        }
