"""
Tag filtering and pagination helpers.

Shared by both record stores so that argument validation, page arithmetic
and the SQL tag predicate are computed the same way everywhere.

Page arithmetic:
    pages    = (total - 1) // page_size + 1   (1 when total == 0)
    page_num = clamped into [1, pages]
    offset   = (page_num - 1) * page_size
"""

from __future__ import annotations

from typing import Sequence

from kvl.core.errors import QueryError

ORDER_COLUMNS = {
    "createTime": "createTime",
    "create_time": "createTime",
    "updateTime": "updateTime",
    "update_time": "updateTime",
}

DEFAULT_ORDER_BY = "createTime"
DEFAULT_ORDER_DIR = "DESC"
DEFAULT_PAGE_SIZE = 10


def normalize_order(order_by: str | None, order_dir: str | None) -> tuple[str, str]:
    """Validate ordering arguments and return (column, direction) in SQL form."""
    column = ORDER_COLUMNS.get(order_by or DEFAULT_ORDER_BY)
    if column is None:
        raise QueryError(
            f"Invalid order_by: {order_by!r}",
            details={"allowed": sorted(set(ORDER_COLUMNS.values()))},
        )
    direction = (order_dir or DEFAULT_ORDER_DIR).upper()
    if direction not in ("ASC", "DESC"):
        raise QueryError(f"Invalid order_dir: {order_dir!r}")
    return column, direction


def normalize_operator(tags_operator: str | None) -> str:
    operator = (tags_operator or "AND").upper()
    if operator not in ("AND", "OR"):
        raise QueryError(f"Invalid tags_operator: {tags_operator!r}")
    return operator


def page_count(total: int, page_size: int) -> int:
    """Number of pages needed for `total` items; an empty view is one empty page."""
    if page_size < 1:
        raise QueryError(f"page_size must be >= 1, got {page_size}")
    last_offset = total - 1 if total > 0 else 0
    return last_offset // page_size + 1


def clamp_page(page_num: int, pages: int) -> int:
    return max(1, min(page_num, pages))


def page_offset(page_num: int, page_size: int) -> int:
    return (page_num - 1) * page_size


def build_tag_clause(
    tags: Sequence[str] | None, tags_operator: str | None = "AND"
) -> tuple[str, list[str]]:
    """
    Build the SQL predicate for a tag filter.

    Each tag becomes a case-sensitive substring test against `labels`
    (NULL labels never match). Returns ("1 = 1", []) when there is
    nothing to filter on.
    """
    if not tags:
        return "1 = 1", []
    operator = normalize_operator(tags_operator)
    clause = f" {operator} ".join(["instr(labels, ?) > 0"] * len(tags))
    return f"({clause})", list(tags)


def match_tags(
    labels: str | None, tags: Sequence[str] | None, tags_operator: str | None = "AND"
) -> bool:
    """Python equivalent of build_tag_clause() for non-SQL stores."""
    if not tags:
        return True
    if labels is None:
        return False
    hits = (tag in labels for tag in tags)
    if normalize_operator(tags_operator) == "AND":
        return all(hits)
    return any(hits)
