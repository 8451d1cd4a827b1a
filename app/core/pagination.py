"""Limit/offset pagination for ledger and notification listings."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int
    has_more: bool = False


def paginate(limit: int, offset: int, max_limit: int = MAX_LIMIT) -> tuple[int, int]:
    """Clamp limit/offset; return (limit, offset)."""
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)
    return limit, offset


def page_of(rows: list[T], limit: int, offset: int) -> Page[T]:
    """Build a page from `limit + 1` fetched rows; the extra row only signals has_more."""
    return Page[T](items=rows[:limit], limit=limit, offset=offset, has_more=len(rows) > limit)
