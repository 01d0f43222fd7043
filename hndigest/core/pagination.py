"""Pagination helpers."""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One bounded page of a query. next_key is None on the last page."""

    items: list[T]
    limit: int
    next_key: str | None = None


def clamp_limit(limit: int, max_limit: int = 1000) -> int:
    return max(1, min(limit, max_limit))
