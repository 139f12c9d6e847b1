"""Query helpers shared by repository list operations."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Pagination:
    limit: int = 100
    offset: int = 0

    def next(self) -> "Pagination":
        return Pagination(limit=self.limit, offset=self.offset + self.limit)


@dataclass(frozen=True)
class Sort:
    field: str = "created_at"
    descending: bool = False
