"""Pagination and sort parsing shared by the list endpoints.

Every listing (users, clients, programs, enrollments) uses the same
`page`/`limit` semantics and the same `field:asc|desc` sort syntax, and
returns the same page envelope built by `build_page`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

# Largest OFFSET a signed 64-bit SQL integer can hold.
MAX_OFFSET = 2**63 - 1


@dataclass(frozen=True)
class SortSpec:
    field: str
    order: str

    @property
    def descending(self) -> bool:
        return self.order == "desc"

    @property
    def as_text(self) -> str:
        return f"{self.field}:{self.order}"


@dataclass(frozen=True)
class PageOptions:
    page: int = 1
    limit: int = 10

    def __post_init__(self):
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.offset > MAX_OFFSET:
            raise ValueError("page is out of range")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def parse_sort(sort_by: str | None, allowed_fields: Iterable[str], default: str) -> SortSpec:
    """Parse sort input in the form `field:asc|desc`.

    A bare `field` sorts ascending. Raises ValueError for unknown fields
    or orders so callers can report a 400 to the client.
    """
    allowed = set(allowed_fields)
    raw = (sort_by or default).strip()
    if not raw:
        raw = default
    if ":" in raw:
        field, order = raw.split(":", 1)
    else:
        field, order = raw, "asc"
    field = field.strip()
    order = order.strip().lower()
    if field not in allowed:
        supported = ", ".join(sorted(allowed))
        raise ValueError(f"Unsupported sort field '{field}'. Supported fields: {supported}")
    if order not in ("asc", "desc"):
        raise ValueError("sort order must be 'asc' or 'desc'")
    return SortSpec(field=field, order=order)


def compute_total_pages(total: int, limit: int) -> int:
    if total <= 0:
        return 0
    return ((total - 1) // limit) + 1


def build_page(results: Sequence[Any], total: int, options: PageOptions) -> dict:
    """Assemble the page envelope returned by every listing endpoint."""
    return {
        "results": list(results),
        "total_results": total,
        "limit": options.limit,
        "page": options.page,
        "total_pages": compute_total_pages(total, options.limit),
        "has_next_page": options.offset + options.limit < total,
    }
