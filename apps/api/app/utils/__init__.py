"""Utility modules."""

from app.utils.pagination import (
    DEFAULT_PER_PAGE,
    MAX_PER_PAGE,
    PaginationParams,
    apply_sort,
    get_pagination,
    page_count,
    paginate_query,
)

__all__ = [
    "DEFAULT_PER_PAGE",
    "MAX_PER_PAGE",
    "PaginationParams",
    "apply_sort",
    "get_pagination",
    "page_count",
    "paginate_query",
]
