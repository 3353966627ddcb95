"""Page and sort helpers for the license and staging list endpoints."""

from dataclasses import dataclass
from typing import Any, Mapping

from fastapi import Query
from sqlalchemy.orm import Query as SQLAlchemyQuery


DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100
SORT_ORDERS = ("asc", "desc")


@dataclass
class PaginationParams:
    """``page`` / ``per_page`` from the query string (1-indexed)."""
    page: int = DEFAULT_PAGE
    per_page: int = DEFAULT_PER_PAGE

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def get_pagination(
    page: int = Query(DEFAULT_PAGE, ge=1, description="Page number (1-indexed)"),
    per_page: int = Query(
        DEFAULT_PER_PAGE, ge=1, le=MAX_PER_PAGE, description=f"Items per page (max {MAX_PER_PAGE})"
    ),
) -> PaginationParams:
    return PaginationParams(page=page, per_page=per_page)


def page_count(total: int, per_page: int) -> int:
    if per_page <= 0:
        return 0
    return -(-total // per_page)


def apply_sort(
    query: SQLAlchemyQuery,
    sortable: Mapping[str, Any],
    sort_by: str,
    sort_order: str = "desc",
    *,
    tiebreaker: Any = None,
) -> SQLAlchemyQuery:
    """
    Order ``query`` by a whitelisted column name.

    ``tiebreaker`` (usually the primary key) keeps page boundaries stable
    when many rows share the sort value.

    Raises:
        ValueError: unknown field or order; routers turn this into a 400.
    """
    if sort_by not in sortable:
        raise ValueError(f"Unsupported sort field: {sort_by}")
    if sort_order not in SORT_ORDERS:
        raise ValueError(f"Unsupported sort order: {sort_order}")
    column = sortable[sort_by]
    clauses = [column.asc() if sort_order == "asc" else column.desc()]
    if tiebreaker is not None:
        clauses.append(tiebreaker)
    return query.order_by(*clauses)


def paginate_query(query: SQLAlchemyQuery, pagination: PaginationParams) -> tuple[list, int]:
    """Return ``(items, total)`` for one page of ``query``."""
    total = query.order_by(None).count()
    items = query.offset(pagination.offset).limit(pagination.per_page).all()
    return items, total
