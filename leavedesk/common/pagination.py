"""Page-number pagination for list endpoints (leave history, archives, users)."""

import math
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leavedesk.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

T = TypeVar("T")


class PaginationParams:
    """Query-string ``page`` / ``page_size``; use as ``Depends()``."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1),
        page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    ) -> None:
        self.page = page
        self.page_size = page_size

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class PaginationMeta(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def for_total(cls, page: int, page_size: int, total: int) -> "PaginationMeta":
        pages = math.ceil(total / page_size) if total else 0
        return cls(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=pages,
            has_next=page < pages,
            has_prev=page > 1,
        )


class PaginatedResponse(BaseModel, Generic[T]):
    """``{"data": [...], "meta": {...}}``"""

    data: Sequence[T]
    meta: PaginationMeta


async def paginate(
    session: AsyncSession,
    query: Select,
    *,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    transform: Optional[Callable[[Any], Any]] = None,
) -> PaginatedResponse:
    """Run *query* for one page and count the full result set.

    The ORDER BY on *query* decides page boundaries; it is stripped for
    the count.  *transform* maps each ORM object to its response schema.
    """
    total = (
        await session.execute(
            select(func.count()).select_from(query.order_by(None).subquery())
        )
    ).scalar_one()

    result = await session.execute(
        query.offset((page - 1) * page_size).limit(page_size)
    )
    items = list(result.scalars().all())
    if transform is not None:
        items = [transform(item) for item in items]

    return PaginatedResponse(
        data=items,
        meta=PaginationMeta.for_total(page, page_size, total),
    )
