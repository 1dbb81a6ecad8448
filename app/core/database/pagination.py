"""
Offset pagination for select statements.
"""
from dataclasses import dataclass
from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


@dataclass
class PageResult(Generic[T]):
    items: Sequence[T]
    total: int
    page: int
    per_page: int

    @property
    def last_page(self) -> int:
        return max(1, (self.total + self.per_page - 1) // self.per_page)

    def meta(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "page": self.page,
            "per_page": self.per_page,
            "last_page": self.last_page,
        }


async def paginate(db: AsyncSession, stmt: Select, page: int, per_page: int) -> PageResult:
    """Run stmt for one page (1-based) and count the unpaginated total."""
    page = max(page, 1)
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    result = await db.execute(stmt.offset((page - 1) * per_page).limit(per_page))
    return PageResult(items=result.scalars().all(), total=total, page=page, per_page=per_page)
