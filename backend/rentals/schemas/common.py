from decimal import Decimal
from typing import Generic, TypeVar

from pydantic import BaseModel

from rentals.services.pricing import to_major

T = TypeVar("T")


def money(amount_minor: int) -> Decimal:
    """Minor units -> two-decimal major units for API output."""
    return to_major(amount_minor or 0)


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    limit: int


class Page(BaseModel, Generic[T]):
    count: int
    total: int
    pagination: Pagination
    data: list[T]

    @classmethod
    def build(cls, items: list, total: int, page: int, limit: int):
        return cls(
            count=len(items),
            total=total,
            pagination=Pagination(
                current_page=page,
                total_pages=-(-total // limit) if limit else 0,
                limit=limit,
            ),
            data=items,
        )
