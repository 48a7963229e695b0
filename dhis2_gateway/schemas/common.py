import math
from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class BaseResponse(BaseModel):
    """Base response schema with consistent structure."""

    message: Optional[str] = None

    class Config:
        from_attributes = True


class ErrorResponse(BaseModel):
    """Error body returned by every endpoint."""

    error: str
    detail: Optional[List[str]] = None


class PaginatedResponse(BaseModel, Generic[T]):
    """Page of items plus totals."""

    items: List[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def create(cls, items: List[T], total: int, page: int, page_size: int):
        total_pages = math.ceil(total / page_size) if page_size else 0
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
        )
