"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that read from ORM models inherit from
BaseResponseSchema so from_attributes is never forgotten.
"""

from math import ceil
from typing import Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class WarehouseBrief(BaseResponseSchema):
            id: UUID
            code: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Base class for create/input schemas. Unknown fields are ignored."""
    model_config = ConfigDict(
        extra='ignore',
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional; services receive model_dump(exclude_unset=True)
    so only the fields the client sent are applied.
    """
    model_config = ConfigDict(
        extra='forbid',
    )


T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated list."""
    items: List[T]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def build(cls, items: List[T], total: int, page: int, limit: int):
        return cls(items=items, total=total, page=page, limit=limit, pages=ceil(total / limit) if limit else 0)
