# fastapi_searchpager/schemas.py

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .options import CursorDirection, SortOrder

T = TypeVar("T")


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# -------------------
# Paging state
# -------------------

class PaginationState(_Schema):
    page: int = Field(ge=1)
    limit: int = Field(ge=1)
    skip: int = Field(ge=0)

    @property
    def offset(self) -> int:
        return self.skip


class CursorPaginationState(_Schema):
    limit: int = Field(ge=1)
    cursor: Any = None
    direction: CursorDirection = CursorDirection.NEXT
    sort_field: str
    sort_order: SortOrder = SortOrder.DESC


class InfiniteScrollState(_Schema):
    limit: int = Field(ge=1)
    last_id: Any = None
    primary_key: str = "id"


class AggregationStage(_Schema):
    """Skip/limit pair for a count-free page fetch; ``limit`` already includes the extra row."""

    skip: int = Field(ge=0)
    limit: int = Field(ge=1)


# -------------------
# Response metadata
# -------------------

class PaginationLinks(_Schema):
    self_: str = Field(alias="self")
    first: str
    last: str
    prev: Optional[str] = None
    next: Optional[str] = None


class PaginationInfo(_Schema):
    current_page: int
    total_pages: int
    total_count: int
    limit: int
    has_next: bool
    has_prev: bool
    next_page: Optional[int] = None
    prev_page: Optional[int] = None
    start_index: int
    end_index: int
    links: Optional[PaginationLinks] = None
    has_more: Optional[bool] = None


class CursorPaginationInfo(_Schema):
    has_next: bool
    has_prev: bool
    next_cursor: Any = None
    prev_cursor: Any = None
    limit: int


# -------------------
# Envelopes
# -------------------

class OffsetPage(_Schema, Generic[T]):
    data: list[T] = Field(default_factory=list)
    pagination: PaginationInfo


class CursorPage(_Schema, Generic[T]):
    data: list[T] = Field(default_factory=list)
    pagination: CursorPaginationInfo


class InfiniteScrollPage(_Schema, Generic[T]):
    data: list[T] = Field(default_factory=list)
    has_more: bool
    next_cursor: Any = None


class ValidationResult(_Schema):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
