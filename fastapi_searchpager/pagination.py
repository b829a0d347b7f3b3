# fastapi_searchpager/pagination.py

"""Offset, cursor, infinite-scroll and aggregation paging.

Every strategy reads its page size through :func:`clamp_limit` and every
strategy that over-fetches by one row goes through :func:`fetch_one_extra`.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import urlencode

from .compiler import FilterExpression, QueryParameters, SortSpec, conjoin, first_value
from .options import CursorDirection, SortOrder
from .schemas import (
    AggregationStage,
    CursorPage,
    CursorPaginationInfo,
    CursorPaginationState,
    InfiniteScrollPage,
    InfiniteScrollState,
    OffsetPage,
    PaginationInfo,
    PaginationLinks,
    PaginationState,
    ValidationResult,
)
from .settings import PaginationSettings
from .utils import INT64_MAX, field_value, row_to_record

logger = logging.getLogger(__name__)

TOTAL_COUNT_KEY = "total_count"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_WHOLE_INT = re.compile(r"^\s*[+-]?\d+\s*$")


def parse_int(value: Any) -> Optional[int]:
    """Read a leading integer the way ``parseInt`` does; ``None`` when there is none."""
    value = first_value(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def max_page(limit: int) -> int:
    """Largest page whose rows end within a signed 64-bit offset."""
    return INT64_MAX // limit


def clamp_page(value: Any, default: int = 1, limit: int = 1) -> int:
    page = parse_int(value)
    return min(max_page(limit), max(1, default if page is None else page))


def clamp_limit(value: Any, default: int, max_limit: int) -> int:
    limit = parse_int(value)
    return min(max_limit, max(1, default if limit is None else limit))


@dataclass(frozen=True)
class OneExtra:
    """Over-fetch by one row to learn whether another page exists without counting."""

    limit: int

    @property
    def effective_limit(self) -> int:
        return self.limit + 1

    def trim(self, rows: Iterable[Any]) -> tuple[list[Any], bool]:
        rows = list(rows)
        return rows[:self.limit], len(rows) > self.limit


def fetch_one_extra(limit: int) -> OneExtra:
    return OneExtra(limit)


class Paginator:
    def __init__(self, default_limit: int = 20, max_limit: int = 100, default_page: int = 1):
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.default_page = default_page

    @classmethod
    def from_settings(cls, settings: PaginationSettings) -> "Paginator":
        return cls(
            default_limit=settings.default_limit,
            max_limit=settings.max_limit,
            default_page=settings.default_page,
        )

    def clamp_limit(self, value: Any) -> int:
        return clamp_limit(value, self.default_limit, self.max_limit)

    # ───── Offset ─────────────────────────────────

    def build_pagination(self, params: QueryParameters) -> PaginationState:
        limit = self.clamp_limit(params.get("limit"))
        page = clamp_page(params.get("page"), self.default_page, limit)
        return PaginationState(page=page, limit=limit, skip=(page - 1) * limit)

    def build_pagination_info(self, state: PaginationState, total_count: int) -> PaginationInfo:
        total_pages = math.ceil(total_count / state.limit)
        has_next = state.page < total_pages
        has_prev = state.page > 1
        return PaginationInfo(
            current_page=state.page,
            total_pages=total_pages,
            total_count=total_count,
            limit=state.limit,
            has_next=has_next,
            has_prev=has_prev,
            next_page=state.page + 1 if has_next else None,
            prev_page=state.page - 1 if has_prev else None,
            start_index=state.skip + 1,
            end_index=min(state.skip + state.limit, total_count),
        )

    def build_pagination_links(
        self,
        info: PaginationInfo,
        base_url: str,
        query_params: Optional[Mapping[str, Any]] = None,
    ) -> PaginationLinks:
        """
        Build self/first/last links, plus prev/next when those pages exist.

        Args:
            info: Result of :meth:`build_pagination_info`
            base_url: URL without a query string
            query_params: Parameters to carry over; any ``page`` entry is replaced
        """
        carried = {key: value for key, value in (query_params or {}).items() if key != "page"}

        def build_url(page: int) -> str:
            return f"{base_url}?{urlencode({**carried, 'page': page}, doseq=True)}"

        return PaginationLinks(
            self_=build_url(info.current_page),
            first=build_url(1),
            last=build_url(max(1, info.total_pages)),
            prev=build_url(info.prev_page) if info.has_prev else None,
            next=build_url(info.next_page) if info.has_next else None,
        )

    def build_pagination_metadata(
        self,
        info: PaginationInfo,
        base_url: str,
        query_params: Optional[Mapping[str, Any]] = None,
    ) -> PaginationInfo:
        links = self.build_pagination_links(info, base_url, query_params)
        return info.model_copy(update={"links": links})

    def paginate(self, rows: Iterable[Any], state: PaginationState, total_count: int) -> OffsetPage:
        return OffsetPage(data=list(rows), pagination=self.build_pagination_info(state, total_count))

    def validate_pagination(self, params: QueryParameters) -> ValidationResult:
        errors = []

        limit = first_value(params.get("limit"))
        page = first_value(params.get("page"))
        if page and not (_WHOLE_INT.match(str(page))
                         and 1 <= int(page) <= max_page(self.clamp_limit(limit))):
            errors.append("Page must be a positive integer")

        if limit and not (_WHOLE_INT.match(str(limit)) and 1 <= int(limit) <= self.max_limit):
            errors.append(f"Limit must be between 1 and {self.max_limit}")

        if errors:
            logger.debug("Rejected pagination parameters %r: %s", params, errors)
        return ValidationResult(is_valid=not errors, errors=errors)

    # ───── Cursor ─────────────────────────────────

    def build_cursor_pagination(
        self,
        params: QueryParameters,
        sort_field: str = "created_at",
        sort_order: SortOrder | str = SortOrder.DESC,
    ) -> CursorPaginationState:
        direction = first_value(params.get("direction"))
        return CursorPaginationState(
            limit=self.clamp_limit(params.get("limit")),
            cursor=first_value(params.get("cursor")) or None,
            direction=CursorDirection.PREV if direction == CursorDirection.PREV.value else CursorDirection.NEXT,
            sort_field=sort_field,
            sort_order=SortOrder.DESC if sort_order == SortOrder.DESC.value else SortOrder.ASC,
        )

    def build_cursor_query(
        self,
        state: CursorPaginationState,
        base_filter: Optional[FilterExpression] = None,
    ) -> FilterExpression:
        base_filter = dict(base_filter or {})
        if state.cursor is None:
            return base_filter

        forward = state.direction is CursorDirection.NEXT
        descending = state.sort_order is SortOrder.DESC
        operator = "$lt" if forward == descending else "$gt"
        return conjoin(base_filter, {state.sort_field: {operator: state.cursor}})

    def cursor_sort(self, state: CursorPaginationState) -> SortSpec:
        return {state.sort_field: state.sort_order}

    def process_cursor_results(self, rows: Iterable[Any], state: CursorPaginationState) -> CursorPage:
        data, has_next = fetch_one_extra(state.limit).trim(rows)
        return CursorPage(
            data=data,
            pagination=CursorPaginationInfo(
                has_next=has_next,
                has_prev=state.cursor is not None,
                next_cursor=field_value(data[-1], state.sort_field) if data else None,
                prev_cursor=field_value(data[0], state.sort_field) if data else None,
                limit=state.limit,
            ),
        )

    # ───── Infinite scroll ────────────────────────

    def build_infinite_scroll(self, params: QueryParameters, primary_key: str = "id") -> InfiniteScrollState:
        return InfiniteScrollState(
            limit=self.clamp_limit(params.get("limit")),
            last_id=first_value(params.get("lastId")) or None,
            primary_key=primary_key,
        )

    def build_infinite_query(self, state: InfiniteScrollState) -> FilterExpression:
        if state.last_id is None:
            return {}
        return {state.primary_key: {"$lt": state.last_id}}

    def infinite_sort(self, state: InfiniteScrollState) -> SortSpec:
        return {state.primary_key: SortOrder.DESC}

    def process_infinite_results(self, rows: Iterable[Any], state: InfiniteScrollState) -> InfiniteScrollPage:
        data, has_more = fetch_one_extra(state.limit).trim(rows)
        return InfiniteScrollPage(
            data=data,
            has_more=has_more,
            next_cursor=field_value(data[-1], state.primary_key) if data else None,
        )

    # ───── Aggregation ────────────────────────────

    def build_aggregation_pagination(self, params: QueryParameters) -> AggregationStage:
        """Skip/limit for a page fetched without a count; the total comes from a separate query."""
        state = self.build_pagination(params)
        return AggregationStage(skip=state.skip, limit=fetch_one_extra(state.limit).effective_limit)

    def process_aggregation_results(
        self,
        rows: Iterable[Any],
        state: PaginationState,
        total_count: int,
    ) -> OffsetPage:
        data, has_more = fetch_one_extra(state.limit).trim(rows)
        info = self.build_pagination_info(state, total_count)
        return OffsetPage(data=data, pagination=info.model_copy(update={"has_more": has_more}))

    def process_results(self, rows: Iterable[Any], state: PaginationState) -> OffsetPage:
        """
        Shape facet-style rows, where each row carries the total count beside
        its own columns, into an offset envelope.

        An empty page still arrives as one row holding the total and nothing
        else; that row is dropped from the data.
        """
        rows = list(rows)
        total_count = (field_value(rows[0], TOTAL_COUNT_KEY) or 0) if rows else 0
        records = (row_to_record(row, drop=(TOTAL_COUNT_KEY,)) for row in rows)
        data = [record for record in records if any(value is not None for value in record.values())]
        return self.paginate(data, state, total_count)
