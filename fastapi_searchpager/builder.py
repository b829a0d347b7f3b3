import logging
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy import Select, asc, desc, func, inspect, literal, select, true
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement

from .compiler import FilterExpression, QueryParameters, SortSpec, compile_filter, sort_from_params
from .core import parse_filters, resolve_and_join_column
from .options import FieldOptions, SortOrder
from .pagination import TOTAL_COUNT_KEY, Paginator, fetch_one_extra
from .schemas import AggregationStage, PaginationState

logger = logging.getLogger(__name__)

_POSITION = "_position"


def apply_filter(cls: Any, filter_expression: FilterExpression, stmt: Select) -> Select:
    if not filter_expression:
        return stmt
    filter_expr, stmt = parse_filters(cls, filter_expression, stmt)
    if filter_expr is not None:
        stmt = stmt.where(filter_expr)
    return stmt


def sort_clauses(cls: Any, sort: SortSpec, stmt: Select,
                 expressions: Optional[dict[str, Any]] = None) -> tuple[list, Select]:
    clauses = []
    for sort_field, sort_order in sort.items():
        if expressions and sort_field in expressions:
            column = expressions[sort_field]
        else:
            column = getattr(cls, sort_field, None)
        if column is None:
            nested_keys = sort_field.split(".")
            if len(nested_keys) > 1:
                column, stmt = resolve_and_join_column(cls, nested_keys, stmt, {})
            else:
                raise HTTPException(
                    status_code=400, detail=f"Invalid sort field: {sort_field}")

        clauses.append(desc(column) if sort_order == SortOrder.DESC else asc(column))
    return clauses, stmt


def apply_sort(cls: Any, sort: SortSpec, stmt: Select, expressions: Optional[dict[str, Any]] = None) -> Select:
    clauses, stmt = sort_clauses(cls, sort, stmt, expressions)
    return stmt.order_by(*clauses)


def build_query(cls: Any, params: QueryParameters, options: Optional[FieldOptions] = None,
                stmt: Select | None = None, sort: Optional[SortSpec] = None) -> Select:
    stmt = select(cls) if stmt is None else stmt
    filter_expression = compile_filter(params, options or FieldOptions())
    logger.debug("Compiled filter for %s: %r", _name(cls), filter_expression)

    stmt = apply_filter(cls, filter_expression, stmt)
    return apply_sort(cls, sort_from_params(params) if sort is None else sort, stmt)


def paginate_statement(stmt: Select, state: PaginationState) -> Select:
    return stmt.offset(state.skip).limit(state.limit)


def limit_plus_one(stmt: Select, limit: int) -> Select:
    return stmt.limit(fetch_one_extra(limit).effective_limit)


def apply_aggregation_stage(stmt: Select, stage: AggregationStage) -> Select:
    return stmt.offset(stage.skip).limit(stage.limit)


def count_statement(stmt: Select) -> Select:
    """Count the rows ``stmt`` would return, ignoring its ordering and paging."""
    inner = stmt.order_by(None).limit(None).offset(None).subquery()
    return select(func.count()).select_from(inner)


def build_aggregation_pipeline(cls: Any, params: QueryParameters, options: Optional[FieldOptions] = None,
                               paginator: Optional[Paginator] = None) -> Select:
    """
    Build a single statement that returns one page of plain records together
    with the total number of matching rows.

    Stages, in order: match (compiled filter), lookups (``options.populate``,
    outer joins whose columns are labelled ``<as>.<column>``), computed fields
    (``options.computed_fields``, labelled verbatim), sort (may name a
    computed field) and a facet stage: the count of all matches, outer
    joined to the skip/limit page so the total arrives even when the page
    is empty.

    Feed the executed rows to :meth:`Paginator.process_results`.
    """
    options = options or FieldOptions()
    paginator = paginator or Paginator()

    stmt = select(*_labelled_columns(cls))
    stmt = apply_filter(cls, compile_filter(params, options), stmt)

    for lookup in options.populate:
        target = aliased(lookup.from_)
        stmt = stmt.outerjoin(
            target, getattr(cls, lookup.local_field) == getattr(target, lookup.foreign_field))
        stmt = stmt.add_columns(*_labelled_columns(lookup.from_, target, prefix=f"{lookup.as_}."))

    computed = {}
    for name, expression in options.computed_fields.items():
        if not isinstance(expression, ColumnElement):
            expression = literal(expression)
        computed[name] = expression
        stmt = stmt.add_columns(expression.label(name))

    total = select(func.count().label(TOTAL_COUNT_KEY)).select_from(stmt.subquery()).subquery("facet_total")

    ordering, stmt = sort_clauses(cls, sort_from_params(params), stmt, computed)
    stmt = stmt.add_columns(func.row_number().over(order_by=ordering or None).label(_POSITION))
    state = paginator.build_pagination(params)
    page = paginate_statement(stmt.order_by(*ordering), state).subquery("facet_page")

    logger.debug("Built aggregation pipeline for %s (page=%d, limit=%d)", _name(cls), state.page, state.limit)
    return (
        select(total.c[TOTAL_COUNT_KEY], *(column for column in page.c if column.key != _POSITION))
        .select_from(total)
        .outerjoin(page, true())
        .order_by(page.c[_POSITION])
    )


def _labelled_columns(cls: Any, entity: Any = None, prefix: str = "") -> list:
    entity = cls if entity is None else entity
    return [
        getattr(entity, attr.key).label(f"{prefix}{attr.key}")
        for attr in inspect(cls).column_attrs
    ]


def _name(cls: Any) -> str:
    return getattr(cls, "__name__", repr(cls))
