# fastapi_searchpager/compiler.py

import math
import re
from datetime import datetime
from typing import Any, Mapping

from .options import (
    BooleanField,
    DateField,
    FieldOptions,
    FilterField,
    Operator,
    RangeField,
    SortOrder,
    ValueType,
)

QueryParameters = Mapping[str, str | list[str]]
FilterExpression = dict[str, Any]
SortSpec = dict[str, SortOrder]


class _InvalidDate:
    """Stands in for a date parameter that could not be parsed."""

    def __repr__(self) -> str:
        return "INVALID_DATE"


INVALID_DATE = _InvalidDate()


def first_value(value: Any) -> Any:
    """Collapse a repeated query parameter to its last occurrence."""
    if isinstance(value, (list, tuple)):
        return value[-1] if value else None
    return value


def parse_number(value: Any) -> int | float:
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def parse_date(value: Any) -> datetime | _InvalidDate:
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return INVALID_DATE


def coerce_value(value: Any, value_type: ValueType | str = ValueType.STRING) -> Any:
    """
    Convert a raw query-string value to the declared type.

    Malformed numbers become ``nan`` and malformed dates become
    ``INVALID_DATE``; nothing here raises.
    """
    match ValueType(value_type):
        case ValueType.ARRAY:
            return list(value) if isinstance(value, (list, tuple)) else [value]
        case ValueType.NUMBER:
            return parse_number(first_value(value))
        case ValueType.BOOLEAN:
            return first_value(value) == "true"
        case ValueType.DATE:
            return parse_date(first_value(value))
        case ValueType.STRING:
            return first_value(value)


def operator_clause(field: str, operator: Operator | str, value: Any) -> FilterExpression:
    operator = Operator(operator)
    match operator:
        case Operator.EQ:
            return {field: value}
        case Operator.REGEX:
            return {field: {"$regex": value, "$options": "i"}}
        case (Operator.NE | Operator.GT | Operator.GTE | Operator.LT | Operator.LTE
              | Operator.IN | Operator.NIN | Operator.EXISTS):
            return {field: {operator.token: value}}


def conjoin(*clauses: FilterExpression) -> FilterExpression:
    """
    AND predicate documents together.

    Clauses on distinct keys are merged into one document. When two clauses
    constrain the same key the result is an explicit ``$and`` so neither
    clause is overwritten. No clauses gives ``{}``, which matches everything.
    """
    clauses = tuple(clause for clause in clauses if clause)
    merged: FilterExpression = {}
    for clause in clauses:
        if merged.keys() & clause.keys():
            return {"$and": [dict(item) for item in clauses]}
        merged.update(clause)
    return merged


def _present(params: QueryParameters, key: str) -> Any:
    value = params.get(key)
    if isinstance(value, (list, tuple)):
        return value if any(value) else None
    return value or None


def _bounds(params: QueryParameters, lower_key: str, upper_key: str, parse) -> dict[str, Any]:
    bounds = {}
    lower = first_value(_present(params, lower_key))
    upper = first_value(_present(params, upper_key))
    if lower:
        bounds["$gte"] = parse(lower)
    if upper:
        bounds["$lte"] = parse(upper)
    return bounds


def search_clause(term: str, fields: tuple[str, ...]) -> FilterExpression:
    pattern = re.escape(term)
    return {"$or": [{field: {"$regex": pattern, "$options": "i"}} for field in fields]}


def compile_filter(params: QueryParameters, options: FieldOptions) -> FilterExpression:
    """
    Compile query-string parameters into a filter document.

    Stages run in a fixed order (search, operator filters, date ranges,
    numeric ranges, booleans) and each one contributes only when its
    parameters are present.

    Args:
        params: Flat mapping mirroring the query string
        options: Which parameters the route understands

    Returns:
        Mongo-style predicate document; ``{}`` when nothing applies
    """
    clauses: list[FilterExpression] = []

    term = first_value(params.get("search"))
    if term and options.search_fields:
        clauses.append(search_clause(term, options.search_fields))

    for rule in options.staged_rules():
        match rule:
            case FilterField():
                raw = _present(params, rule.field)
                if raw is None:
                    continue
                value = coerce_value(raw, rule.value_type)
                clauses.append(operator_clause(rule.field, rule.operator, value))
            case DateField():
                bounds = _bounds(params, f"{rule.name}_from", f"{rule.name}_to", parse_date)
                if bounds:
                    clauses.append({rule.field: bounds})
            case RangeField():
                bounds = _bounds(params, f"{rule.name}_min", f"{rule.name}_max", parse_number)
                if bounds:
                    clauses.append({rule.field: bounds})
            case BooleanField():
                if rule.field in params:
                    clauses.append({rule.field: first_value(params[rule.field]) == "true"})

    return conjoin(*clauses)


def build_sort(sort_by: str | None, sort_order: str | None = "desc") -> SortSpec:
    if not sort_by:
        return {}
    if isinstance(sort_order, SortOrder):
        return {sort_by: sort_order}
    sort_order = "desc" if sort_order is None else sort_order.lower()
    return {sort_by: SortOrder.DESC if sort_order == "desc" else SortOrder.ASC}


def sort_from_params(params: QueryParameters) -> SortSpec:
    return build_sort(first_value(params.get("sortBy")), first_value(params.get("sortOrder")))
