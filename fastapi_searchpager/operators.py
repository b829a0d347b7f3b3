# fastapi_searchpager/operators.py

import math

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql import operators

from .compiler import INVALID_DATE
from .utils import coerce_operand

LOGICAL_OPERATORS = {
    "$and": and_,
    "$or": or_
}


def _is_invalid(value):
    return value is INVALID_DATE or (isinstance(value, float) and math.isnan(value))


def _listify(value):
    return list(value) if isinstance(value, (list, tuple, set)) else [value]


def _eq_operator(column, value):
    if _is_invalid(value):
        return false()
    if value is None:
        return column.is_(None)
    return column == coerce_operand(column, value)


def _ne_operator(column, value):
    if _is_invalid(value):
        return true()
    if value is None:
        return column.is_not(None)
    return column != coerce_operand(column, value)


def _comparison(op):
    def apply(column, value):
        if _is_invalid(value) or value is None:
            return false()
        return op(column, coerce_operand(column, value))
    return apply


def _in_operator(column, value):
    values = [v for v in _listify(value) if not _is_invalid(v)]
    return column.in_(coerce_operand(column, values))


def _nin_operator(column, value):
    values = [v for v in _listify(value) if not _is_invalid(v)]
    return column.not_in(coerce_operand(column, values))


def _regex_operator(column, pattern, options=None):
    # inline flags are understood by SQLite (Python re), PostgreSQL and MySQL alike
    if options and "i" in options:
        pattern = f"(?i){pattern}"
    return column.regexp_match(str(pattern))


def _exists_operator(column, value):
    return column.is_not(None) if value else column.is_(None)


COMPARISON_OPERATORS = {
    "$eq": _eq_operator,
    "$ne": _ne_operator,
    "$gt": _comparison(operators.gt),
    "$gte": _comparison(operators.ge),
    "$lt": _comparison(operators.lt),
    "$lte": _comparison(operators.le),
    "$in": _in_operator,
    "$nin": _nin_operator,
    "$regex": _regex_operator,
    "$exists": _exists_operator,
}

# Modifiers read alongside another operator rather than applied on their own.
OPERATOR_MODIFIERS = {"$options"}
