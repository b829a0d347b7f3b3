# fastapi_searchpager/core.py

from typing import Any, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy.orm import RelationshipProperty, aliased
from sqlalchemy.sql import Select, and_

from .operators import COMPARISON_OPERATORS, LOGICAL_OPERATORS, OPERATOR_MODIFIERS


def resolve_and_join_column(model, nested_keys: list[str], query: Select, joins: dict) -> Tuple[Any, Select]:
    current_model = model

    for attr in nested_keys:
        attribute = getattr(current_model, attr, None)
        prop = getattr(attribute, "property", None)

        if isinstance(prop, RelationshipProperty):
            join_key = (current_model, attr)
            if join_key not in joins:
                alias = aliased(prop.mapper.class_)
                joins[join_key] = alias
                query = query.outerjoin(alias, attribute)
            current_model = joins[join_key]
        elif attribute is not None:
            return attribute, query
        else:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid filter key: {'.'.join(nested_keys)}. "
                f"Could not resolve attribute '{attr}' in model '{_model_name(current_model)}'."
            )
    raise HTTPException(
        status_code=400,
        detail=f"Could not resolve relationship for {'.'.join(nested_keys)}."
    )


def _model_name(model) -> str:
    return getattr(model, "__name__", None) or type(model).__name__


def _field_expressions(column, key: str, value: Any) -> list:
    if not isinstance(value, dict):
        value = {"$eq": value}

    expressions = []
    for operator, operand in value.items():
        if operator in OPERATOR_MODIFIERS:
            continue
        if operator not in COMPARISON_OPERATORS:
            raise HTTPException(
                status_code=400, detail=f"Unknown operator '{operator}' for field '{key}'")
        try:
            if operator == "$regex":
                expressions.append(
                    COMPARISON_OPERATORS[operator](column, operand, value.get("$options")))
            else:
                expressions.append(
                    COMPARISON_OPERATORS[operator](column, operand))
        except (TypeError, ValueError, OverflowError) as e:
            raise HTTPException(
                status_code=400, detail=f"Error filtering '{key}': {e}")
    return expressions


def parse_filters(model, filters: dict, query: Select, joins: Optional[dict] = None) -> Tuple[Optional[Any], Select]:
    """
    Realize a filter document as a SQLAlchemy expression.

    Dotted keys (``host.name``) are resolved through relationships, adding an
    aliased outer join once per relationship path.

    Args:
        model: Mapped class the statement selects from
        filters: Mongo-style predicate document
        query: Statement to add joins to
        joins: Joins already added, shared across nested ``$and``/``$or``

    Returns:
        The combined expression (``None`` for an empty document) and the
        statement with any joins the document needed
    """
    expressions = []
    joins = {} if joins is None else joins

    if not isinstance(filters, dict):
        raise HTTPException(
            status_code=400, detail="Filters must be a dictionary")

    for key, value in filters.items():
        if key in LOGICAL_OPERATORS:
            if not isinstance(value, list):
                raise HTTPException(
                    status_code=400, detail=f"Logical operator '{key}' must be a list")
            sub_expressions = []
            for sub_filter in value:
                sub_expr, query = parse_filters(model, sub_filter, query, joins)
                if sub_expr is not None:
                    sub_expressions.append(sub_expr)
            if sub_expressions:
                expressions.append(LOGICAL_OPERATORS[key](*sub_expressions))

        elif key.startswith("$"):
            raise HTTPException(
                status_code=400, detail=f"Unknown logical operator '{key}'")

        else:
            column, query = resolve_and_join_column(
                model, key.split("."), query, joins)
            expressions.extend(_field_expressions(column, key, value))

    return and_(*expressions) if expressions else None, query
