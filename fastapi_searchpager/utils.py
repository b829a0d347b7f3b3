# fastapi_searchpager/utils.py

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping

INT64_MIN = -2**63
INT64_MAX = 2**63 - 1


def column_python_type(column) -> type | None:
    try:
        return column.type.python_type
    except (AttributeError, NotImplementedError):
        return None


def coerce_operand(column, value: Any) -> Any:
    """
    Convert a string operand to the Python type of ``column``.

    Cursors and compiled values arrive as query-string text; DateTime and
    numeric columns need real Python values to bind.

    Raises:
        ValueError: if the text cannot be read as the column's type
        OverflowError: if an integer operand does not fit in 64 bits
    """
    if isinstance(value, (list, tuple)):
        return [coerce_operand(column, item) for item in value]
    if isinstance(value, str):
        value = _from_text(column, value)
    if isinstance(value, int) and not isinstance(value, bool) and not INT64_MIN <= value <= INT64_MAX:
        raise OverflowError(f"{value} does not fit in a 64-bit integer")
    return value


def _from_text(column, value: str) -> Any:
    python_type = column_python_type(column)
    if python_type is datetime:
        return datetime.fromisoformat(value)
    if python_type is date:
        return date.fromisoformat(value)
    if python_type is bool:
        return value.lower() == "true"
    if python_type in (int, float, Decimal):
        return python_type(value)
    return value


def field_value(record: Any, field: str) -> Any:
    """Read ``field`` from a mapping, a SQLAlchemy row or an object."""
    if isinstance(record, Mapping):
        return record.get(field)
    mapping = getattr(record, "_mapping", None)
    if mapping is not None and field in mapping:
        return mapping[field]
    return getattr(record, field, None)


def row_to_record(row: Any, drop: tuple[str, ...] = ()) -> dict[str, Any]:
    """
    Flatten a result row into a plain dict.

    Dotted labels such as ``"host.name"`` are nested as ``{"host": {"name": ...}}``;
    a nested group whose values are all ``None`` (an unmatched outer join)
    collapses to ``None``.
    """
    mapping = row if isinstance(row, Mapping) else row._mapping
    record: dict[str, Any] = {}
    groups = set()
    for key, value in mapping.items():
        key = str(key)
        if key in drop:
            continue
        if "." in key:
            group, _, name = key.partition(".")
            record.setdefault(group, {})[name] = value
            groups.add(group)
        else:
            record[key] = value

    for group in groups:
        if all(item is None for item in record[group].values()):
            record[group] = None
    return record
