# fastapi_searchpager/options.py

from enum import Enum
from typing import Annotated, Any, Iterable, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class ValueType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"


class Operator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"
    REGEX = "regex"
    EXISTS = "exists"

    @property
    def token(self) -> str:
        return f"${self.value}"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class CursorDirection(str, Enum):
    NEXT = "next"
    PREV = "prev"


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True)


class SearchField(_Rule):
    kind: Literal["search"] = "search"
    field: str


class FilterField(_Rule):
    """Read ``params[field]``, coerce it by ``value_type`` and compare with ``operator``."""

    kind: Literal["eq"] = "eq"
    field: str
    value_type: ValueType = ValueType.STRING
    operator: Operator = Operator.EQ


class RangeField(_Rule):
    """Numeric bounds read from ``<name>_min`` / ``<name>_max``."""

    kind: Literal["range"] = "range"
    name: str
    field: str


class DateField(_Rule):
    """Date bounds read from ``<name>_from`` / ``<name>_to``."""

    kind: Literal["date"] = "date"
    name: str
    field: str


class BooleanField(_Rule):
    kind: Literal["boolean"] = "boolean"
    field: str


FieldRule = Annotated[
    SearchField | FilterField | RangeField | DateField | BooleanField,
    Field(discriminator="kind"),
]

# Compiler stages run in this order regardless of how the rules were declared.
STAGE_ORDER = ("search", "eq", "date", "range", "boolean")


class Lookup(BaseModel):
    """Outer join of another mapped class used by the aggregation pipeline.

    Joined columns are nested under ``as_`` in the processed records.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: Any = Field(alias="from")
    local_field: str = Field(alias="localField")
    foreign_field: str = Field(alias="foreignField")
    as_: str = Field(alias="as")


class FieldOptions(BaseModel):
    """Declarative description of which query parameters a route understands.

    Build it from tagged rules::

        FieldOptions(rules=(
            SearchField(field="title"),
            FilterField(field="country"),
            RangeField(name="price", field="price"),
        ))

    or from the parallel-map shape with :meth:`from_maps`.
    """

    model_config = ConfigDict(frozen=True)

    rules: tuple[FieldRule, ...] = ()
    populate: tuple[Lookup, ...] = ()
    computed_fields: Mapping[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_maps(
        cls,
        search_fields: Iterable[str] = (),
        filter_fields: Optional[Mapping[str, Mapping[str, Any]]] = None,
        range_fields: Optional[Mapping[str, str]] = None,
        date_fields: Optional[Mapping[str, str]] = None,
        boolean_fields: Iterable[str] = (),
        populate: Iterable[Lookup | Mapping[str, Any]] = (),
        computed_fields: Optional[Mapping[str, Any]] = None,
    ) -> "FieldOptions":
        rules: list[Any] = [SearchField(field=field) for field in search_fields]
        for field, spec in (filter_fields or {}).items():
            spec = spec or {}
            rules.append(FilterField(
                field=field,
                value_type=spec.get("type", ValueType.STRING),
                operator=spec.get("operator", Operator.EQ),
            ))
        rules.extend(DateField(name=name, field=field) for name, field in (date_fields or {}).items())
        rules.extend(RangeField(name=name, field=field) for name, field in (range_fields or {}).items())
        rules.extend(BooleanField(field=field) for field in boolean_fields)

        return cls(
            rules=tuple(rules),
            populate=tuple(p if isinstance(p, Lookup) else Lookup(**p) for p in populate),
            computed_fields=dict(computed_fields or {}),
        )

    @property
    def search_fields(self) -> tuple[str, ...]:
        return tuple(rule.field for rule in self.rules if isinstance(rule, SearchField))

    def staged_rules(self) -> list[Any]:
        """Non-search rules in compiler stage order, declaration order kept within a stage."""
        return sorted(
            (rule for rule in self.rules if not isinstance(rule, SearchField)),
            key=lambda rule: STAGE_ORDER.index(rule.kind),
        )
