"""Backend-neutral query representation.

These are value objects: a caller builds one per operation and a connector
consumes it without modifying it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rowbridge.schema.column import Column
from rowbridge.types import CompareResult, TypeCode, get_type_code


def _as_column(value: Any) -> Any:
    if isinstance(value, str):
        return Column(name=value)
    return value


class CompareOperator(str, Enum):
    """Comparison operators a filter can apply."""

    EQUAL = "eq"
    NOT_EQUAL = "ne"
    LESS = "lt"
    LESS_EQUAL = "le"
    GREATER = "gt"
    GREATER_EQUAL = "ge"
    IS_IN = "in"

    def evaluate(self, result: CompareResult) -> bool:
        """Map a three-way comparison onto this operator."""
        match self:
            case CompareOperator.EQUAL | CompareOperator.IS_IN:
                return result == CompareResult.EQUAL
            case CompareOperator.NOT_EQUAL:
                return result != CompareResult.EQUAL
            case CompareOperator.LESS:
                return result == CompareResult.LESS
            case CompareOperator.LESS_EQUAL:
                return result in (CompareResult.LESS, CompareResult.EQUAL)
            case CompareOperator.GREATER:
                return result == CompareResult.GREATER
            case CompareOperator.GREATER_EQUAL:
                return result in (CompareResult.GREATER, CompareResult.EQUAL)
        return False


class AndOr(str, Enum):
    AND = "and"
    OR = "or"


class Aggregate(str, Enum):
    NONE = "none"
    SUM = "sum"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    COUNT = "count"


class SortDirection(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


class Filter(BaseModel):
    """One comparison: column vs literal, or column vs column.

    ``and_or`` joins this filter to the next one in a list.
    """

    model_config = ConfigDict(frozen=True)

    column1: Column | None = None
    value1: Any = None
    operator: CompareOperator = CompareOperator.EQUAL
    column2: Column | None = None
    value2: Any = None
    compare_type: TypeCode = TypeCode.STRING
    and_or: AndOr = AndOr.AND

    @field_validator("column1", "column2", mode="before")
    @classmethod
    def coerce_columns(cls, value: Any) -> Any:
        return _as_column(value)

    @classmethod
    def column_value(
        cls,
        column: Column | str,
        operator: CompareOperator,
        value: Any,
        and_or: AndOr = AndOr.AND,
    ) -> Filter:
        """Compare a column with a literal.

        The comparison type follows the literal (the element type for a
        list used with IS_IN); a null literal compares as String.
        """
        sample = value[0] if isinstance(value, list | tuple) and value else value
        compare_type = TypeCode.STRING if sample is None else get_type_code(sample)
        if isinstance(column, str):
            column = Column(name=column, type_code=compare_type)
        return cls(
            column1=column,
            operator=operator,
            value2=list(value) if isinstance(value, tuple) else value,
            compare_type=compare_type,
            and_or=and_or,
        )

    @classmethod
    def column_column(
        cls,
        column1: Column | str,
        operator: CompareOperator,
        column2: Column | str,
        compare_type: TypeCode,
        and_or: AndOr = AndOr.AND,
    ) -> Filter:
        """Compare two columns of the same row."""
        return cls(
            column1=_as_column(column1),
            operator=operator,
            column2=_as_column(column2),
            compare_type=compare_type,
            and_or=and_or,
        )

    def with_and_or(self, and_or: AndOr) -> Filter:
        return self.model_copy(update={"and_or": and_or})


class Sort(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: Column
    direction: SortDirection = SortDirection.ASCENDING

    @field_validator("column", mode="before")
    @classmethod
    def coerce_column(cls, value: Any) -> Any:
        return _as_column(value)


class SelectColumn(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: Column
    aggregate: Aggregate = Aggregate.NONE

    @field_validator("column", mode="before")
    @classmethod
    def coerce_column(cls, value: Any) -> Any:
        return _as_column(value)


class SelectQuery(BaseModel):
    """Columns or aggregates, filters, sorts, groups and a row limit.

    ``rows`` of -1 means no limit. An empty ``columns`` list selects every
    column of the table.
    """

    model_config = ConfigDict(frozen=True)

    columns: list[SelectColumn] = Field(default_factory=list)
    table: str | None = None
    filters: list[Filter] = Field(default_factory=list)
    sorts: list[Sort] = Field(default_factory=list)
    groups: list[Column] = Field(default_factory=list)
    rows: int = -1


class QueryColumn(BaseModel):
    """A column paired with the value to write into it."""

    model_config = ConfigDict(frozen=True)

    column: Column
    value: Any = None

    @field_validator("column", mode="before")
    @classmethod
    def coerce_column(cls, value: Any) -> Any:
        return _as_column(value)


class InsertQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str
    insert_columns: list[QueryColumn]


class UpdateQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str
    update_columns: list[QueryColumn]
    filters: list[Filter] = Field(default_factory=list)


class DeleteQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str
    filters: list[Filter] = Field(default_factory=list)
