"""Query intermediate representation."""

from rowbridge.query.models import (
    Aggregate,
    AndOr,
    CompareOperator,
    DeleteQuery,
    Filter,
    InsertQuery,
    QueryColumn,
    SelectColumn,
    SelectQuery,
    Sort,
    SortDirection,
    UpdateQuery,
)

__all__ = [
    "Aggregate",
    "AndOr",
    "CompareOperator",
    "DeleteQuery",
    "Filter",
    "InsertQuery",
    "QueryColumn",
    "SelectColumn",
    "SelectQuery",
    "Sort",
    "SortDirection",
    "UpdateQuery",
]
