"""Translate filters into the table store's OData filter syntax."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from rowbridge.core.exceptions import FilterTranslationError
from rowbridge.query import AndOr, CompareOperator, Filter
from rowbridge.schema import Role, Table
from rowbridge.types import TypeCode, format_value, try_parse
from rowbridge.types.conversion import timedelta_to_ticks

_ODATA_OPERATORS: dict[CompareOperator, str] = {
    CompareOperator.EQUAL: "eq",
    CompareOperator.NOT_EQUAL: "ne",
    CompareOperator.LESS: "lt",
    CompareOperator.LESS_EQUAL: "le",
    CompareOperator.GREATER: "gt",
    CompareOperator.GREATER_EQUAL: "ge",
    # IN lists are expanded into an equality group
    CompareOperator.IS_IN: "eq",
}

# Keys are always strings in the store
_KEY_ROLES = frozenset({Role.PARTITION_KEY, Role.ROW_KEY})


def _quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def _datetime_literal(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return f"datetime'{value.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3]}Z'"


def _literal(type_code: TypeCode, value: Any) -> str:
    match type_code:
        case TypeCode.STRING | TypeCode.UNKNOWN | TypeCode.DECIMAL:
            return _quote(format_value(value))
        case TypeCode.GUID:
            return f"guid'{value}'"
        case TypeCode.TIME:
            return f"{timedelta_to_ticks(value)}L"
        case TypeCode.BOOLEAN:
            return "true" if value else "false"
        case TypeCode.INT16 | TypeCode.INT32 | TypeCode.UINT16:
            return str(int(value))
        case TypeCode.UINT32 | TypeCode.INT64 | TypeCode.UINT64:
            return f"{int(value)}L"
        case TypeCode.DATETIME:
            return _datetime_literal(value)
        case TypeCode.DOUBLE | TypeCode.SINGLE:
            return repr(float(value))
        case TypeCode.BINARY:
            return f"X'{bytes(value).hex()}'"
    raise FilterTranslationError(
        f"The data type {type_code.value} is not supported by table store filters"
    )


def generate_filter_condition(
    column: str, operator: CompareOperator, type_code: TypeCode, value: Any
) -> str:
    """Render ``column <op> literal`` for one value.

    Raises:
        FilterTranslationError: For null values and unsupported types
    """
    if value is None:
        raise FilterTranslationError(
            f"The filter on {column} compares with null, which the table store cannot express"
        )
    converted = try_parse(type_code, value)
    if not converted.success:
        raise FilterTranslationError(
            f"The filter value could not be converted to a {type_code.value}. {converted.error}"
        )
    return f"{column} {_ODATA_OPERATORS[operator]} {_literal(type_code, converted.value)}"


def _filter_fragment(filter_: Filter, table: Table | None) -> str:
    if filter_.column1 is None or filter_.column2 is not None:
        raise FilterTranslationError(
            "Table store filters must compare a column with a value"
        )
    column = filter_.column1.name
    type_code = filter_.compare_type
    if table is not None:
        stored = table.get_column(column)
        if stored is not None and stored.role not in _KEY_ROLES:
            type_code = stored.type_code
        elif stored is not None:
            type_code = TypeCode.STRING
    if isinstance(filter_.value2, list):
        if not filter_.value2:
            raise FilterTranslationError(f"The IN list for {column} is empty")
        conditions = [
            generate_filter_condition(column, CompareOperator.EQUAL, type_code, item)
            for item in filter_.value2
        ]
        return "(" + " or ".join(conditions) + ")"
    return generate_filter_condition(column, filter_.operator, type_code, filter_.value2)


def combine_filters(left: str, operator: AndOr, right: str) -> str:
    return f"({left}) {operator.value} ({right})"


def build_filter_string(filters: Sequence[Filter], table: Table | None = None) -> str:
    """Combine filters into one filter expression.

    Each filter's ``and_or`` joins it to the filter that follows it. AND
    binds tighter than OR, as in a SQL WHERE clause: runs of AND-joined
    filters are grouped first and the groups are joined with ``or``. When
    ``table`` is given, literals are typed like the stored column so that
    the store compares values of the same type.
    """
    groups: list[str] = []
    group = ""
    for index, filter_ in enumerate(filters):
        fragment = _filter_fragment(filter_, table)
        group = combine_filters(group, AndOr.AND, fragment) if group else fragment
        if index == len(filters) - 1 or filter_.and_or == AndOr.OR:
            groups.append(group)
            group = ""

    combined = ""
    for group in groups:
        combined = combine_filters(combined, AndOr.OR, group) if combined else group
    return combined
