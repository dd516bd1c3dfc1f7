"""Canonical type system: type codes, coercion, comparison and sentinels."""

from rowbridge.types.codes import (
    BasicType,
    TypeCode,
    get_basic_type,
    get_python_type,
    get_type_code,
    is_value_of_type,
)
from rowbridge.types.compare import CompareResult, compare
from rowbridge.types.conversion import (
    clean_string,
    format_value,
    truncate_string,
    try_parse,
)
from rowbridge.types.ranges import get_max_value, get_min_value

__all__ = [
    "BasicType",
    "CompareResult",
    "TypeCode",
    "clean_string",
    "compare",
    "format_value",
    "get_basic_type",
    "get_max_value",
    "get_min_value",
    "get_python_type",
    "get_type_code",
    "is_value_of_type",
    "truncate_string",
    "try_parse",
]
