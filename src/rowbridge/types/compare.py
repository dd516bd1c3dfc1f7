"""Three-way comparison of values under a logical type.

This is the single comparator used by connectors and by in-memory row
lookups (``Table.row_match``).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from rowbridge.core.models import ErrorKind, Result
from rowbridge.types.codes import FLOAT_TYPES, TypeCode, is_value_of_type
from rowbridge.types.conversion import format_value, try_parse

FLOAT_EPSILON = 0.0001


class CompareResult(str, Enum):
    """Outcome of a three-way comparison."""

    LESS = "less"
    EQUAL = "equal"
    GREATER = "greater"

    def invert(self) -> CompareResult:
        if self == CompareResult.LESS:
            return CompareResult.GREATER
        if self == CompareResult.GREATER:
            return CompareResult.LESS
        return self


def _coerce(type_code: TypeCode, value: Any) -> Result[Any]:
    if is_value_of_type(type_code, value):
        return Result.ok(value)
    return try_parse(type_code, value)


def _ordered(a: Any, b: Any) -> CompareResult:
    if a == b:
        return CompareResult.EQUAL
    return CompareResult.LESS if a < b else CompareResult.GREATER


def compare(type_code: TypeCode, a: Any, b: Any) -> Result[CompareResult]:
    """Compare two values after coercing them to ``type_code``.

    Args:
        type_code: Logical type the comparison is performed under
        a: Left value (may be None)
        b: Right value (may be None)

    Returns:
        Result containing LESS, EQUAL or GREATER, or a CONVERSION failure
        when either side cannot be coerced.
    """
    if a is None and b is None:
        return Result.ok(CompareResult.EQUAL)
    if a is None:
        return Result.ok(CompareResult.LESS)
    if b is None:
        return Result.ok(CompareResult.GREATER)

    left = _coerce(type_code, a)
    if not left.success:
        return left.propagate()
    right = _coerce(type_code, b)
    if not right.success:
        return right.propagate()
    a, b = left.value, right.value

    try:
        if type_code in FLOAT_TYPES:
            if abs(a - b) < FLOAT_EPSILON:
                return Result.ok(CompareResult.EQUAL)
            return Result.ok(CompareResult.LESS if a < b else CompareResult.GREATER)

        match type_code:
            case TypeCode.BINARY:
                # No ordering for binary data, only equality
                return Result.ok(CompareResult.EQUAL if a == b else CompareResult.GREATER)
            case TypeCode.GUID:
                return Result.ok(_ordered(str(a), str(b)))
            case TypeCode.UNKNOWN:
                return Result.ok(_ordered(format_value(a), format_value(b)))
            case _:
                return Result.ok(_ordered(a, b))
    except TypeError as e:
        return Result.fail(
            f"Cannot compare '{a}' with '{b}' as {type_code.value}: {e}",
            kind=ErrorKind.CONVERSION,
            cause=e,
        )
