"""Canonical type codes shared by every connector.

``TypeCode`` is the store-independent logical type of a value. Each code
belongs to a ``BasicType`` category, which decides which conversions are
legal (numeric to numeric always, date to numeric only through ticks,
string as the universal parse target).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class TypeCode(str, Enum):
    """Logical data types (the ETypeCode set)."""

    BINARY = "Binary"
    BYTE = "Byte"
    SBYTE = "SByte"
    UINT16 = "UInt16"
    UINT32 = "UInt32"
    UINT64 = "UInt64"
    INT16 = "Int16"
    INT32 = "Int32"
    INT64 = "Int64"
    DECIMAL = "Decimal"
    DOUBLE = "Double"
    SINGLE = "Single"
    STRING = "String"
    BOOLEAN = "Boolean"
    DATETIME = "DateTime"
    TIME = "Time"
    GUID = "Guid"
    UNKNOWN = "Unknown"


class BasicType(str, Enum):
    """Coarse category used to decide which coercions are legal."""

    NUMERIC = "numeric"
    STRING = "string"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    BINARY = "binary"
    UNKNOWN = "unknown"


# Inclusive ranges for the integral codes
INTEGER_RANGES: dict[TypeCode, tuple[int, int]] = {
    TypeCode.BYTE: (0, 255),
    TypeCode.SBYTE: (-128, 127),
    TypeCode.UINT16: (0, 65535),
    TypeCode.UINT32: (0, 4294967295),
    TypeCode.UINT64: (0, 18446744073709551615),
    TypeCode.INT16: (-32768, 32767),
    TypeCode.INT32: (-2147483648, 2147483647),
    TypeCode.INT64: (-9223372036854775808, 9223372036854775807),
}

FLOAT_TYPES = frozenset({TypeCode.DOUBLE, TypeCode.SINGLE})

SINGLE_MAX = 3.4028234663852886e38
DOUBLE_MAX = 1.7976931348623157e308

_BASIC_TYPES: dict[TypeCode, BasicType] = {
    **{code: BasicType.NUMERIC for code in INTEGER_RANGES},
    TypeCode.DECIMAL: BasicType.NUMERIC,
    TypeCode.DOUBLE: BasicType.NUMERIC,
    TypeCode.SINGLE: BasicType.NUMERIC,
    TypeCode.STRING: BasicType.STRING,
    TypeCode.GUID: BasicType.STRING,
    TypeCode.BOOLEAN: BasicType.BOOLEAN,
    TypeCode.DATETIME: BasicType.DATE,
    TypeCode.TIME: BasicType.TIME,
    TypeCode.BINARY: BasicType.BINARY,
    TypeCode.UNKNOWN: BasicType.UNKNOWN,
}

_PYTHON_TYPES: dict[TypeCode, type] = {
    **{code: int for code in INTEGER_RANGES},
    TypeCode.DECIMAL: Decimal,
    TypeCode.DOUBLE: float,
    TypeCode.SINGLE: float,
    TypeCode.STRING: str,
    TypeCode.BOOLEAN: bool,
    TypeCode.DATETIME: datetime,
    TypeCode.TIME: timedelta,
    TypeCode.GUID: UUID,
    TypeCode.BINARY: bytes,
    TypeCode.UNKNOWN: object,
}


def get_basic_type(type_code: TypeCode) -> BasicType:
    """Get the category of a type code."""
    return _BASIC_TYPES[type_code]


def get_python_type(type_code: TypeCode) -> type:
    """Get the Python type values of this code are held as."""
    return _PYTHON_TYPES[type_code]


def is_integer_type(type_code: TypeCode) -> bool:
    return type_code in INTEGER_RANGES


def get_type_code(value: Any) -> TypeCode:
    """Infer the type code of a runtime value.

    ``bool`` is checked before ``int`` because it is a subclass of it.
    """
    match value:
        case bool():
            return TypeCode.BOOLEAN
        case int():
            return TypeCode.INT64
        case float():
            return TypeCode.DOUBLE
        case Decimal():
            return TypeCode.DECIMAL
        case str():
            return TypeCode.STRING
        case datetime() | date():
            return TypeCode.DATETIME
        case timedelta():
            return TypeCode.TIME
        case UUID():
            return TypeCode.GUID
        case bytes() | bytearray():
            return TypeCode.BINARY
        case _:
            return TypeCode.UNKNOWN


def is_value_of_type(type_code: TypeCode, value: Any) -> bool:
    """Whether ``value`` is already held as the Python type of ``type_code``."""
    if type_code == TypeCode.UNKNOWN:
        return True
    if is_integer_type(type_code):
        return isinstance(value, int) and not isinstance(value, bool)
    if type_code in FLOAT_TYPES:
        return isinstance(value, float)
    if type_code == TypeCode.BINARY:
        return isinstance(value, bytes | bytearray)
    if type_code == TypeCode.DATETIME:
        return isinstance(value, datetime)
    return isinstance(value, _PYTHON_TYPES[type_code])
