"""Deterministic min/max sentinel values per logical type.

Connectors use these for boundary tests and may override individual types
where the store's practical range is narrower (see
``Connector.get_max_value``).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from rowbridge.types.codes import DOUBLE_MAX, INTEGER_RANGES, SINGLE_MAX, TypeCode

DECIMAL_MAX = Decimal("999999999999999999")
DATETIME_MIN = datetime(1753, 1, 1)
DATETIME_MAX = datetime(9999, 12, 31, 23, 59, 59, 999000)
TIME_MAX = timedelta(days=1) - timedelta(milliseconds=1)


def get_max_value(type_code: TypeCode, length: int = 0) -> Any:
    """Largest representable sentinel for ``type_code``.

    Args:
        type_code: Logical type
        length: String length used for ``String`` sentinels

    Returns:
        The sentinel value, as its Python representation
    """
    if type_code == TypeCode.UINT64:
        # Stores without unsigned 64-bit support cap at the signed maximum
        return INTEGER_RANGES[TypeCode.INT64][1]
    if type_code in INTEGER_RANGES:
        return INTEGER_RANGES[type_code][1]

    match type_code:
        case TypeCode.DECIMAL:
            return DECIMAL_MAX
        case TypeCode.DOUBLE:
            return DOUBLE_MAX / 10
        case TypeCode.SINGLE:
            return SINGLE_MAX / 10
        case TypeCode.STRING:
            return "A" * length
        case TypeCode.BOOLEAN:
            return True
        case TypeCode.DATETIME:
            return DATETIME_MAX
        case TypeCode.TIME:
            return TIME_MAX
        case TypeCode.GUID:
            return UUID("ffffffff-ffff-ffff-ffff-ffffffffffff")
        case TypeCode.BINARY:
            return b"\xff" * 3
    return ""


def get_min_value(type_code: TypeCode) -> Any:
    """Smallest representable sentinel for ``type_code``."""
    if type_code in INTEGER_RANGES:
        return INTEGER_RANGES[type_code][0]

    match type_code:
        case TypeCode.DECIMAL:
            return -DECIMAL_MAX
        case TypeCode.DOUBLE:
            return -DOUBLE_MAX / 10
        case TypeCode.SINGLE:
            return -SINGLE_MAX / 10
        case TypeCode.STRING:
            return ""
        case TypeCode.BOOLEAN:
            return False
        case TypeCode.DATETIME:
            return DATETIME_MIN
        case TypeCode.TIME:
            return timedelta(0)
        case TypeCode.GUID:
            return UUID(int=0)
        case TypeCode.BINARY:
            return b"\x00" * 3
    return ""
