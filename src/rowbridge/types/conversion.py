"""Value coercion between canonical types.

``try_parse`` never raises for bad data: every failure is returned as a
``Result`` with ``ErrorKind.CONVERSION`` naming the value and target type.
"""

from __future__ import annotations

import base64
import binascii
import re
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from rowbridge.core.models import ErrorKind, Result
from rowbridge.types.codes import (
    INTEGER_RANGES,
    SINGLE_MAX,
    BasicType,
    TypeCode,
    get_basic_type,
    get_type_code,
    is_integer_type,
    is_value_of_type,
)

TICKS_PER_MICROSECOND = 10
TICKS_PER_SECOND = 10_000_000
TICKS_PER_DAY = 86400 * TICKS_PER_SECOND

_TICKS_ORIGIN = datetime(1, 1, 1)

# [-][d.]hh:mm:ss[.fffffff]
_TIMESPAN_PATTERN = re.compile(
    r"^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{2})"
    r"(?::(?P<seconds>\d{2})(?:\.(?P<fraction>\d{1,7}))?)?$"
)
_HEX_PATTERN = re.compile(r"^(?:0x)?(?P<hex>(?:[0-9a-fA-F]{2})*)$")
_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")


class ConversionError(ValueError):
    """Internal signal that a value cannot be represented as the target type."""


# === Ticks (100ns intervals since 0001-01-01) ===


def datetime_to_ticks(value: datetime) -> int:
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    delta = value - _TICKS_ORIGIN
    return timedelta_to_ticks(delta)


def ticks_to_datetime(ticks: int) -> datetime:
    return _TICKS_ORIGIN + timedelta(microseconds=ticks // TICKS_PER_MICROSECOND)


def timedelta_to_ticks(value: timedelta) -> int:
    return (
        (value.days * 86400 + value.seconds) * TICKS_PER_SECOND
        + value.microseconds * TICKS_PER_MICROSECOND
    )


def ticks_to_timedelta(ticks: int) -> timedelta:
    return timedelta(microseconds=ticks // TICKS_PER_MICROSECOND)


# === Canonical text rendering ===


def format_timespan(value: timedelta) -> str:
    """Render a time span as ``[-][d.]hh:mm:ss[.fffffff]``."""
    ticks = timedelta_to_ticks(value)
    sign = "-" if ticks < 0 else ""
    ticks = abs(ticks)
    days, ticks = divmod(ticks, TICKS_PER_DAY)
    seconds, fraction = divmod(ticks, TICKS_PER_SECOND)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    text = f"{sign}{f'{days}.' if days else ''}{hours:02d}:{minutes:02d}:{seconds:02d}"
    if fraction:
        text += f".{fraction:07d}"
    return text


def parse_timespan(text: str) -> timedelta:
    match = _TIMESPAN_PATTERN.match(text.strip())
    if not match:
        raise ConversionError(f"'{text}' is not a valid time span")
    hours = int(match["hours"])
    minutes = int(match["minutes"])
    seconds = int(match["seconds"] or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ConversionError(f"'{text}' is not a valid time span")
    fraction = int((match["fraction"] or "").ljust(7, "0"))
    ticks = (
        int(match["days"] or 0) * TICKS_PER_DAY
        + (hours * 3600 + minutes * 60 + seconds) * TICKS_PER_SECOND
        + fraction
    )
    return ticks_to_timedelta(-ticks if match["sign"] else ticks)


def format_value(value: Any) -> str:
    """Render a value as the text ``try_parse`` reads back."""
    match value:
        case datetime():
            return value.isoformat(sep=" ")
        case date():
            return value.isoformat()
        case timedelta():
            return format_timespan(value)
        case bytes() | bytearray():
            return bytes(value).hex()
        case _:
            return str(value)


# === Name helpers ===


def clean_string(value: str | None) -> str:
    """Remove everything except ASCII letters and digits."""
    if not value:
        return ""
    return _NON_ALPHANUMERIC.sub("", value)


def truncate_string(value: str | None, max_length: int) -> str:
    if not value:
        return ""
    return value[:max_length]


# === Conversion ===


def _check_integer(type_code: TypeCode, number: int) -> int:
    low, high = INTEGER_RANGES[type_code]
    if number < low or number > high:
        raise OverflowError(f"{number} is outside the range of {type_code.value} ({low}..{high})")
    return number


def _convert_number(type_code: TypeCode, number: Any) -> Any:
    """Checked numeric to numeric conversion."""
    if isinstance(number, bool):
        number = int(number)

    if is_integer_type(type_code):
        if isinstance(number, float | Decimal):
            if number != number or number in (float("inf"), float("-inf")):
                raise ConversionError(f"{number} is not a finite number")
            if number != int(number):
                raise ConversionError(f"{number} has a fractional part")
            number = int(number)
        return _check_integer(type_code, number)

    if type_code == TypeCode.DECIMAL:
        if isinstance(number, float):
            return Decimal(repr(number))
        return Decimal(number)

    result = float(number)
    if type_code == TypeCode.SINGLE and abs(result) > SINGLE_MAX and result != float("inf"):
        raise OverflowError(f"{number} is outside the range of Single")
    return result


def _parse_boolean(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return _boolean_from_number(int(lowered))


def _boolean_from_number(number: Any) -> bool:
    if number == 0:
        return False
    if number in (1, -1):
        return True
    raise ConversionError(f"{number} is not a boolean value (expected 0, 1 or -1)")


def _parse_binary(text: str) -> bytes:
    stripped = text.strip()
    match = _HEX_PATTERN.match(stripped)
    if match:
        return bytes.fromhex(match["hex"])
    try:
        return base64.b64decode(stripped, validate=True)
    except binascii.Error as e:
        raise ConversionError(f"'{text}' is neither hex nor base64") from e


def _parse_datetime(text: str) -> datetime:
    return datetime.fromisoformat(text.strip())


def _parse_text(type_code: TypeCode, text: str) -> Any:
    """Parse a string into the target type."""
    if is_integer_type(type_code):
        stripped = text.strip()
        try:
            return _check_integer(type_code, int(stripped))
        except ValueError:
            return _convert_number(type_code, Decimal(stripped))

    match type_code:
        case TypeCode.DECIMAL:
            return Decimal(text.strip())
        case TypeCode.DOUBLE | TypeCode.SINGLE:
            return _convert_number(type_code, float(text))
        case TypeCode.BOOLEAN:
            return _parse_boolean(text)
        case TypeCode.DATETIME:
            return _parse_datetime(text)
        case TypeCode.TIME:
            return parse_timespan(text)
        case TypeCode.GUID:
            return UUID(text.strip())
        case TypeCode.BINARY:
            return _parse_binary(text)
    raise ConversionError(f"no text parser for {type_code.value}")


def _convert(type_code: TypeCode, value: Any) -> Any:
    if isinstance(value, str):
        return _parse_text(type_code, value)

    target = get_basic_type(type_code)
    source_code = get_type_code(value)
    source = get_basic_type(source_code)

    if target == BasicType.NUMERIC:
        if source in (BasicType.NUMERIC, BasicType.BOOLEAN):
            return _convert_number(type_code, value)
        if isinstance(value, datetime):
            return _convert_number(type_code, datetime_to_ticks(value))
    elif target == BasicType.BOOLEAN and source == BasicType.NUMERIC:
        return _boolean_from_number(value)
    elif target == BasicType.DATE:
        if source == BasicType.NUMERIC:
            return ticks_to_datetime(int(value))
        if isinstance(value, date):
            return datetime.combine(value, time())
    elif type_code == TypeCode.BINARY and isinstance(value, bytearray):
        return bytes(value)

    raise ConversionError(f"cannot convert a {source_code.value} value to {type_code.value}")


def try_parse(type_code: TypeCode, value: Any, max_length: int | None = None) -> Result[Any]:
    """Convert ``value`` to the Python representation of ``type_code``.

    Args:
        type_code: Target logical type
        value: Value to convert; ``None`` passes through
        max_length: Maximum length for ``String`` targets

    Returns:
        Result containing the converted value, or a CONVERSION failure
    """
    if value is None or type_code == TypeCode.UNKNOWN:
        return Result.ok(value)

    if type_code == TypeCode.STRING:
        text = value if isinstance(value, str) else format_value(value)
        if max_length and len(text) > max_length:
            return Result.fail(
                f"The value '{text}' exceeds the maximum string length of {max_length}.",
                kind=ErrorKind.CONVERSION,
            )
        return Result.ok(text)

    try:
        if is_value_of_type(type_code, value):
            if is_integer_type(type_code):
                return Result.ok(_check_integer(type_code, value))
            if type_code == TypeCode.SINGLE:
                return Result.ok(_convert_number(type_code, value))
            return Result.ok(value)
        return Result.ok(_convert(type_code, value))
    except (ValueError, ArithmeticError, TypeError, InvalidOperation) as e:
        return Result.fail(
            f"The value '{value}' could not be converted to {type_code.value}: {e}",
            kind=ErrorKind.CONVERSION,
            cause=e,
        )


def convert_or_raise(type_code: TypeCode, value: Any, max_length: int | None = None) -> Any:
    """``try_parse`` for callers that treat a bad value as a programming error."""
    result = try_parse(type_code, value, max_length)
    if not result.success:
        raise ConversionError(result.error)
    return result.value


__all__ = [
    "ConversionError",
    "clean_string",
    "convert_or_raise",
    "datetime_to_ticks",
    "format_timespan",
    "format_value",
    "parse_timespan",
    "ticks_to_datetime",
    "ticks_to_timedelta",
    "timedelta_to_ticks",
    "truncate_string",
    "try_parse",
]
