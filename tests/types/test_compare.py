"""Tests for the shared three-way comparator."""

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

import pytest

from rowbridge.core.models import ErrorKind
from rowbridge.types import CompareResult, TypeCode, compare


class TestCompare:
    """Tests for compare()."""

    def test_nulls_sort_first(self):
        assert compare(TypeCode.INT32, None, None).value == CompareResult.EQUAL
        assert compare(TypeCode.INT32, None, 1).value == CompareResult.LESS
        assert compare(TypeCode.INT32, 1, None).value == CompareResult.GREATER

    def test_values_are_coerced(self):
        """Text is parsed to the comparison type before comparing."""
        assert compare(TypeCode.INT32, "10", 9).value == CompareResult.GREATER
        assert compare(TypeCode.STRING, 10, "9").value == CompareResult.LESS

    def test_float_tolerance(self):
        assert compare(TypeCode.DOUBLE, 1.00001, 1.00002).value == CompareResult.EQUAL
        assert compare(TypeCode.DOUBLE, 1.0, 1.1).value == CompareResult.LESS

    def test_binary_is_equality_only(self):
        assert compare(TypeCode.BINARY, b"\x01", b"\x01").value == CompareResult.EQUAL
        assert compare(TypeCode.BINARY, b"\x01", b"\x02").value == CompareResult.GREATER

    def test_conversion_failure(self):
        result = compare(TypeCode.INT32, "abc", 1)
        assert not result.success
        assert result.kind == ErrorKind.CONVERSION

    def test_invert(self):
        assert CompareResult.LESS.invert() == CompareResult.GREATER
        assert CompareResult.GREATER.invert() == CompareResult.LESS
        assert CompareResult.EQUAL.invert() == CompareResult.EQUAL

    @pytest.mark.parametrize(
        "type_code,low,high",
        [
            (TypeCode.INT64, -5, 5),
            (TypeCode.DECIMAL, Decimal("1.10"), Decimal("1.2")),
            (TypeCode.STRING, "apple", "banana"),
            (TypeCode.DATETIME, datetime(2024, 1, 1), datetime(2024, 1, 2)),
            (TypeCode.TIME, timedelta(seconds=1), timedelta(minutes=1)),
            (TypeCode.BOOLEAN, False, True),
            (
                TypeCode.GUID,
                UUID("00000000-0000-0000-0000-000000000001"),
                UUID("00000000-0000-0000-0000-000000000002"),
            ),
        ],
    )
    def test_ordering_is_antisymmetric(self, type_code, low, high):
        """Swapping the operands inverts the result."""
        forward = compare(type_code, low, high)
        backward = compare(type_code, high, low)
        assert forward.value == CompareResult.LESS
        assert backward.value == forward.value.invert()
        assert compare(type_code, low, low).value == CompareResult.EQUAL
