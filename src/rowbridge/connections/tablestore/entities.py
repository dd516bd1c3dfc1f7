"""Conversion between table rows and table-store entities.

The store keeps a narrower set of property types than ``TypeCode``:

    Byte, SByte, Int16, Int32, UInt16  -> Int32
    UInt32, Int64, UInt64              -> Int64
    Time                               -> Int64 (ticks)
    Decimal, Unknown                   -> String
    Single, Double                     -> Double

Null values are not written; a missing property reads back as None.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from azure.data.tables import EdmType, EntityProperty, TableEntity

from rowbridge.core.exceptions import ValidationError, ValueConversionError
from rowbridge.schema import Column, Role, Row, Table
from rowbridge.types import TypeCode, format_value, try_parse
from rowbridge.types.conversion import ticks_to_timedelta, timedelta_to_ticks

PARTITION_KEY = "PartitionKey"
ROW_KEY = "RowKey"
TIMESTAMP = "Timestamp"

# Columns whose values live in the entity envelope rather than its properties
SYSTEM_ROLES = frozenset({Role.PARTITION_KEY, Role.ROW_KEY, Role.TIMESTAMP})

_INT32_TYPES = frozenset(
    {TypeCode.BYTE, TypeCode.SBYTE, TypeCode.INT16, TypeCode.INT32, TypeCode.UINT16}
)
_INT64_TYPES = frozenset({TypeCode.UINT32, TypeCode.INT64, TypeCode.UINT64})
_INT64_MAX = 9223372036854775807


def to_property(column: Column, value: Any) -> Any:
    """Convert a value of ``column`` to what the store keeps for it."""
    converted = try_parse(column.type_code, value)
    if not converted.success:
        raise ValueConversionError(f"Column {column.name}: {converted.error}")
    value = converted.value
    if value is None:
        return None

    type_code = column.type_code
    if type_code in _INT32_TYPES:
        return EntityProperty(int(value), EdmType.INT32)
    if type_code in _INT64_TYPES:
        if value > _INT64_MAX:
            raise ValueConversionError(
                f"Column {column.name}: {value} is larger than the store's Int64 maximum"
            )
        return EntityProperty(int(value), EdmType.INT64)
    match type_code:
        case TypeCode.TIME:
            return EntityProperty(timedelta_to_ticks(value), EdmType.INT64)
        case TypeCode.DECIMAL | TypeCode.UNKNOWN:
            return format_value(value)
        case TypeCode.SINGLE | TypeCode.DOUBLE:
            return EntityProperty(float(value), EdmType.DOUBLE)
        case TypeCode.GUID:
            return EntityProperty(str(value), EdmType.GUID)
        case TypeCode.DATETIME:
            if value.tzinfo is None:
                value = value.replace(tzinfo=UTC)
            return value
    return value


def from_property(type_code: TypeCode, value: Any) -> Any:
    """Convert a stored property back to the column's Python type."""
    if isinstance(value, EntityProperty):
        value = value.value
    if value is None:
        return None
    if type_code == TypeCode.TIME and isinstance(value, int):
        return ticks_to_timedelta(value)
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = datetime(
            *value.astimezone(UTC).timetuple()[:6], microsecond=value.microsecond
        )
    converted = try_parse(type_code, value)
    if not converted.success:
        raise ValueConversionError(converted.error or "conversion failed")
    return converted.value


def format_key(value: Any) -> str:
    return format_value(value)


def resolve_keys(
    table: Table, values: Mapping[str, Any], default_partition: str
) -> tuple[str, str]:
    """Partition and row key for a row being written.

    The row key is the explicit row-key value, else the surrogate-key
    value, else a new UUID. The partition key falls back to
    ``default_partition``.
    """
    partition_column = table.get_column_by_role(Role.PARTITION_KEY)
    partition = values.get(partition_column.name) if partition_column else None
    if partition is None or partition == "":
        partition = default_partition

    row_key_column = table.get_column_by_role(Role.ROW_KEY)
    row_key = values.get(row_key_column.name) if row_key_column else None
    if row_key is None or row_key == "":
        surrogate = table.get_column_by_role(Role.SURROGATE_KEY)
        surrogate_value = values.get(surrogate.name) if surrogate else None
        if surrogate_value is not None:
            row_key = surrogate_value
        else:
            row_key = uuid.uuid4()
    return format_key(partition), format_key(row_key)


def to_entity(
    table: Table, values: Mapping[str, Any], default_partition: str
) -> dict[str, Any]:
    """Build an entity from column values keyed by column name.

    Raises:
        ValidationError: If a value names a column the table lacks
        ValueConversionError: If a value does not fit its column
    """
    partition, row_key = resolve_keys(table, values, default_partition)
    entity: dict[str, Any] = {PARTITION_KEY: partition, ROW_KEY: row_key}
    for name, value in values.items():
        column = table.get_column(name)
        if column is None:
            raise ValidationError(f"The column {name} does not exist in table {table.name}")
        if column.role in SYSTEM_ROLES or column.role == Role.IGNORE_FIELD:
            continue
        stored = to_property(column, value)
        if stored is not None:
            entity[column.name] = stored
    return entity


def row_to_values(table: Table, row: Row) -> dict[str, Any]:
    return {column.name: row[ordinal] for ordinal, column in enumerate(table.columns)}


def from_entity(table: Table, entity: Mapping[str, Any]) -> Row:
    """Lay an entity out as a row of ``table``."""
    row: Row = [None] * len(table.columns)
    for ordinal, column in enumerate(table.columns):
        match column.role:
            case Role.PARTITION_KEY:
                row[ordinal] = entity.get(PARTITION_KEY)
            case Role.ROW_KEY:
                row[ordinal] = entity.get(ROW_KEY)
            case Role.TIMESTAMP:
                metadata = getattr(entity, "metadata", None) or {}
                row[ordinal] = from_property(TypeCode.DATETIME, metadata.get("timestamp"))
            case _:
                row[ordinal] = from_property(column.type_code, entity.get(column.name))
    return row


def apply_values(table: Table, entity: TableEntity, values: Mapping[str, Any]) -> TableEntity:
    """Overwrite properties (or keys) of an existing entity in place."""
    for name, value in values.items():
        column = table.get_column(name)
        if column is None:
            raise ValidationError(f"The column {name} does not exist in table {table.name}")
        match column.role:
            case Role.PARTITION_KEY:
                entity[PARTITION_KEY] = format_key(value)
            case Role.ROW_KEY:
                entity[ROW_KEY] = format_key(value)
            case Role.TIMESTAMP | Role.IGNORE_FIELD:
                continue
            case _:
                stored = to_property(column, value)
                if stored is None:
                    entity.pop(column.name, None)
                else:
                    entity[column.name] = stored
    return entity


def column_from_property(name: str, value: Any) -> Column:
    """Describe a column from a sample property value."""
    if isinstance(value, EntityProperty):
        type_code = {
            EdmType.INT64: TypeCode.INT64,
            EdmType.INT32: TypeCode.INT32,
            EdmType.DOUBLE: TypeCode.DOUBLE,
            EdmType.GUID: TypeCode.GUID,
            EdmType.BOOLEAN: TypeCode.BOOLEAN,
            EdmType.DATETIME: TypeCode.DATETIME,
            EdmType.BINARY: TypeCode.BINARY,
        }.get(value.edm_type, TypeCode.STRING)
    else:
        match value:
            case bool():
                type_code = TypeCode.BOOLEAN
            case int():
                type_code = TypeCode.INT32 if abs(value) <= 2147483647 else TypeCode.INT64
            case float():
                type_code = TypeCode.DOUBLE
            case datetime():
                type_code = TypeCode.DATETIME
            case uuid.UUID():
                type_code = TypeCode.GUID
            case bytes():
                type_code = TypeCode.BINARY
            case _:
                type_code = TypeCode.STRING
    return Column(name=name, type_code=type_code)
