"""SQL dialects: identifier quoting, literal rendering and type mapping.

Each dialect is a small stateless object. ``get_dialect`` picks one from a
SQLAlchemy URL.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID

from sqlalchemy.engine import make_url

from rowbridge.query import Aggregate, CompareOperator, SelectColumn
from rowbridge.schema import Column, Table
from rowbridge.types import TypeCode, format_value
from rowbridge.types.conversion import format_timespan

_SQL_OPERATORS: dict[CompareOperator, str] = {
    CompareOperator.EQUAL: "=",
    CompareOperator.NOT_EQUAL: "!=",
    CompareOperator.LESS: "<",
    CompareOperator.LESS_EQUAL: "<=",
    CompareOperator.GREATER: ">",
    CompareOperator.GREATER_EQUAL: ">=",
    CompareOperator.IS_IN: "IN",
}

_AGGREGATES: dict[Aggregate, str] = {
    Aggregate.SUM: "sum",
    Aggregate.AVERAGE: "avg",
    Aggregate.MIN: "min",
    Aggregate.MAX: "max",
    Aggregate.COUNT: "count",
}

_NUMERIC_LITERALS = frozenset(
    {
        TypeCode.BYTE,
        TypeCode.SBYTE,
        TypeCode.UINT16,
        TypeCode.UINT32,
        TypeCode.UINT64,
        TypeCode.INT16,
        TypeCode.INT32,
        TypeCode.INT64,
        TypeCode.DECIMAL,
        TypeCode.DOUBLE,
        TypeCode.SINGLE,
    }
)

# Native type name (lower case, without arguments) -> type code
_SQL_TYPE_CODES: dict[str, TypeCode] = {
    "tinyint": TypeCode.BYTE,
    "smallint": TypeCode.INT16,
    "int": TypeCode.INT32,
    "integer": TypeCode.INT32,
    "mediumint": TypeCode.INT32,
    "bigint": TypeCode.INT64,
    "decimal": TypeCode.DECIMAL,
    "numeric": TypeCode.DECIMAL,
    "money": TypeCode.DECIMAL,
    "float": TypeCode.DOUBLE,
    "double": TypeCode.DOUBLE,
    "double precision": TypeCode.DOUBLE,
    "real": TypeCode.SINGLE,
    "bit": TypeCode.BOOLEAN,
    "bool": TypeCode.BOOLEAN,
    "boolean": TypeCode.BOOLEAN,
    "date": TypeCode.DATETIME,
    "datetime": TypeCode.DATETIME,
    "datetime2": TypeCode.DATETIME,
    "smalldatetime": TypeCode.DATETIME,
    "timestamp": TypeCode.DATETIME,
    "timestamp without time zone": TypeCode.DATETIME,
    "timestamp with time zone": TypeCode.DATETIME,
    "time": TypeCode.TIME,
    "interval": TypeCode.TIME,
    "uniqueidentifier": TypeCode.GUID,
    "uuid": TypeCode.GUID,
    "blob": TypeCode.BINARY,
    "binary": TypeCode.BINARY,
    "varbinary": TypeCode.BINARY,
    "bytea": TypeCode.BINARY,
    "image": TypeCode.BINARY,
    "char": TypeCode.STRING,
    "nchar": TypeCode.STRING,
    "varchar": TypeCode.STRING,
    "nvarchar": TypeCode.STRING,
    "character varying": TypeCode.STRING,
    "text": TypeCode.STRING,
    "ntext": TypeCode.STRING,
    "clob": TypeCode.STRING,
}

_TYPE_NAME = re.compile(r"^\s*([a-zA-Z][a-zA-Z0-9 ]*?)\s*(?:\(.*\))?\s*$")


class SqlDialect:
    """Base dialect with ANSI quoting."""

    name: ClassVar[str] = "ansi"
    delimiter_open: ClassVar[str] = '"'
    delimiter_close: ClassVar[str] = '"'
    value_open: ClassVar[str] = "'"
    value_close: ClassVar[str] = "'"
    no_lock_hint: ClassVar[str] = ""
    supports_comments: ClassVar[bool] = False
    truncate_keyword: ClassVar[str] = "DELETE FROM"

    # === Identifiers and literals ===

    def add_escape(self, value: str) -> str:
        """Double embedded single quotes."""
        return value.replace("'", "''")

    def add_delimiter(self, name: str) -> str:
        """Wrap an identifier in delimiters unless it is already wrapped."""
        new_name = self.add_escape(name)
        if not new_name.startswith(self.delimiter_open):
            new_name = self.delimiter_open + new_name
        if not new_name.endswith(self.delimiter_close) or len(new_name) == 1:
            new_name = new_name + self.delimiter_close
        return new_name

    def table_name(self, table: Table | str) -> str:
        if isinstance(table, str):
            return self.add_delimiter(table)
        if table.schema_name:
            return f"{self.add_delimiter(table.schema_name)}.{self.add_delimiter(table.name)}"
        return self.add_delimiter(table.name)

    def quote_value(self, text: str) -> str:
        return f"{self.value_open}{self.add_escape(text)}{self.value_close}"

    def get_sql_field_value_quote(self, type_code: TypeCode, value: Any) -> str:
        """Render a value as an inline SQL literal."""
        if value is None:
            return "null"
        if type_code in _NUMERIC_LITERALS:
            return self.add_escape(format_value(value))
        if type_code == TypeCode.BOOLEAN:
            return self.quote_value(format_value(value))
        if type_code == TypeCode.BINARY and isinstance(value, bytes | bytearray):
            return f"X'{bytes(value).hex()}'"
        return self.quote_value(format_value(value))

    def convert_parameter_type(self, value: Any) -> Any:
        """Adapt a Python value to what the driver accepts as a parameter."""
        return value

    # === Clauses ===

    def compare_operator(self, operator: CompareOperator) -> str:
        return _SQL_OPERATORS[operator]

    def aggregate_expression(self, select_column: SelectColumn) -> str:
        name = self.add_delimiter(select_column.column.name)
        if select_column.aggregate == Aggregate.NONE:
            return name
        return f"{_AGGREGATES[select_column.aggregate]}({name})"

    def limit_prefix(self, rows: int) -> str:
        """Text placed straight after SELECT (e.g. ``TOP n``)."""
        return ""

    def limit_suffix(self, rows: int) -> str:
        """Text placed at the end of the statement (e.g. ``LIMIT n``)."""
        return f" LIMIT {rows}" if rows >= 0 else ""

    def from_attribute(self, table: Table) -> str:
        return self.no_lock_hint

    # === Types ===

    def get_sql_type(self, column: Column) -> str:
        raise NotImplementedError

    def convert_sql_to_type_code(self, sql_type: str) -> TypeCode:
        """Map a native column type (e.g. ``NVARCHAR(25)``) to a type code."""
        match = _TYPE_NAME.match(sql_type or "")
        if not match:
            return TypeCode.UNKNOWN
        return _SQL_TYPE_CODES.get(match.group(1).lower(), TypeCode.UNKNOWN)


class SqliteDialect(SqlDialect):
    """SQLite: double-quoted identifiers, no comments, text for guid/time."""

    name = "sqlite"

    def get_sql_type(self, column: Column) -> str:
        match column.type_code:
            case TypeCode.INT32 | TypeCode.UINT16:
                return "int"
            case TypeCode.BYTE:
                return "tinyint"
            case TypeCode.INT16 | TypeCode.SBYTE:
                return "smallint"
            case TypeCode.INT64 | TypeCode.UINT32:
                return "bigint"
            case TypeCode.STRING:
                return f"nvarchar({column.max_length})" if column.max_length else "text"
            case TypeCode.SINGLE | TypeCode.DOUBLE:
                return "float"
            case TypeCode.UINT64:
                return "nvarchar(25)"
            case TypeCode.BOOLEAN:
                return "boolean"
            case TypeCode.DATETIME:
                return "datetime"
            case TypeCode.TIME | TypeCode.GUID | TypeCode.UNKNOWN:
                return "text"
            case TypeCode.BINARY:
                return "blob"
            case TypeCode.DECIMAL:
                return f"decimal({column.precision or 28},{column.scale or 0})"
        raise ValueError(f"The datatype {column.type_code.value} is not supported by SQLite")

    def convert_parameter_type(self, value: Any) -> Any:
        # sqlite3 binds only int, float, str, bytes and None
        match value:
            case bool():
                return int(value)
            case datetime():
                return value.isoformat(sep=" ")
            case timedelta():
                return format_timespan(value)
            case UUID() | Decimal():
                return str(value)
            case int() if value > 9223372036854775807:
                return str(value)
            case bytearray():
                return bytes(value)
        return value


class PostgresDialect(SqlDialect):
    """PostgreSQL: native comments, TRUNCATE, typed parameters."""

    name = "postgresql"
    supports_comments = True
    truncate_keyword = "TRUNCATE TABLE"

    def get_sql_type(self, column: Column) -> str:
        match column.type_code:
            case TypeCode.INT32 | TypeCode.UINT16:
                return "int"
            case TypeCode.BYTE | TypeCode.INT16 | TypeCode.SBYTE:
                return "smallint"
            case TypeCode.INT64 | TypeCode.UINT32:
                return "bigint"
            case TypeCode.UINT64:
                return "numeric(20,0)"
            case TypeCode.STRING:
                return f"varchar({column.max_length})" if column.max_length else "text"
            case TypeCode.SINGLE:
                return "real"
            case TypeCode.DOUBLE:
                return "double precision"
            case TypeCode.BOOLEAN:
                return "bool"
            case TypeCode.DATETIME:
                return "timestamp"
            case TypeCode.TIME:
                return "interval"
            case TypeCode.GUID:
                return "uuid"
            case TypeCode.BINARY:
                return "bytea"
            case TypeCode.UNKNOWN:
                return "text"
            case TypeCode.DECIMAL:
                return f"numeric({column.precision or 28},{column.scale or 0})"
        raise ValueError(f"The datatype {column.type_code.value} is not supported by PostgreSQL")

    def convert_parameter_type(self, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool) and value > 9223372036854775807:
            return Decimal(value)
        return value


class SqlServerDialect(SqlDialect):
    """SQL Server: bracket identifiers, NOLOCK reads, TOP row limits."""

    name = "mssql"
    delimiter_open = "["
    delimiter_close = "]"
    no_lock_hint = " WITH (NOLOCK)"
    truncate_keyword = "TRUNCATE TABLE"

    def limit_prefix(self, rows: int) -> str:
        return f"TOP {rows} " if rows >= 0 else ""

    def limit_suffix(self, rows: int) -> str:
        return ""

    def get_sql_field_value_quote(self, type_code: TypeCode, value: Any) -> str:
        if value is not None and type_code == TypeCode.DATETIME:
            if isinstance(value, datetime):
                text = value.strftime("%Y-%m-%d %H:%M:%S.%f")[:-4]
            else:
                text = str(value)
            return f"convert(datetime, {self.quote_value(text)})"
        if value is not None and type_code == TypeCode.TIME:
            return f"convert(time, {self.quote_value(format_value(value))})"
        return super().get_sql_field_value_quote(type_code, value)

    def get_sql_type(self, column: Column) -> str:
        match column.type_code:
            case TypeCode.INT32 | TypeCode.UINT16:
                return "int"
            case TypeCode.BYTE:
                return "tinyint"
            case TypeCode.INT16 | TypeCode.SBYTE:
                return "smallint"
            case TypeCode.INT64 | TypeCode.UINT32:
                return "bigint"
            case TypeCode.STRING:
                return f"nvarchar({column.max_length})" if column.max_length else "nvarchar(max)"
            case TypeCode.SINGLE | TypeCode.DOUBLE:
                return "float"
            case TypeCode.UINT64:
                return "DECIMAL(20,0)"
            case TypeCode.BOOLEAN:
                return "bit"
            case TypeCode.DATETIME:
                return "datetime"
            case TypeCode.TIME:
                return "time(7)"
            case TypeCode.GUID:
                return "uniqueidentifier"
            case TypeCode.BINARY:
                return "varbinary(max)"
            case TypeCode.UNKNOWN:
                return "nvarchar(max)"
            case TypeCode.DECIMAL:
                return f"decimal({column.precision or 28},{column.scale or 0})"
        raise ValueError(f"The datatype {column.type_code.value} is not supported by SQL Server")

    def convert_parameter_type(self, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool) and value > 9223372036854775807:
            return Decimal(value)
        return value


_DIALECTS: dict[str, type[SqlDialect]] = {
    "sqlite": SqliteDialect,
    "postgresql": PostgresDialect,
    "mssql": SqlServerDialect,
}


def get_dialect(url_or_backend: str) -> SqlDialect:
    """Choose the dialect for a SQLAlchemy URL or backend name.

    Unknown backends fall back to the SQLite dialect.
    """
    backend = url_or_backend
    if "://" in url_or_backend:
        backend = make_url(url_or_backend).get_backend_name()
    dialect_class = _DIALECTS.get(backend)
    if dialect_class is None:
        return SqliteDialect()
    return dialect_class()
