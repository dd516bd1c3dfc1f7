"""Relational connector built on SQLAlchemy."""

from rowbridge.connections.sql.builder import SqlStatement, SqlStatementBuilder
from rowbridge.connections.sql.connector import SqlConnectionConfig, SqlConnector
from rowbridge.connections.sql.dialect import (
    PostgresDialect,
    SqlDialect,
    SqliteDialect,
    SqlServerDialect,
    get_dialect,
)
from rowbridge.connections.sql.reader import SqlReader

__all__ = [
    "PostgresDialect",
    "SqlConnectionConfig",
    "SqlConnector",
    "SqlDialect",
    "SqlReader",
    "SqlServerDialect",
    "SqlStatement",
    "SqlStatementBuilder",
    "SqliteDialect",
    "get_dialect",
]
