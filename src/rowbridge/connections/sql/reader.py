"""Streaming reader over a SELECT statement."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.engine import Row as SqlRow
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncResult

from rowbridge.connections.reader import RowReader
from rowbridge.core.exceptions import ValueConversionError
from rowbridge.core.logging import get_logger, increment_statement, record_rows_read
from rowbridge.core.models import ErrorKind, Result
from rowbridge.query import Filter, SelectQuery
from rowbridge.schema import Role, Row, Table
from rowbridge.types import try_parse

if TYPE_CHECKING:
    from rowbridge.connections.sql.connector import SqlConnector

logger = get_logger(__name__)


class SqlReader(RowReader):
    """Forward-only reader that keeps one connection while open.

    Rows are laid out like the reader's table. Columns the query did not
    select are None.
    """

    def __init__(self, connector: SqlConnector, table: Table):
        super().__init__(table)
        self.connector = connector
        self._conn: AsyncConnection | None = None
        self._result: AsyncResult[Any] | None = None
        self._targets: list[int] = []

    def _projection(self, query: SelectQuery) -> list[int]:
        if query.columns:
            return [self.table.get_ordinal(c.column) for c in query.columns]
        return [
            ordinal
            for ordinal, column in enumerate(self.table.columns)
            if column.role != Role.IGNORE_FIELD
        ]

    def _convert(self, record: SqlRow[Any]) -> Row:
        row: Row = [None] * len(self.table.columns)
        for value, ordinal in zip(record, self._targets, strict=False):
            if ordinal < 0:
                continue
            column = self.table.columns[ordinal]
            converted = try_parse(column.type_code, value)
            if not converted.success:
                raise ValueConversionError(f"Column {column.name}: {converted.error}")
            row[ordinal] = converted.value
        return row

    async def open(self, query: SelectQuery | None = None) -> Result[bool]:
        query = query or SelectQuery()
        ready = await self.connector.ensure_open()
        if not ready.success:
            return ready
        await self.close()

        try:
            statement = self.connector.builder.build_select(self.table, query)
        except ValueError as e:
            return Result.fail(
                f"Failed to build the select for {self.table.name}: {e}",
                kind=ErrorKind.CONVERSION,
                cause=e,
            )

        self._targets = self._projection(query)
        self.error = None
        try:
            self._conn = await self.connector.engine.connect()
            self._result = await self._conn.stream(text(statement.text), statement.params)
        except SQLAlchemyError as e:
            await self.close()
            if self.connector.is_connection_failure(e):
                self.connector.mark_broken(e)
                kind = ErrorKind.UNREACHABLE
            else:
                kind = ErrorKind.UNEXPECTED
            return Result.fail(
                f"The reader for {self.table.name} could not be opened. {e}",
                kind=kind,
                cause=e,
                statement=statement.render(self.connector.dialect),
            )
        increment_statement()
        self.is_open = True
        logger.debug("sql_reader_opened", table=self.table.name, rows=query.rows)
        return Result.ok(True)

    async def _read_row(self) -> Row | None:
        if self._result is None:
            return None
        record = await self._result.fetchone()
        if record is None:
            return None
        return self._convert(record)

    def _read_failure(self, error: Exception) -> Result[Any]:
        return self.connector.failure_result(error, f"Reading {self.table.name} failed.")

    async def _on_exhausted(self) -> None:
        record_rows_read(self.rows_read)
        await self.close()

    async def close(self) -> None:
        await super().close()
        if self._result is not None:
            await self._result.close()
            self._result = None
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def lookup(self, filters: Sequence[Filter]) -> Result[Row]:
        """Run a one-row SELECT with ``filters`` on its own connection."""
        query = SelectQuery(filters=list(filters), rows=1)
        lookup_reader = SqlReader(self.connector, self.table)
        opened = await lookup_reader.open(query)
        if not opened.success:
            return opened.propagate()
        try:
            found = await lookup_reader.read()
            if lookup_reader.error is not None:
                return lookup_reader.error.propagate()
            if not found:
                return Result.fail(
                    f"No row in {self.table.name} matched the lookup filters",
                    kind=ErrorKind.NOT_FOUND,
                )
            assert lookup_reader.current is not None
            return Result.ok(lookup_reader.current)
        finally:
            await lookup_reader.close()
