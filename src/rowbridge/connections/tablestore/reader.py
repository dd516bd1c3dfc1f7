"""Paged reader over a table-store query."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Sequence
from typing import TYPE_CHECKING, Any

from rowbridge.connections.reader import RowReader
from rowbridge.connections.tablestore.entities import from_entity
from rowbridge.connections.tablestore.filters import build_filter_string
from rowbridge.core.exceptions import RowbridgeError
from rowbridge.core.logging import get_logger, record_rows_read
from rowbridge.core.models import ErrorKind, Result
from rowbridge.query import Filter, SelectQuery
from rowbridge.schema import Row, Table

if TYPE_CHECKING:
    from rowbridge.connections.tablestore.connector import TableStoreConnector

logger = get_logger(__name__)


class TableStoreReader(RowReader):
    """Reads one page at a time, following continuation tokens.

    Sorting is not available in the store; a query's sorts are ignored and
    callers sort in memory when they need an order.
    """

    def __init__(self, connector: TableStoreConnector, table: Table):
        super().__init__(table)
        self.connector = connector
        self._pages: AsyncGenerator[tuple[list[Any], Any], None] | None = None
        self._buffer: list[Any] = []
        self._limit = -1

    async def open(self, query: SelectQuery | None = None) -> Result[bool]:
        query = query or SelectQuery()
        ready = await self.connector.ensure_open()
        if not ready.success:
            return ready
        await self.close()

        try:
            filter_string = build_filter_string(query.filters, self.table)
        except RowbridgeError as e:
            return Result.fail(str(e), kind=e.kind, cause=e)
        if query.sorts:
            logger.debug("table_store_sort_ignored", table=self.table.name)

        page_size = self.connector.config.page_size
        if 0 < query.rows < page_size:
            page_size = query.rows
        self._limit = query.rows
        self._pages = self.connector.iterate_pages(
            self.table,
            filter_string,
            page_size=page_size,
        )
        self._buffer = []
        self.error = None
        self.is_open = True
        return Result.ok(True)

    async def _read_row(self) -> Row | None:
        if 0 <= self._limit <= self.rows_read:
            return None
        while not self._buffer:
            if self._pages is None:
                return None
            try:
                entities, token = await anext(self._pages)
            except StopAsyncIteration:
                self._pages = None
                self.table.continuation_token = None
                return None
            self.table.continuation_token = token
            self._buffer = list(entities)
        return from_entity(self.table, self._buffer.pop(0))

    def _read_failure(self, error: Exception) -> Result[Any]:
        return self.connector.failure_result(error, f"Reading {self.table.name} failed.")

    async def _on_exhausted(self) -> None:
        record_rows_read(self.rows_read)
        await self.close()

    async def close(self) -> None:
        await super().close()
        if self._pages is not None:
            await self._pages.aclose()
            self._pages = None
        self._buffer = []

    async def lookup(self, filters: Sequence[Filter]) -> Result[Row]:
        """Fetch the first entity matching ``filters``."""
        ready = await self.connector.ensure_open()
        if not ready.success:
            return ready.propagate()
        try:
            filter_string = build_filter_string(filters, self.table)
            async for entities, _ in self.connector.iterate_pages(
                self.table, filter_string, page_size=1
            ):
                # Pages can be empty while a continuation token remains
                if entities:
                    return Result.ok(from_entity(self.table, entities[0]))
        except Exception as e:
            return self.connector.failure_result(e, f"Lookup on {self.table.name} failed.")
        return Result.fail(
            f"No row in {self.table.name} matched the lookup filters",
            kind=ErrorKind.NOT_FOUND,
        )
