"""Row cursors: the reader contract and an in-memory implementation."""

from __future__ import annotations

import functools
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from rowbridge.core.exceptions import RowbridgeError, SourceReadError
from rowbridge.core.logging import get_logger
from rowbridge.core.models import ErrorKind, Result
from rowbridge.query import Filter, SelectQuery, SortDirection
from rowbridge.schema import Row, Table
from rowbridge.types import CompareResult, compare

logger = get_logger(__name__)


@runtime_checkable
class BulkSource(Protocol):
    """Anything a bulk loader can stream rows from."""

    @property
    def field_count(self) -> int: ...

    async def read(self) -> bool: ...

    def value(self, ordinal: int) -> Any: ...

    def column_names(self) -> list[str]: ...


def check_source(source: BulkSource) -> None:
    """Raise ``SourceReadError`` when ``source`` stopped on a row it could not read."""
    error = getattr(source, "error", None)
    if error is not None:
        raise SourceReadError(
            f"The source stopped on a row it could not read. {error.error}",
            kind=error.kind or ErrorKind.UNEXPECTED,
        )


class RowReader(ABC):
    """Forward-only cursor over a table's rows.

    Column ordinals are resolved per reader instance; readers share no
    state with each other.
    """

    def __init__(self, table: Table):
        self.table = table
        self.current: Row | None = None
        self.is_open = False
        self.rows_read = 0
        self.error: Result[Any] | None = None
        self._ordinals: dict[str, int] = {}

    @abstractmethod
    async def open(self, query: SelectQuery | None = None) -> Result[bool]:
        """Start reading, optionally restricted by ``query``."""

    @abstractmethod
    async def _read_row(self) -> Row | None:
        """Fetch the next row, or None when exhausted."""

    @abstractmethod
    async def lookup(self, filters: Sequence[Filter]) -> Result[Row]:
        """Fetch a single row matching ``filters`` without a full read."""

    async def read(self) -> bool:
        """Advance one row; False once the cursor is exhausted or has failed.

        A row that cannot be read closes the cursor and leaves the failure
        in ``error``.
        """
        if not self.is_open:
            return False
        try:
            row = await self._read_row()
        except Exception as e:
            self.error = self._read_failure(e)
            logger.warning("reader_failed", table=self.table.name, error=self.error.error)
            await self.close()
            return False
        if row is None:
            self.current = None
            await self._on_exhausted()
            return False
        self.current = row
        self.rows_read += 1
        return True

    def _read_failure(self, error: Exception) -> Result[Any]:
        """Outcome for an error raised while reading a row."""
        if isinstance(error, RowbridgeError):
            return Result.fail(str(error), kind=error.kind, cause=error, statement=error.statement)
        return Result.fail(
            f"Reading {self.table.name} failed. {error}",
            kind=ErrorKind.UNEXPECTED,
            cause=error,
        )

    async def _on_exhausted(self) -> None:  # noqa: B027
        """Hook run once the last row has been read."""

    async def close(self) -> None:
        self.is_open = False
        self.current = None

    @property
    def field_count(self) -> int:
        return len(self.table.columns)

    def column_names(self) -> list[str]:
        return self.table.columns.names()

    def get_ordinal(self, name: str) -> int:
        if name not in self._ordinals:
            self._ordinals[name] = self.table.get_ordinal(name)
        return self._ordinals[name]

    def value(self, ordinal: int) -> Any:
        if self.current is None:
            raise IndexError("No current row; call read() first")
        return self.current[ordinal]

    def __getitem__(self, name: str) -> Any:
        return self.value(self.get_ordinal(name))

    def __aiter__(self) -> RowReader:
        return self

    async def __anext__(self) -> Row:
        if await self.read():
            assert self.current is not None
            return self.current
        raise StopAsyncIteration


def sort_rows(table: Table, rows: list[Row], query: SelectQuery) -> list[Row]:
    """Stable in-memory sort using the shared comparator."""
    for sort in reversed(query.sorts):
        ordinal = table.get_ordinal(sort.column)
        if ordinal < 0:
            raise KeyError(f"Sort column {sort.column.name} not found in table {table.name}")
        type_code = table.columns[ordinal].type_code

        def _cmp(a: Row, b: Row, ordinal: int = ordinal, type_code: Any = type_code) -> int:
            result = compare(type_code, a[ordinal], b[ordinal])
            if not result.success:
                raise ValueError(result.error)
            if result.value == CompareResult.LESS:
                return -1
            return 1 if result.value == CompareResult.GREATER else 0

        rows = sorted(
            rows,
            key=functools.cmp_to_key(_cmp),
            reverse=sort.direction == SortDirection.DESCENDING,
        )
    return rows


class TableReader(RowReader):
    """Reader over the row buffer of an in-memory ``Table``.

    Filters, sorts and the row limit of the query are applied in memory.
    Also serves as the source for bulk loads and cache lookups.
    """

    def __init__(self, table: Table):
        super().__init__(table)
        self._rows: list[Row] = []
        self._position = 0

    async def open(self, query: SelectQuery | None = None) -> Result[bool]:
        rows = list(self.table.rows)
        try:
            if query is not None:
                if query.filters:
                    rows = [row for row in rows if self.table.row_match(query.filters, row)]
                if query.sorts:
                    rows = sort_rows(self.table, rows, query)
                if query.rows >= 0:
                    rows = rows[: query.rows]
        except (KeyError, ValueError) as e:
            return Result.fail(
                f"Failed to open reader on {self.table.name}: {e}",
                kind=ErrorKind.CONVERSION,
                cause=e,
            )
        self._rows = rows
        self._position = 0
        self.error = None
        self.is_open = True
        return Result.ok(True)

    async def _read_row(self) -> Row | None:
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return row

    async def lookup(self, filters: Sequence[Filter]) -> Result[Row]:
        return self.table.lookup_single_row(filters)
