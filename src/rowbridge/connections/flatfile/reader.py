"""Reader over the incoming files of a flat-file table."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rowbridge.connections.flatfile.connector import FileType, read_csv_file
from rowbridge.connections.reader import RowReader
from rowbridge.core.exceptions import ValueConversionError
from rowbridge.core.logging import get_logger, record_rows_read
from rowbridge.core.models import ErrorKind, Result
from rowbridge.query import Filter, SelectQuery
from rowbridge.schema import Role, Row, Table
from rowbridge.types import try_parse

if TYPE_CHECKING:
    from rowbridge.connections.flatfile.connector import FlatFileConnector

logger = get_logger(__name__)


class FlatFileReader(RowReader):
    """Reads incoming files one at a time, in file-name order.

    Each file is moved to the processed directory once all of its rows
    have been read. Filters and sorts are not applied; the row limit is.
    """

    def __init__(self, connector: FlatFileConnector, table: Table):
        super().__init__(table)
        self.connector = connector
        self._files: list[Path] = []
        self._current_file: Path | None = None
        self._buffer: list[Row] = []
        self._limit = -1

    async def open(self, query: SelectQuery | None = None) -> Result[bool]:
        query = query or SelectQuery()
        ready = await self.connector.ensure_open()
        if not ready.success:
            return ready
        await self.close()

        directory = self.connector.file_directory(self.table, FileType.INCOMING)
        if not directory.is_dir():
            return Result.fail(
                f"The incoming directory of table {self.table.name} does not exist",
                kind=ErrorKind.NOT_FOUND,
            )
        self._files = sorted(p for p in directory.iterdir() if p.is_file())
        self._limit = query.rows
        self.error = None
        self.is_open = True
        logger.debug("flat_file_reader_opened", table=self.table.name, files=len(self._files))
        return Result.ok(True)

    def _convert_file(
        self, path: Path, names: list[str], records: list[tuple[Any, ...]]
    ) -> list[Row]:
        """Lay the records of one file out as rows of the table."""
        positions = []
        for column in self.table.columns:
            if column.role == Role.FILE_NAME:
                positions.append(-2)
            else:
                positions.append(names.index(column.name) if column.name in names else -1)

        rows: list[Row] = []
        for record in records:
            row: Row = []
            for column, position in zip(self.table.columns, positions, strict=True):
                if position == -2:
                    row.append(path.name)
                    continue
                value = record[position] if position >= 0 else None
                converted = try_parse(column.type_code, value, column.max_length)
                if not converted.success:
                    raise ValueConversionError(
                        f"File {path.name}, column {column.name}: {converted.error}"
                    )
                row.append(converted.value)
            rows.append(row)
        return rows

    async def _archive_current(self) -> None:
        if self._current_file is None:
            return
        file_name = self._current_file.name
        self._current_file = None
        moved = await self.connector.move_file(
            self.table, file_name, FileType.INCOMING, FileType.PROCESSED
        )
        if not moved.success:
            logger.warning("file_archive_failed", file=file_name, error=moved.error)

    async def _read_row(self) -> Row | None:
        if 0 <= self._limit <= self.rows_read:
            return None
        while not self._buffer:
            await self._archive_current()
            if not self._files:
                return None
            path = self._files.pop(0)
            names, records = await asyncio.to_thread(read_csv_file, path)
            self._current_file = path
            self._buffer = self._convert_file(path, names, records)
            logger.debug("flat_file_loaded", file=path.name, rows=len(self._buffer))
        return self._buffer.pop(0)

    def _read_failure(self, error: Exception) -> Result[Any]:
        # The file being read stays in the incoming directory
        return self.connector.failure_result(error, f"Reading {self.table.name} failed.")

    async def _on_exhausted(self) -> None:
        # A row limit can stop the read part way through a file; that file stays incoming
        if not self._buffer:
            await self._archive_current()
        record_rows_read(self.rows_read)
        await self.close()

    async def close(self) -> None:
        await super().close()
        self._files = []
        self._buffer = []
        self._current_file = None

    async def lookup(self, filters: Sequence[Filter]) -> Result[Row]:
        """Scan the incoming files for the first matching row.

        Files are left in place.
        """
        directory = self.connector.file_directory(self.table, FileType.INCOMING)
        if not directory.is_dir():
            return Result.fail(
                f"The incoming directory of table {self.table.name} does not exist",
                kind=ErrorKind.NOT_FOUND,
            )
        scratch = self.table.copy()
        for path in sorted(p for p in directory.iterdir() if p.is_file()):
            try:
                names, records = await asyncio.to_thread(read_csv_file, path)
                scratch.rows = self._convert_file(path, names, records)
            except Exception as e:
                return self.connector.failure_result(e, f"Lookup on {self.table.name} failed.")
            found = scratch.lookup_single_row(filters)
            if found.success or found.kind != ErrorKind.NOT_FOUND:
                return found
        return Result.fail(
            f"No row in {self.table.name} matched the lookup filters",
            kind=ErrorKind.NOT_FOUND,
        )
