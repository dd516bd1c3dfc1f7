"""Flat-file connector: CSV files in per-table directories.

Layout under the root directory:

    {root}/{table}/incoming/   files waiting to be read
    {root}/{table}/processed/  files that have been read in full
    {root}/{table}/rejected/   files set aside by the caller

Bulk loads write ``{table}_{yyyyMMddHHmmss}.csv`` into ``incoming``. The
reader consumes incoming files in name order and moves each one to
``processed`` once its last row has been read.
"""

from __future__ import annotations

import asyncio
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

import duckdb

from rowbridge.connections.base import (
    Connector,
    ConnectorCategory,
    connector_operation,
    is_cancelled,
)
from rowbridge.connections.reader import check_source
from rowbridge.core.config import Settings, get_settings
from rowbridge.core.logging import get_logger, record_rows_written
from rowbridge.core.models import ErrorKind, Result
from rowbridge.query import DeleteQuery, InsertQuery, SelectQuery, UpdateQuery
from rowbridge.schema import Column, Role, Table, format_csv_row

if TYPE_CHECKING:
    from rowbridge.connections.flatfile.reader import FlatFileReader
    from rowbridge.connections.reader import BulkSource

logger = get_logger(__name__)

FILE_NAME_COLUMN = "FileName"


class FileType(str, Enum):
    INCOMING = "incoming"
    PROCESSED = "processed"
    REJECTED = "rejected"


@dataclass
class FileProperties:
    """A file in one of a table's directories."""

    file_name: str
    file_type: FileType
    size: int
    last_modified: datetime


@dataclass
class FlatFileConfig:
    """Directory layout for the flat-file connector."""

    root: Path
    incoming: str = FileType.INCOMING.value
    processed: str = FileType.PROCESSED.value
    rejected: str = FileType.REJECTED.value

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> FlatFileConfig:
        settings = settings or get_settings()
        return cls(
            root=settings.flat_file_root,
            incoming=settings.flat_file_incoming,
            processed=settings.flat_file_processed,
            rejected=settings.flat_file_rejected,
        )

    @classmethod
    def for_directory(cls, root: Path) -> FlatFileConfig:
        return cls(root=root)


def read_csv_file(path: Path) -> tuple[list[str], list[tuple[Any, ...]]]:
    """Read a CSV file with a header row; every column is read as text.

    Returns:
        The header names and the data rows
    """
    if path.stat().st_size == 0:
        return [], []
    escaped = str(path).replace("'", "''")
    conn = duckdb.connect(":memory:")
    try:
        conn.execute(f"""
            SELECT * FROM read_csv(
                '{escaped}',
                header = true,
                all_varchar = true
            )
        """)
        names = [description[0] for description in conn.description or []]
        rows = conn.fetchall()
    finally:
        conn.close()
    return names, rows


class FlatFileConnector(Connector):
    """Reads and writes delimited files on the local filesystem."""

    category = ConnectorCategory.FILE
    can_bulk_load: ClassVar[bool] = True
    can_sort: ClassVar[bool] = False
    can_filter: ClassVar[bool] = False
    can_aggregate: ClassVar[bool] = False

    def __init__(self, config: FlatFileConfig, name: str | None = None):
        super().__init__(name or "flatfile")
        self.config = config
        self.last_written_file: str | None = None

    async def _open(self) -> None:
        self.config.root.mkdir(parents=True, exist_ok=True)

    # === Paths ===

    def table_directory(self, table: Table | str) -> Path:
        return self.config.root / (table if isinstance(table, str) else table.name)

    def file_directory(self, table: Table | str, file_type: FileType) -> Path:
        sub_directory = {
            FileType.INCOMING: self.config.incoming,
            FileType.PROCESSED: self.config.processed,
            FileType.REJECTED: self.config.rejected,
        }[file_type]
        return self.table_directory(table) / sub_directory

    @connector_operation
    async def create_file_paths(self, table: Table) -> Result[bool]:
        """Create the incoming, processed and rejected directories."""
        for file_type in FileType:
            self.file_directory(table, file_type).mkdir(parents=True, exist_ok=True)
        return Result.ok(True)

    # === Files ===

    @connector_operation
    async def get_files(self, table: Table, file_type: FileType) -> Result[list[FileProperties]]:
        directory = self.file_directory(table, file_type)
        if not directory.is_dir():
            return Result.fail(
                f"The {file_type.value} directory of table {table.name} does not exist",
                kind=ErrorKind.NOT_FOUND,
            )
        files = []
        for path in sorted(directory.iterdir()):
            if not path.is_file():
                continue
            stat = path.stat()
            files.append(
                FileProperties(
                    file_name=path.name,
                    file_type=file_type,
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime),
                )
            )
        return Result.ok(files)

    async def get_incoming_files(self, table: Table) -> Result[list[FileProperties]]:
        return await self.get_files(table, FileType.INCOMING)

    async def get_processed_files(self, table: Table) -> Result[list[FileProperties]]:
        return await self.get_files(table, FileType.PROCESSED)

    async def get_rejected_files(self, table: Table) -> Result[list[FileProperties]]:
        return await self.get_files(table, FileType.REJECTED)

    @connector_operation
    async def move_file(
        self, table: Table, file_name: str, from_type: FileType, to_type: FileType
    ) -> Result[bool]:
        source = self.file_directory(table, from_type) / file_name
        if not source.is_file():
            return Result.fail(
                f"The file {file_name} was not found in the {from_type.value} directory "
                f"of table {table.name}",
                kind=ErrorKind.NOT_FOUND,
            )
        target_directory = self.file_directory(table, to_type)
        target_directory.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.move, source, target_directory / file_name)
        logger.debug(
            "file_moved",
            table=table.name,
            file=file_name,
            source=from_type.value,
            target=to_type.value,
        )
        return Result.ok(True)

    async def reject_file(self, table: Table, file_name: str) -> Result[bool]:
        return await self.move_file(table, file_name, FileType.INCOMING, FileType.REJECTED)

    @connector_operation
    async def delete_file(self, table: Table, file_type: FileType, file_name: str) -> Result[bool]:
        path = self.file_directory(table, file_type) / file_name
        if not path.is_file():
            return Result.fail(
                f"The file {file_name} was not found in the {file_type.value} directory "
                f"of table {table.name}",
                kind=ErrorKind.NOT_FOUND,
            )
        path.unlink()
        return Result.ok(True)

    @connector_operation
    async def save_incoming_file(
        self, table: Table, file_name: str, content: bytes | str
    ) -> Result[str]:
        """Write ``content`` to the incoming directory and return the path."""
        directory = self.file_directory(table, FileType.INCOMING)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / file_name
        if isinstance(content, str):
            await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        else:
            await asyncio.to_thread(path.write_bytes, content)
        return Result.ok(str(path))

    # === Schema ===

    @connector_operation
    async def create_database(self, database_name: str) -> Result[bool]:
        """Databases are directories; the root directory is created on open."""
        return Result.ok(True)

    @connector_operation
    async def create_table(self, table: Table, drop_if_exists: bool = False) -> Result[bool]:
        directory = self.table_directory(table)
        if directory.exists():
            if not drop_if_exists:
                return Result.fail(
                    f"The table {table.name} already exists on {self.name} and the drop "
                    "table option is set to false.",
                    kind=ErrorKind.CONSTRAINT,
                )
            await asyncio.to_thread(shutil.rmtree, directory)
        for file_type in FileType:
            self.file_directory(table, file_type).mkdir(parents=True, exist_ok=True)
        logger.info("table_created", connector=self.name, table=table.name)
        return Result.ok(True)

    @connector_operation
    async def drop_table(self, table: Table) -> Result[bool]:
        directory = self.table_directory(table)
        if not directory.exists():
            return Result.ok(False)
        await asyncio.to_thread(shutil.rmtree, directory)
        return Result.ok(True)

    @connector_operation
    async def table_exists(self, table: Table) -> Result[bool]:
        return Result.ok(self.table_directory(table).is_dir())

    @connector_operation
    async def get_table_list(self) -> Result[list[str]]:
        if not self.config.root.is_dir():
            return Result.ok([])
        return Result.ok(sorted(p.name for p in self.config.root.iterdir() if p.is_dir()))

    @connector_operation
    async def get_source_table_info(
        self, table_name: str, sample_file: str | None = None
    ) -> Result[Table]:
        """Build a String-typed table from a CSV header.

        Uses ``sample_file`` from the incoming directory, or the first
        incoming file when none is named. A FileName column is appended.
        """
        directory = self.file_directory(table_name, FileType.INCOMING)
        if sample_file is None:
            candidates = sorted(p for p in directory.glob("*") if p.is_file())
            if not candidates:
                return Result.fail(
                    f"There is no sample file for table {table_name}",
                    kind=ErrorKind.NOT_FOUND,
                )
            path = candidates[0]
        else:
            path = directory / sample_file
            if not path.is_file():
                return Result.fail(
                    f"The sample file {sample_file} was not found for table {table_name}",
                    kind=ErrorKind.NOT_FOUND,
                )

        names, _ = await asyncio.to_thread(read_csv_file, path)
        table = Table(table_name, description=f"Columns read from {path.name}")
        for name in names:
            table.add_column(Column(name=name, schema_name=table_name))
        table.add_column(
            Column.for_role(FILE_NAME_COLUMN, Role.FILE_NAME, schema_name=table_name)
        )
        return Result.ok(table)

    @connector_operation
    async def truncate_table(
        self, table: Table, cancel: asyncio.Event | None = None
    ) -> Result[bool]:
        """Remove every incoming file."""
        directory = self.file_directory(table, FileType.INCOMING)
        if directory.is_dir():
            for path in directory.iterdir():
                if is_cancelled(cancel):
                    return Result.cancelled(f"Truncate of {table.name} cancelled")
                if path.is_file():
                    path.unlink()
        return Result.ok(True)

    # === DML ===

    def _unsupported(self, operation: str) -> Result[Any]:
        return Result.fail(
            f"{self.name} does not support {operation}; use a bulk load instead",
            kind=ErrorKind.UNSUPPORTED,
        )

    async def execute_insert(
        self,
        table: Table,
        queries: Sequence[InsertQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        return self._unsupported("insert")

    async def execute_update(
        self,
        table: Table,
        queries: Sequence[UpdateQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        return self._unsupported("update")

    async def execute_delete(
        self,
        table: Table,
        queries: Sequence[DeleteQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        return self._unsupported("delete")

    async def execute_scalar(
        self,
        table: Table,
        query: SelectQuery,
        cancel: asyncio.Event | None = None,
    ) -> Result[Any]:
        return self._unsupported("scalar queries")

    def output_columns(self, table: Table) -> list[Column]:
        """Columns written to a file: everything but file-name and ignored columns."""
        return [
            c for c in table.columns if c.role not in (Role.FILE_NAME, Role.IGNORE_FIELD)
        ]

    @connector_operation
    async def execute_insert_bulk(
        self,
        table: Table,
        source: BulkSource,
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        """Write the source rows to a new CSV file in the incoming directory.

        Rows are staged in a separate file that is moved into place once
        the source is exhausted. A cancelled or failed load leaves no file
        behind; a cancelled load reports zero rows.
        """
        columns = self.output_columns(table)
        source_names = source.column_names()
        positions = [
            source_names.index(c.name) if c.name in source_names else -1 for c in columns
        ]

        directory = self.file_directory(table, FileType.INCOMING)
        directory.mkdir(parents=True, exist_ok=True)
        stem = f"{table.name}_{datetime.now().strftime('%Y%m%d%H%M%S')}"
        file_name = f"{stem}.csv"
        path = directory / file_name
        suffix = 1
        while path.exists():
            # Two loads within the same second
            file_name = f"{stem}_{suffix}.csv"
            path = directory / file_name
            suffix += 1

        rows = 0
        cancelled = False
        # Staged beside the incoming directory so readers never see a partial file
        staging = directory.parent / f"{file_name}.part"
        try:
            with staging.open("w", encoding="utf-8", newline="") as handle:
                handle.write(format_csv_row(c.name for c in columns) + "\n")
                while await source.read():
                    if is_cancelled(cancel):
                        cancelled = True
                        break
                    values = [source.value(p) if p >= 0 else None for p in positions]
                    handle.write(format_csv_row(values) + "\n")
                    rows += 1
            check_source(source)
            if not cancelled:
                staging.replace(path)
        finally:
            staging.unlink(missing_ok=True)

        if cancelled:
            logger.info("bulk_load_cancelled", table=table.name, file=file_name)
            return Result.cancelled(f"Bulk write of {table.name} cancelled", 0)

        self.last_written_file = file_name
        record_rows_written(rows)
        logger.info("file_written", table=table.name, file=file_name, rows=rows)
        return Result.ok(rows, rows_affected=rows)

    def get_reader(self, table: Table) -> FlatFileReader:
        from rowbridge.connections.flatfile.reader import FlatFileReader

        return FlatFileReader(self, table)
