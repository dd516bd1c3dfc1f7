"""Shared pytest fixtures for all tests."""

import asyncio
from datetime import datetime

import pytest

from rowbridge.connections import TableReader
from rowbridge.connections.flatfile import FlatFileConfig, FlatFileConnector
from rowbridge.connections.sql import SqlConnectionConfig, SqlConnector
from rowbridge.core.exceptions import ValueConversionError
from rowbridge.query import InsertQuery, QueryColumn
from rowbridge.schema import Column, Role, Table
from rowbridge.types import TypeCode


class CancellingSource:
    """Bulk source that sets ``cancel`` on its ``cancel_at``-th read."""

    def __init__(self, reader: TableReader, cancel: asyncio.Event, cancel_at: int):
        self.reader = reader
        self.cancel = cancel
        self.cancel_at = cancel_at
        self.reads = 0

    @property
    def field_count(self) -> int:
        return self.reader.field_count

    async def read(self) -> bool:
        self.reads += 1
        if self.reads == self.cancel_at:
            self.cancel.set()
        return await self.reader.read()

    def value(self, ordinal: int):
        return self.reader.value(ordinal)

    def column_names(self) -> list[str]:
        return self.reader.column_names()

    @property
    def error(self):
        return self.reader.error


class FailingReader(TableReader):
    """In-memory reader whose ``fail_at``-th row cannot be converted."""

    def __init__(self, table: Table, fail_at: int):
        super().__init__(table)
        self.fail_at = fail_at

    async def _read_row(self):
        if self.rows_read + 1 == self.fail_at:
            raise ValueConversionError(f"Row {self.fail_at} of {self.table.name} is unreadable")
        return await super()._read_row()


@pytest.fixture
def sample_table() -> Table:
    """Ten-row table with an integer key and a few typed columns."""
    table = Table(
        "test_table",
        [
            Column(
                name="IntColumn",
                type_code=TypeCode.INT32,
                role=Role.SURROGATE_KEY,
                nullable=False,
                description="Row number",
            ),
            Column(name="StringColumn", type_code=TypeCode.STRING, max_length=50),
            Column(name="DateColumn", type_code=TypeCode.DATETIME),
            Column(name="BooleanColumn", type_code=TypeCode.BOOLEAN),
            Column(name="DoubleColumn", type_code=TypeCode.DOUBLE),
        ],
        description="Test table",
    )
    for i in range(1, 11):
        table.add_row(i, f"value{i:02d}", datetime(2024, 1, i), i % 2 == 0, i * 1.5)
    return table


@pytest.fixture
def insert_queries(sample_table: Table) -> list[InsertQuery]:
    """One insert per buffered row of ``sample_table``."""
    return [
        InsertQuery(
            table=sample_table.name,
            insert_columns=[
                QueryColumn(column=column, value=row[ordinal])
                for ordinal, column in enumerate(sample_table.columns)
            ],
        )
        for row in sample_table.rows
    ]


@pytest.fixture
async def sql_connector(tmp_path):
    """SQL connector on a SQLite file private to the test."""
    connector = SqlConnector(SqlConnectionConfig.for_file(tmp_path / "test.db"))
    yield connector
    await connector.close()


@pytest.fixture
async def flat_connector(tmp_path):
    """Flat-file connector rooted in the test's temporary directory."""
    connector = FlatFileConnector(FlatFileConfig.for_directory(tmp_path / "files"))
    yield connector
    await connector.close()


@pytest.fixture
def cancelling_source():
    """Factory for a bulk source that requests cancellation part way through."""

    async def _make(table: Table, cancel: asyncio.Event, cancel_at: int) -> CancellingSource:
        reader = TableReader(table)
        await reader.open()
        return CancellingSource(reader, cancel, cancel_at)

    return _make


@pytest.fixture
def failing_source():
    """Factory for a bulk source that fails on one row."""

    async def _make(table: Table, fail_at: int) -> FailingReader:
        reader = FailingReader(table, fail_at)
        await reader.open()
        return reader

    return _make
