"""Tests for the flat-file connector and reader."""

import asyncio
import re
from datetime import datetime

import pytest

from rowbridge.connections import TableReader
from rowbridge.connections.flatfile import FileType, FlatFileConnector
from rowbridge.core.models import ErrorKind
from rowbridge.query import CompareOperator, Filter, SelectQuery
from rowbridge.schema import Column, Role, Table
from rowbridge.types import TypeCode

FILE_PATTERN = re.compile(r"^test_table_\d{14}(_\d+)?\.csv$")


@pytest.fixture
def file_table(sample_table: Table) -> Table:
    """``sample_table`` plus the column that carries each row's file name."""
    table = sample_table.copy()
    table.add_column(Column.for_role("FileName", Role.FILE_NAME))
    return table


async def write_file(connector: FlatFileConnector, sample_table: Table) -> str:
    source = TableReader(sample_table)
    await source.open()
    result = await connector.execute_insert_bulk(sample_table, source)
    assert result.success, f"Bulk write failed: {result.error}"
    return connector.last_written_file


async def file_names(connector: FlatFileConnector, table: Table, file_type: FileType):
    result = await connector.get_files(table, file_type)
    assert result.success, f"Listing failed: {result.error}"
    return [f.file_name for f in result.value]


class TestSchema:
    """Tests for table directories."""

    async def test_create_table(self, flat_connector: FlatFileConnector, sample_table: Table):
        result = await flat_connector.create_table(sample_table)

        assert result.success, f"Create failed: {result.error}"
        for file_type in FileType:
            assert flat_connector.file_directory(sample_table, file_type).is_dir()
        assert (await flat_connector.get_table_list()).value == ["test_table"]

    async def test_create_existing_table(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)

        result = await flat_connector.create_table(sample_table)

        assert result.kind == ErrorKind.CONSTRAINT

    async def test_recreate_removes_files(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)
        await write_file(flat_connector, sample_table)

        result = await flat_connector.create_table(sample_table, drop_if_exists=True)

        assert result.success, f"Create failed: {result.error}"
        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == []

    async def test_drop_table(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)

        assert (await flat_connector.drop_table(sample_table)).value is True
        assert (await flat_connector.drop_table(sample_table)).value is False
        assert not (await flat_connector.table_exists(sample_table)).value

    async def test_truncate_removes_incoming_files(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)
        await write_file(flat_connector, sample_table)

        await flat_connector.truncate_table(sample_table)

        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == []

    async def test_get_source_table_info(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)
        await write_file(flat_connector, sample_table)

        result = await flat_connector.get_source_table_info("test_table")

        assert result.success, f"Discovery failed: {result.error}"
        table = result.value
        assert table.columns.names() == [
            "IntColumn",
            "StringColumn",
            "DateColumn",
            "BooleanColumn",
            "DoubleColumn",
            "FileName",
        ]
        assert all(c.type_code == TypeCode.STRING for c in table.columns)
        assert table.get_column_by_role(Role.FILE_NAME).name == "FileName"

    async def test_get_source_table_info_without_files(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)
        result = await flat_connector.get_source_table_info("test_table")
        assert result.kind == ErrorKind.NOT_FOUND


class TestBulkWrite:
    """Tests for writing CSV files."""

    async def test_writes_header_and_rows(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)

        file_name = await write_file(flat_connector, sample_table)

        assert FILE_PATTERN.match(file_name), file_name
        path = flat_connector.file_directory(sample_table, FileType.INCOMING) / file_name
        lines = path.read_text(encoding="utf-8").splitlines()
        assert lines[0] == "IntColumn,StringColumn,DateColumn,BooleanColumn,DoubleColumn"
        assert lines[1] == '1,value01,"2024-01-01 00:00:00",False,1.5'
        assert len(lines) == 11

    async def test_second_write_gets_its_own_file(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)

        first = await write_file(flat_connector, sample_table)
        second = await write_file(flat_connector, sample_table)

        assert first != second
        assert FILE_PATTERN.match(second), second
        assert sorted(await file_names(flat_connector, sample_table, FileType.INCOMING)) == sorted(
            [first, second]
        )

    async def test_values_are_escaped(self, flat_connector: FlatFileConnector):
        table = Table("notes", [Column(name="Id", type_code=TypeCode.INT32), Column(name="Text")])
        table.add_row(1, 'say "hi", ok')
        table.add_row(2, "plain")
        await flat_connector.create_table(table)
        source = TableReader(table)
        await source.open()

        await flat_connector.execute_insert_bulk(table, source)

        path = flat_connector.file_directory(table, FileType.INCOMING) / (
            flat_connector.last_written_file
        )
        assert path.read_text(encoding="utf-8").splitlines()[1] == '1,"say ""hi"", ok"'
        reader = flat_connector.get_reader(table)
        await reader.open()
        assert [row async for row in reader] == [[1, 'say "hi", ok'], [2, "plain"]]

    async def test_cancel_removes_partial_file(
        self, flat_connector, sample_table, cancelling_source
    ):
        await flat_connector.create_table(sample_table)
        cancel = asyncio.Event()
        source = await cancelling_source(sample_table, cancel, cancel_at=3)

        result = await flat_connector.execute_insert_bulk(sample_table, source, cancel=cancel)

        assert result.is_cancelled
        assert result.rows_affected == 0
        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == []

    async def test_source_failure_leaves_no_file(
        self, flat_connector, sample_table, failing_source
    ):
        await flat_connector.create_table(sample_table)
        source = await failing_source(sample_table, fail_at=4)

        result = await flat_connector.execute_insert_bulk(sample_table, source)

        assert result.kind == ErrorKind.CONVERSION
        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == []
        table_directory = flat_connector.file_directory(sample_table, FileType.INCOMING).parent
        assert not list(table_directory.glob("*.part"))

    async def test_cancel_after_last_row_keeps_file(
        self, flat_connector, sample_table, cancelling_source
    ):
        await flat_connector.create_table(sample_table)
        cancel = asyncio.Event()
        # The eleventh read finds the source exhausted
        source = await cancelling_source(sample_table, cancel, cancel_at=11)

        result = await flat_connector.execute_insert_bulk(sample_table, source, cancel=cancel)

        assert result.success, f"Bulk write failed: {result.error}"
        assert result.value == 10
        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == [
            flat_connector.last_written_file
        ]

    async def test_row_level_writes_are_unsupported(
        self, flat_connector, sample_table, insert_queries
    ):
        result = await flat_connector.execute_insert(sample_table, insert_queries)
        assert result.kind == ErrorKind.UNSUPPORTED
        scalar = await flat_connector.execute_scalar(sample_table, SelectQuery())
        assert scalar.kind == ErrorKind.UNSUPPORTED

    def test_capabilities(self, flat_connector: FlatFileConnector):
        assert flat_connector.can_bulk_load
        assert not flat_connector.can_filter
        assert not flat_connector.can_sort


class TestReader:
    """Tests for FlatFileReader."""

    async def test_reads_typed_rows_and_archives_file(
        self, flat_connector, sample_table, file_table
    ):
        await flat_connector.create_table(sample_table)
        file_name = await write_file(flat_connector, sample_table)
        reader = flat_connector.get_reader(file_table)
        await reader.open()

        rows = [row async for row in reader]

        assert len(rows) == 10
        assert rows[0] == [1, "value01", datetime(2024, 1, 1), False, 1.5, file_name]
        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == []
        assert await file_names(flat_connector, sample_table, FileType.PROCESSED) == [file_name]

    async def test_reads_files_in_name_order(self, flat_connector, sample_table, file_table):
        await flat_connector.create_table(sample_table)
        first = await write_file(flat_connector, sample_table)
        second = await write_file(flat_connector, sample_table)
        reader = flat_connector.get_reader(file_table)
        await reader.open()

        rows = [row async for row in reader]

        assert len(rows) == 20
        assert [row[-1] for row in rows] == [first] * 10 + [second] * 10

    async def test_row_limit_leaves_file_incoming(self, flat_connector, sample_table, file_table):
        await flat_connector.create_table(sample_table)
        file_name = await write_file(flat_connector, sample_table)
        reader = flat_connector.get_reader(file_table)
        await reader.open(SelectQuery(rows=3))

        rows = [row async for row in reader]

        assert [row[0] for row in rows] == [1, 2, 3]
        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == [file_name]

    async def test_lookup_leaves_files_in_place(self, flat_connector, sample_table, file_table):
        await flat_connector.create_table(sample_table)
        file_name = await write_file(flat_connector, sample_table)
        reader = flat_connector.get_reader(file_table)

        found = await reader.lookup(
            [Filter.column_value("StringColumn", CompareOperator.EQUAL, "value07")]
        )
        missing = await reader.lookup(
            [Filter.column_value("StringColumn", CompareOperator.EQUAL, "value99")]
        )

        assert found.value[0] == 7
        assert missing.kind == ErrorKind.NOT_FOUND
        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == [file_name]

    async def test_unparsable_file_stops_reader(self, flat_connector, sample_table, file_table):
        await flat_connector.create_table(sample_table)
        await flat_connector.save_incoming_file(
            sample_table, "bad.csv", "IntColumn,StringColumn\nnot-a-number,x\n"
        )
        reader = flat_connector.get_reader(file_table)
        await reader.open()

        assert not await reader.read()
        assert reader.error.kind == ErrorKind.CONVERSION
        assert "IntColumn" in reader.error.error
        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == ["bad.csv"]

    async def test_missing_directory(self, flat_connector, file_table):
        result = await flat_connector.get_reader(file_table).open()
        assert result.kind == ErrorKind.NOT_FOUND


class TestFileManagement:
    """Tests for moving, rejecting and saving files."""

    async def test_reject_file(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)
        file_name = await write_file(flat_connector, sample_table)

        result = await flat_connector.reject_file(sample_table, file_name)

        assert result.success, f"Reject failed: {result.error}"
        assert await file_names(flat_connector, sample_table, FileType.REJECTED) == [file_name]
        assert (await flat_connector.get_rejected_files(sample_table)).value[0].size > 0

    async def test_reject_missing_file(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)
        result = await flat_connector.reject_file(sample_table, "missing.csv")
        assert result.kind == ErrorKind.NOT_FOUND

    async def test_save_and_delete_incoming_file(self, flat_connector, sample_table):
        await flat_connector.create_table(sample_table)

        saved = await flat_connector.save_incoming_file(sample_table, "manual.csv", "A,B\n1,2\n")

        assert saved.value.endswith("manual.csv")
        assert await file_names(flat_connector, sample_table, FileType.INCOMING) == ["manual.csv"]
        deleted = await flat_connector.delete_file(sample_table, FileType.INCOMING, "manual.csv")
        assert deleted.value is True

    async def test_listing_missing_directory(self, flat_connector, sample_table):
        result = await flat_connector.get_incoming_files(sample_table)
        assert result.kind == ErrorKind.NOT_FOUND
