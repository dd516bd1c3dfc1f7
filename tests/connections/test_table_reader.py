"""Tests for the in-memory reader and in-memory sorting."""

import pytest

from rowbridge.connections import BulkSource, TableReader, sort_rows
from rowbridge.core.models import ErrorKind
from rowbridge.query import CompareOperator, Filter, SelectQuery, Sort, SortDirection
from rowbridge.schema import Column, Table
from rowbridge.types import TypeCode


class TestTableReader:
    """Tests for TableReader."""

    async def test_reads_all_rows_in_order(self, sample_table: Table):
        reader = TableReader(sample_table)
        result = await reader.open()
        assert result.success, f"Open failed: {result.error}"

        ids = []
        while await reader.read():
            ids.append(reader["IntColumn"])

        assert ids == list(range(1, 11))
        assert reader.rows_read == 10
        assert not await reader.read()

    async def test_filter_sort_and_limit(self, sample_table: Table):
        query = SelectQuery(
            filters=[Filter.column_value("IntColumn", CompareOperator.LESS_EQUAL, 5)],
            sorts=[Sort(column="IntColumn", direction=SortDirection.DESCENDING)],
            rows=3,
        )
        reader = TableReader(sample_table)
        await reader.open(query)

        rows = [row async for row in reader]

        assert [row[0] for row in rows] == [5, 4, 3]

    async def test_unknown_filter_column(self, sample_table: Table):
        query = SelectQuery(filters=[Filter.column_value("Missing", CompareOperator.EQUAL, 1)])
        result = await TableReader(sample_table).open(query)
        assert not result.success
        assert result.kind == ErrorKind.CONVERSION

    async def test_value_before_read(self, sample_table: Table):
        reader = TableReader(sample_table)
        await reader.open()
        with pytest.raises(IndexError):
            reader.value(0)

    async def test_read_before_open(self, sample_table: Table):
        assert not await TableReader(sample_table).read()

    async def test_lookup(self, sample_table: Table):
        reader = TableReader(sample_table)
        result = await reader.lookup([Filter.column_value("IntColumn", CompareOperator.EQUAL, 7)])
        assert result.value[1] == "value07"

    def test_is_a_bulk_source(self, sample_table: Table):
        reader = TableReader(sample_table)
        assert isinstance(reader, BulkSource)
        assert reader.field_count == 5
        assert reader.column_names()[0] == "IntColumn"


class TestSortRows:
    def test_multi_key_sort_is_stable(self):
        table = Table(
            "t",
            [Column(name="Group"), Column(name="Value", type_code=TypeCode.INT32)],
        )
        rows = [["b", 2], ["a", 3], ["b", 1], ["a", 1]]
        query = SelectQuery(sorts=[Sort(column="Group"), Sort(column="Value")])

        assert sort_rows(table, rows, query) == [["a", 1], ["a", 3], ["b", 1], ["b", 2]]

    def test_nulls_sort_first(self):
        table = Table("t", [Column(name="Value", type_code=TypeCode.INT32)])
        rows = [[2], [None], [1]]
        query = SelectQuery(sorts=[Sort(column="Value")])
        assert sort_rows(table, rows, query) == [[None], [1], [2]]

    def test_unknown_sort_column(self):
        table = Table("t", [Column(name="Value")])
        with pytest.raises(KeyError):
            sort_rows(table, [["x"]], SelectQuery(sorts=[Sort(column="Missing")]))
