"""Tests for the connector state machine and the operation guard."""

import asyncio
from typing import Any

import pytest

from rowbridge.connections import (
    Connector,
    ConnectorCategory,
    ConnectorState,
    TableReader,
    connector_operation,
    is_cancelled,
)
from rowbridge.core.exceptions import ValidationError
from rowbridge.core.models import ErrorKind, Result
from rowbridge.schema import Table
from rowbridge.types import TypeCode


class MemoryConnector(Connector):
    """Connector whose operations succeed or fail on demand."""

    category = ConnectorCategory.SQL

    def __init__(self, fail_open: bool = False):
        super().__init__("memory")
        self.fail_open = fail_open
        self.opened = 0
        self.closed = 0

    async def _open(self) -> None:
        if self.fail_open:
            raise ConnectionError("connection refused")
        self.opened += 1

    async def _close(self) -> None:
        self.closed += 1

    @connector_operation
    async def create_database(self, database_name: str) -> Result[bool]:
        return Result.ok(True)

    @connector_operation
    async def create_table(self, table: Table, drop_if_exists: bool = False) -> Result[bool]:
        raise ConnectionError("connection reset")

    @connector_operation
    async def drop_table(self, table: Table) -> Result[bool]:
        raise ValidationError("bad table name")

    @connector_operation
    async def table_exists(self, table: Table) -> Result[bool]:
        raise RuntimeError("boom")

    @connector_operation
    async def get_table_list(self) -> Result[list[str]]:
        return Result.ok([])

    @connector_operation
    async def get_source_table_info(self, table_name: str) -> Result[Table]:
        return Result.ok(Table(table_name))

    @connector_operation
    async def truncate_table(self, table, cancel=None) -> Result[bool]:
        return Result.ok(True)

    @connector_operation
    async def execute_insert(self, table, queries, cancel=None) -> Result[int]:
        return Result.ok(len(queries))

    @connector_operation
    async def execute_update(self, table, queries, cancel=None) -> Result[int]:
        return Result.ok(0)

    @connector_operation
    async def execute_delete(self, table, queries, cancel=None) -> Result[int]:
        return Result.ok(0)

    @connector_operation
    async def execute_scalar(self, table, query, cancel=None) -> Result[Any]:
        return Result.ok(None)

    @connector_operation
    async def execute_insert_bulk(self, table, source, cancel=None) -> Result[int]:
        return Result.ok(0)

    def get_reader(self, table: Table) -> TableReader:
        return TableReader(table)


class TestConnectorState:
    """Tests for the UNOPENED -> OPEN -> BROKEN | CLOSED transitions."""

    async def test_first_operation_opens(self):
        connector = MemoryConnector()
        assert connector.state == ConnectorState.UNOPENED

        result = await connector.create_database("db")

        assert result.success, f"Operation failed: {result.error}"
        assert connector.state == ConnectorState.OPEN
        assert connector.opened == 1

    async def test_open_is_idempotent(self):
        connector = MemoryConnector()
        await connector.open()
        await connector.open()
        await connector.get_table_list()
        assert connector.opened == 1

    async def test_connection_failure_breaks_connector(self):
        connector = MemoryConnector()

        result = await connector.create_table(Table("t"))

        assert result.kind == ErrorKind.UNREACHABLE
        assert connector.state == ConnectorState.BROKEN

        follow_up = await connector.create_database("db")
        assert not follow_up.success
        assert follow_up.kind == ErrorKind.UNREACHABLE
        assert "connection reset" in follow_up.error

    async def test_open_failure_breaks_connector(self):
        connector = MemoryConnector(fail_open=True)

        result = await connector.create_database("db")

        assert result.kind == ErrorKind.UNREACHABLE
        assert connector.state == ConnectorState.BROKEN

    async def test_typed_error_becomes_its_kind(self):
        """Errors that carry a kind fail the call but leave the connector open."""
        connector = MemoryConnector()

        result = await connector.drop_table(Table("t"))

        assert result.kind == ErrorKind.VALIDATION
        assert connector.state == ConnectorState.OPEN

    async def test_other_errors_are_unexpected(self):
        connector = MemoryConnector()

        result = await connector.table_exists(Table("t"))

        assert result.kind == ErrorKind.UNEXPECTED
        assert isinstance(result.cause, RuntimeError)
        assert connector.state == ConnectorState.OPEN

    async def test_closed_connector_fails_fast(self):
        connector = MemoryConnector()
        await connector.open()
        await connector.close()
        await connector.close()

        assert connector.state == ConnectorState.CLOSED
        assert connector.closed == 1

        result = await connector.create_database("db")
        assert result.kind == ErrorKind.UNREACHABLE
        assert not (await connector.open()).success

    async def test_context_manager(self):
        async with MemoryConnector() as connector:
            assert connector.state == ConnectorState.OPEN
        assert connector.state == ConnectorState.CLOSED

    async def test_context_manager_raises_when_unreachable(self):
        with pytest.raises(ConnectionError):
            async with MemoryConnector(fail_open=True):
                pass


class TestConnectorDefaults:
    def test_capabilities_default_to_false(self):
        connector = MemoryConnector()
        assert not connector.can_bulk_load
        assert not connector.can_sort
        assert not connector.can_filter
        assert not connector.can_aggregate

    def test_validate_table(self):
        connector = MemoryConnector()
        assert connector.validate_table(Table("orders", [])).success

        result = connector.validate_table(Table(""))
        assert result.kind == ErrorKind.VALIDATION

    def test_ranges_default_to_type_sentinels(self):
        connector = MemoryConnector()
        assert connector.get_max_value(TypeCode.INT16) == 32767
        assert connector.get_min_value(TypeCode.BYTE) == 0

    def test_is_cancelled(self):
        event = asyncio.Event()
        assert not is_cancelled(None)
        assert not is_cancelled(event)
        event.set()
        assert is_cancelled(event)
