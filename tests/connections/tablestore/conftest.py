"""In-memory stand-in for the async table service client."""

import re
from collections.abc import Callable
from types import SimpleNamespace
from typing import Any

import pytest
from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.data.tables import TableEntity

from rowbridge.connections.tablestore import TableStoreConfig, TableStoreConnector
from rowbridge.schema import Column, Role, Table
from rowbridge.types import TypeCode

_TABLE_NAME = re.compile(r"TableName eq '(.+)'")


class FakePage:
    def __init__(self, items: list[Any]):
        self.items = items

    async def __aiter__(self):
        for item in self.items:
            yield item


class FakePager:
    """Page iterator that hands out the item offset as continuation token.

    With ``empty_pages`` it first serves that many empty pages that still
    carry a token, as the service does at partition boundaries.
    """

    def __init__(
        self,
        items: list[Any],
        per_page: int,
        continuation_token: str | None,
        empty_pages: int = 0,
    ):
        self.items = items
        self.per_page = per_page
        self.offset = int(continuation_token or 0)
        self.continuation_token = continuation_token
        self.empty_pages = empty_pages

    def __aiter__(self):
        return self

    async def __anext__(self) -> FakePage:
        if self.empty_pages > 0:
            self.empty_pages -= 1
            self.continuation_token = str(self.offset)
            return FakePage([])
        if self.offset >= len(self.items):
            raise StopAsyncIteration
        page = self.items[self.offset : self.offset + self.per_page]
        self.offset += len(page)
        self.continuation_token = str(self.offset) if self.offset < len(self.items) else None
        return FakePage(page)


class FakePaged:
    def __init__(self, items: list[Any], per_page: int | None, empty_pages: int = 0):
        self.items = items
        self.per_page = per_page or 1000
        self.empty_pages = empty_pages

    def by_page(self, continuation_token: str | None = None) -> FakePager:
        return FakePager(self.items, self.per_page, continuation_token, self.empty_pages)


class FakeTableClient:
    """Entities of one table, keyed by (PartitionKey, RowKey)."""

    def __init__(self, service: "FakeTableService", name: str):
        self.service = service
        self.name = name
        self.entities: dict[tuple[str, str], TableEntity] = {}
        self.matchers: dict[str, Callable[[dict[str, Any]], bool]] = {}
        self.filters: list[str] = []
        self.fail_with: BaseException | None = None
        self.query_error: BaseException | None = None
        self.empty_pages = 0

    def _snapshot(self, select: list[str] | None) -> list[TableEntity]:
        result = []
        for key in sorted(self.entities):
            entity = self.entities[key]
            if select:
                result.append(TableEntity({k: entity[k] for k in select if k in entity}))
            else:
                result.append(TableEntity(entity))
        return result

    def list_entities(self, select=None, results_per_page=None, **kwargs) -> FakePaged:
        if self.query_error is not None:
            raise self.query_error
        return FakePaged(self._snapshot(select), results_per_page, self.empty_pages)

    def query_entities(
        self, query_filter: str, select=None, results_per_page=None, **kwargs
    ) -> FakePaged:
        self.filters.append(query_filter)
        if self.query_error is not None:
            raise self.query_error
        entities = self._snapshot(None)
        matcher = self.matchers.get(query_filter)
        if matcher is not None:
            entities = [e for e in entities if matcher(e)]
        if select:
            entities = [TableEntity({k: e[k] for k in select if k in e}) for e in entities]
        return FakePaged(entities, results_per_page, self.empty_pages)

    async def submit_transaction(self, operations: list[tuple[Any, ...]]) -> list[dict]:
        operations = list(operations)
        self.service.transactions.append((self.name, operations))
        if self.fail_with is not None:
            raise self.fail_with
        for operation in operations:
            kind, entity = operation[0], operation[1]
            key = (entity["PartitionKey"], entity["RowKey"])
            if kind == "create" and key in self.entities:
                raise ResourceExistsError(f"The specified entity {key} already exists")
            if kind in ("update", "delete") and key not in self.entities:
                raise ResourceNotFoundError(f"The specified entity {key} does not exist")
        for operation in operations:
            kind, entity = operation[0], operation[1]
            key = (entity["PartitionKey"], entity["RowKey"])
            if kind == "delete":
                self.entities.pop(key)
            else:
                self.entities[key] = TableEntity(entity)
        return [{} for _ in operations]


class FakeTableService:
    """Async table service client holding its tables in memory."""

    def __init__(self):
        self.existing: set[str] = set()
        self.clients: dict[str, FakeTableClient] = {}
        self.transactions: list[tuple[str, list[tuple[Any, ...]]]] = []
        self.create_conflicts = 0
        self.create_calls = 0
        self.error: BaseException | None = None
        self.closed = False

    def get_table_client(self, table_name: str) -> FakeTableClient:
        if table_name not in self.clients:
            self.clients[table_name] = FakeTableClient(self, table_name)
        return self.clients[table_name]

    async def create_table(self, table_name: str) -> FakeTableClient:
        self.create_calls += 1
        if self.create_conflicts > 0:
            self.create_conflicts -= 1
            raise ResourceExistsError("The table specified is being deleted")
        if table_name in self.existing:
            raise ResourceExistsError("The table specified already exists")
        self.existing.add(table_name)
        return self.get_table_client(table_name)

    async def delete_table(self, table_name: str) -> None:
        self.existing.discard(table_name)
        self.clients.pop(table_name, None)

    async def query_tables(self, query_filter: str, **kwargs):
        if self.error is not None:
            raise self.error
        match = _TABLE_NAME.match(query_filter)
        if match and match.group(1) in self.existing:
            yield SimpleNamespace(name=match.group(1))

    def list_tables(self, results_per_page=None, **kwargs) -> FakePaged:
        items = [SimpleNamespace(name=name) for name in sorted(self.existing)]
        return FakePaged(items, results_per_page)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_service() -> FakeTableService:
    return FakeTableService()


@pytest.fixture
async def store_connector(fake_service: FakeTableService):
    """Connector wired to the in-memory service, with no retry delay."""
    connector = TableStoreConnector(
        TableStoreConfig(retry_delay=0, create_retries=3, page_size=2),
        service_client=fake_service,
    )
    yield connector
    await connector.close()


@pytest.fixture
def orders_table(store_connector: TableStoreConnector) -> Table:
    """Orders table with the store's key and timestamp columns added."""
    table = Table(
        "Orders",
        [
            Column(name="OrderId", type_code=TypeCode.INT64, role=Role.SURROGATE_KEY),
            Column(name="Customer", type_code=TypeCode.STRING),
            Column(name="Amount", type_code=TypeCode.DOUBLE),
        ],
    )
    return store_connector.initialize_table(table)
