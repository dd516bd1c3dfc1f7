"""Table-store connector (Azure Table Storage).

Usage:
    from rowbridge.connections.tablestore import TableStoreConfig, TableStoreConnector

    connector = TableStoreConnector(TableStoreConfig.from_settings())
    async with connector:
        table = connector.initialize_table(Table("Orders", columns))
        await connector.create_table(table, drop_if_exists=True)
        await connector.execute_insert(table, queries)

The store has no databases, no sorting and no aggregates. Every entity
carries a partition key and a row key; ``initialize_table`` adds columns
for them (and for the store's timestamp) so tables can be written
without providing either.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure.data.tables.aio import TableServiceClient

from rowbridge.connections.base import (
    Connector,
    ConnectorCategory,
    connector_operation,
    is_cancelled,
)
from rowbridge.connections.reader import BulkSource, check_source
from rowbridge.connections.tablestore.batching import BatchOutcome, BatchWriter
from rowbridge.connections.tablestore.entities import (
    PARTITION_KEY,
    ROW_KEY,
    TIMESTAMP,
    apply_values,
    column_from_property,
    format_key,
    from_property,
    to_entity,
)
from rowbridge.connections.tablestore.filters import build_filter_string
from rowbridge.core.config import TABLE_STORE_MAX_BATCH, Settings, get_settings
from rowbridge.core.exceptions import ConnectorStateError
from rowbridge.core.logging import (
    get_logger,
    increment_page,
    increment_retry,
    record_rows_written,
)
from rowbridge.core.models import ErrorKind, Result
from rowbridge.query import (
    Aggregate,
    AndOr,
    CompareOperator,
    DeleteQuery,
    Filter,
    InsertQuery,
    SelectQuery,
    UpdateQuery,
)
from rowbridge.schema import Column, Role, Table
from rowbridge.types import TypeCode, get_max_value, get_min_value

if TYPE_CHECKING:
    from rowbridge.connections.tablestore.reader import TableStoreReader

logger = get_logger(__name__)

_INT64_MAX = 9223372036854775807


@dataclass
class TableStoreConfig:
    """Connection configuration for the table-store connector.

    Attributes:
        connection_string: Storage account connection string
        batch_size: Operations per batch transaction (at most 100)
        page_size: Entities requested per page when reading
        partition_default: Partition key for rows that do not provide one
        create_retries: Attempts to create a table whose name is still being deleted
        retry_delay: Seconds between those attempts
    """

    connection_string: str | None = None
    batch_size: int = TABLE_STORE_MAX_BATCH
    page_size: int = 1000
    partition_default: str = "default"
    create_retries: int = 10
    retry_delay: float = 5.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> TableStoreConfig:
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "connection_string": settings.table_store_connection_string,
            "batch_size": settings.table_store_batch_size,
            "page_size": settings.table_store_page_size,
            "partition_default": settings.table_store_partition_default,
            "create_retries": settings.table_store_create_retries,
            "retry_delay": settings.table_store_retry_delay,
        }
        values.update(kwargs)
        return cls(**values)


class TableStoreConnector(Connector):
    """Connector for a key/value table store with partitioned batch writes."""

    category = ConnectorCategory.NOSQL
    can_bulk_load: ClassVar[bool] = True
    can_sort: ClassVar[bool] = False
    can_filter: ClassVar[bool] = True
    can_aggregate: ClassVar[bool] = False

    table_name_pattern: ClassVar[re.Pattern[str]] = re.compile(r"^[A-Za-z][A-Za-z0-9]{2,62}$")
    column_name_pattern: ClassVar[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,254}$")

    def __init__(
        self,
        config: TableStoreConfig,
        service_client: Any | None = None,
        name: str | None = None,
    ):
        """Create the connector.

        Args:
            config: Connection configuration
            service_client: Pre-built async service client; when given the
                connector does not close it
            name: Name used in logs and error messages
        """
        super().__init__(name or "tablestore")
        self.config = config
        self._service = service_client
        self._owns_service = service_client is None

    @property
    def service(self) -> Any:
        if self._service is None:
            raise ConnectorStateError(f"{self.name} is not open")
        return self._service

    # === Lifecycle ===

    async def _open(self) -> None:
        if self._service is not None:
            return
        if not self.config.connection_string:
            raise ConnectionError("No table store connection string is configured")
        self._service = TableServiceClient.from_connection_string(self.config.connection_string)

    async def _close(self) -> None:
        if self._service is not None and self._owns_service:
            await self._service.close()
        self._service = None

    def is_connection_failure(self, error: BaseException) -> bool:
        return isinstance(error, ServiceRequestError) or super().is_connection_failure(error)

    def _failure_kind(self, error: BaseException) -> ErrorKind:
        match error:
            case ResourceExistsError():
                return ErrorKind.CONSTRAINT
            case ResourceNotFoundError():
                return ErrorKind.NOT_FOUND
            case HttpResponseError() if error.status_code == 409:
                # Batch transactions report a duplicate key as a plain 409
                return ErrorKind.CONSTRAINT
            case HttpResponseError() if error.status_code in (408, 429, 500, 503):
                return ErrorKind.TRANSIENT
        return ErrorKind.UNEXPECTED

    # === Store limits ===

    def get_max_value(self, type_code: TypeCode, length: int = 0) -> Any:
        match type_code:
            case TypeCode.DATETIME:
                return datetime(9999, 12, 31, 23, 59, 59, 999000)
            case TypeCode.UINT64:
                return _INT64_MAX
            case TypeCode.DOUBLE:
                return 1e100
            case TypeCode.SINGLE:
                return 1e37
        return get_max_value(type_code, length)

    def get_min_value(self, type_code: TypeCode) -> Any:
        match type_code:
            case TypeCode.DATETIME:
                return datetime(1800, 1, 2)
            case TypeCode.DOUBLE:
                return -1e100
            case TypeCode.SINGLE:
                return -1e37
        return get_min_value(type_code)

    def initialize_table(self, table: Table) -> Table:
        """Add PartitionKey, RowKey and Timestamp columns when missing."""
        if table.get_column_by_role(Role.PARTITION_KEY) is None:
            table.add_column(
                Column.for_role(
                    PARTITION_KEY,
                    Role.PARTITION_KEY,
                    nullable=False,
                    logical_name=f"{table.name} partition key.",
                    description="The partition key for this table.",
                )
            )
        if table.get_column_by_role(Role.ROW_KEY) is None:
            table.add_column(
                Column.for_role(
                    ROW_KEY,
                    Role.ROW_KEY,
                    nullable=False,
                    unique=True,
                    logical_name=f"{table.name} row key",
                    description="The row key and the natural key for this table.",
                )
            )
        if table.get_column_by_role(Role.TIMESTAMP) is None:
            table.add_column(
                Column.for_role(
                    TIMESTAMP,
                    Role.TIMESTAMP,
                    nullable=False,
                    logical_name=f"{table.name} timestamp.",
                    description="The store managed timestamp for the table.",
                )
            )
        return table

    # === Helpers ===

    def _table_client(self, table: Table | str) -> Any:
        return self.service.get_table_client(table if isinstance(table, str) else table.name)

    async def _exists(self, table_name: str) -> bool:
        async for _ in self.service.query_tables(f"TableName eq '{table_name}'"):
            return True
        return False

    async def iterate_pages(
        self,
        table: Table,
        filter_string: str = "",
        select: list[str] | None = None,
        page_size: int | None = None,
        continuation_token: Any = None,
    ) -> AsyncGenerator[tuple[list[Any], Any], None]:
        """Yield ``(entities, continuation_token)`` page by page.

        The token after the last page is None.
        """
        client = self._table_client(table)
        per_page = page_size or self.config.page_size
        if filter_string:
            paged = client.query_entities(filter_string, select=select, results_per_page=per_page)
        else:
            paged = client.list_entities(select=select, results_per_page=per_page)
        pages = paged.by_page(continuation_token=continuation_token)
        async for page in pages:
            entities = [entity async for entity in page]
            increment_page()
            yield entities, pages.continuation_token

    def _outcome_result(self, table: Table, outcome: BatchOutcome, operation: str) -> Result[int]:
        if outcome.errors:
            error = outcome.errors[0]
            if self.is_connection_failure(error):
                self.mark_broken(error)
                kind = ErrorKind.UNREACHABLE
            else:
                kind = self._failure_kind(error)
            return Result.fail(
                f"The {operation} for table {table.name} failed in "
                f"{len(outcome.errors)} of {outcome.batches_submitted} batches. {error}",
                kind=kind,
                cause=error,
                rows_affected=outcome.rows_committed,
            )
        if outcome.cancelled:
            return Result.cancelled(
                f"The {operation} for table {table.name} was cancelled",
                outcome.rows_committed,
            )
        return Result.ok(outcome.rows_committed, rows_affected=outcome.rows_committed)

    async def _abandon_write(
        self, table: Table, writer: BatchWriter, error: Exception, operation: str
    ) -> Result[int]:
        """Stop a write after ``error`` and wait for the batches already submitted.

        Queued operations are dropped; the failure reports the rows those
        submitted batches committed.
        """
        writer.mark_cancelled()
        outcome = await writer.finish()
        record_rows_written(outcome.rows_committed)
        logger.warning(
            "write_abandoned",
            connector=self.name,
            table=table.name,
            operation=operation,
            rows=outcome.rows_committed,
            error=str(error),
        )
        return self.failure_result(
            error,
            f"The {operation} for table {table.name} stopped after "
            f"{outcome.rows_committed} committed rows.",
            rows_affected=outcome.rows_committed,
        )

    def _writer(self, table: Table, operation: str, cancel: asyncio.Event | None) -> BatchWriter:
        return BatchWriter(
            self._table_client(table),
            operation=operation,
            batch_size=self.config.batch_size,
            cancel=cancel,
        )

    def _with_row_key_filters(self, table: Table, filters: Sequence[Filter]) -> list[Filter]:
        """Add a RowKey filter next to each filter on the surrogate key.

        Row keys are synthesized from the surrogate key, so the extra
        filter lets the store resolve the row by key.
        """
        surrogate = table.get_column_by_role(Role.SURROGATE_KEY)
        row_key = table.get_column_by_role(Role.ROW_KEY)
        if surrogate is None or row_key is None:
            return list(filters)
        result: list[Filter] = []
        for filter_ in filters:
            if (
                filter_.column1 is not None
                and filter_.column1.name == surrogate.name
                and filter_.column2 is None
                and filter_.operator in (CompareOperator.EQUAL, CompareOperator.IS_IN)
                and filter_.value2 is not None
            ):
                value = filter_.value2
                if isinstance(value, list):
                    value = [format_key(v) for v in value]
                else:
                    value = format_key(value)
                result.append(filter_.with_and_or(AndOr.AND))
                result.append(
                    filter_.model_copy(
                        update={
                            "column1": row_key,
                            "value2": value,
                            "compare_type": TypeCode.STRING,
                        }
                    )
                )
            else:
                result.append(filter_)
        return result

    async def _create_with_retry(self, table: Table) -> Result[bool]:
        """Create a table, waiting while a deleted table of the same name is purged."""
        attempts = max(1, self.config.create_retries)
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                await self.service.create_table(table.name)
                return Result.ok(True)
            except ResourceExistsError as e:
                # 409: the old table is still being deleted
                last_error = e
                increment_retry()
                logger.info(
                    "table_create_retry",
                    table=table.name,
                    attempt=attempt,
                    error_code=getattr(e, "error_code", None),
                )
                if attempt < attempts:
                    await asyncio.sleep(self.config.retry_delay)
        return Result.fail(
            f"Failed to create table {table.name} after {attempts} attempts. {last_error}",
            kind=ErrorKind.TRANSIENT,
            cause=last_error,
        )

    # === Schema ===

    @connector_operation
    async def create_database(self, database_name: str) -> Result[bool]:
        """The store has no databases; the account is the database."""
        return Result.ok(True)

    @connector_operation
    async def create_table(self, table: Table, drop_if_exists: bool = False) -> Result[bool]:
        valid = self.validate_table(table)
        if not valid.success:
            return valid
        if await self._exists(table.name):
            if not drop_if_exists:
                return Result.fail(
                    f"The table {table.name} already exists on {self.name} and the drop "
                    "table option is set to false.",
                    kind=ErrorKind.CONSTRAINT,
                )
            await self.service.delete_table(table.name)
        created = await self._create_with_retry(table)
        if created.success:
            logger.info("table_created", connector=self.name, table=table.name)
        return created

    @connector_operation
    async def drop_table(self, table: Table) -> Result[bool]:
        if not await self._exists(table.name):
            return Result.ok(False)
        await self.service.delete_table(table.name)
        logger.info("table_dropped", connector=self.name, table=table.name)
        return Result.ok(True)

    @connector_operation
    async def truncate_table(
        self, table: Table, cancel: asyncio.Event | None = None
    ) -> Result[bool]:
        """Delete and recreate the table; the store has no truncate."""
        if is_cancelled(cancel):
            return Result.cancelled(f"Truncate of {table.name} cancelled")
        await self.service.delete_table(table.name)
        return await self._create_with_retry(table)

    @connector_operation
    async def table_exists(self, table: Table) -> Result[bool]:
        return Result.ok(await self._exists(table.name))

    @connector_operation
    async def get_table_list(self) -> Result[list[str]]:
        names: list[str] = []
        pages = self.service.list_tables(results_per_page=self.config.page_size).by_page()
        async for page in pages:
            names.extend([item.name async for item in page])
            increment_page()
        return Result.ok(sorted(names))

    @connector_operation
    async def get_source_table_info(self, table_name: str) -> Result[Table]:
        """Describe a table from one sample entity.

        Tables are schemaless, so the columns are the sample's properties
        typed from their stored values.
        """
        if not await self._exists(table_name):
            return Result.fail(
                f"The table {table_name} was not found on {self.name}",
                kind=ErrorKind.NOT_FOUND,
            )
        table = Table(table_name, description="")
        async for entities, _ in self.iterate_pages(table, page_size=1):
            # Pages can be empty while a continuation token remains
            if not entities:
                continue
            for name, value in entities[0].items():
                if name in (PARTITION_KEY, ROW_KEY):
                    continue
                table.add_column(column_from_property(name, value))
            break
        return Result.ok(self.initialize_table(table))

    # === DML ===

    @connector_operation
    async def execute_insert(
        self,
        table: Table,
        queries: Sequence[InsertQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        writer = self._writer(table, "create", cancel)
        try:
            for query in queries:
                if is_cancelled(cancel):
                    writer.mark_cancelled()
                    break
                values = {qc.column.name: qc.value for qc in query.insert_columns}
                writer.add(to_entity(table, values, self.config.partition_default))
        except Exception as e:
            return await self._abandon_write(table, writer, e, "insert")
        outcome = await writer.finish()
        record_rows_written(outcome.rows_committed)
        return self._outcome_result(table, outcome, "insert")

    @connector_operation
    async def execute_update(
        self,
        table: Table,
        queries: Sequence[UpdateQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        """Read matching entities page by page and replace them in batches."""
        writer = self._writer(table, "update", cancel)
        try:
            for query in queries:
                filter_string = build_filter_string(
                    self._with_row_key_filters(table, query.filters), table
                )
                values = {qc.column.name: qc.value for qc in query.update_columns}
                async for entities, _ in self.iterate_pages(table, filter_string):
                    if is_cancelled(cancel):
                        writer.mark_cancelled()
                        return self._outcome_result(table, await writer.finish(), "update")
                    for entity in entities:
                        writer.add(apply_values(table, entity, values))
        except Exception as e:
            return await self._abandon_write(table, writer, e, "update")
        return self._outcome_result(table, await writer.finish(), "update")

    @connector_operation
    async def execute_delete(
        self,
        table: Table,
        queries: Sequence[DeleteQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        writer = self._writer(table, "delete", cancel)
        try:
            for query in queries:
                if is_cancelled(cancel):
                    writer.mark_cancelled()
                    break
                filter_string = build_filter_string(query.filters, table)
                async for entities, _ in self.iterate_pages(
                    table, filter_string, select=[PARTITION_KEY, ROW_KEY]
                ):
                    for entity in entities:
                        writer.add(dict(entity))
        except Exception as e:
            return await self._abandon_write(table, writer, e, "delete")
        return self._outcome_result(table, await writer.finish(), "delete")

    @connector_operation
    async def execute_scalar(
        self,
        table: Table,
        query: SelectQuery,
        cancel: asyncio.Event | None = None,
    ) -> Result[Any]:
        """First selected column of the first matching entity."""
        if is_cancelled(cancel):
            return Result.cancelled(f"Scalar query on {table.name} cancelled")
        if any(c.aggregate != Aggregate.NONE for c in query.columns):
            return Result.fail(
                f"{self.name} does not support aggregate functions",
                kind=ErrorKind.UNSUPPORTED,
            )
        if query.columns:
            column = table.get_column(query.columns[0].column.name) or query.columns[0].column
        else:
            column = next((c for c in table.columns if c.role != Role.IGNORE_FIELD), None)
            if column is None:
                return Result.fail(
                    f"The table {table.name} has no column to select",
                    kind=ErrorKind.VALIDATION,
                )

        filter_string = build_filter_string(query.filters, table)
        async for entities, _ in self.iterate_pages(table, filter_string, page_size=1):
            if not entities:
                continue
            entity = entities[0]
            match column.role:
                case Role.PARTITION_KEY:
                    return Result.ok(entity.get(PARTITION_KEY))
                case Role.ROW_KEY:
                    return Result.ok(entity.get(ROW_KEY))
            return Result.ok(from_property(column.type_code, entity.get(column.name)))
        return Result.ok(None)

    @connector_operation
    async def execute_insert_bulk(
        self,
        table: Table,
        source: BulkSource,
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        """Stream rows into per-partition batches submitted concurrently.

        Cancellation is checked before each row is queued and before each
        batch is submitted; the cancelled result reports the rows of the
        batches that were already submitted. A row that cannot be converted,
        or a source that fails, stops the load: queued rows are dropped and
        the failure reports the rows already committed.
        """
        names = source.column_names()
        writer = self._writer(table, "create", cancel)
        try:
            while await source.read():
                if is_cancelled(cancel):
                    writer.mark_cancelled()
                    break
                values = {name: source.value(ordinal) for ordinal, name in enumerate(names)}
                writer.add(to_entity(table, values, self.config.partition_default))
            check_source(source)
        except Exception as e:
            return await self._abandon_write(table, writer, e, "bulk insert")
        outcome = await writer.finish()
        record_rows_written(outcome.rows_committed)
        logger.info(
            "bulk_load_completed",
            connector=self.name,
            table=table.name,
            rows=outcome.rows_committed,
            batches=outcome.batches_submitted,
            cancelled=outcome.cancelled,
        )
        return self._outcome_result(table, outcome, "bulk insert")

    def get_reader(self, table: Table) -> TableStoreReader:
        from rowbridge.connections.tablestore.reader import TableStoreReader

        return TableStoreReader(self, table)
