"""SQL connector over a SQLAlchemy async engine.

Usage:
    from rowbridge.connections.sql import SqlConnectionConfig, SqlConnector

    connector = SqlConnector(SqlConnectionConfig.for_file(Path("./warehouse.db")))
    async with connector:
        await connector.create_table(table, drop_if_exists=True)
        result = await connector.execute_insert(table, queries)

Each operation checks out its own connection from the engine. Insert,
update and delete run all of their statements in one transaction; bulk
loads commit every ``bulk_batch_size`` rows.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import event, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from rowbridge.connections.base import (
    Connector,
    ConnectorCategory,
    connector_operation,
    is_cancelled,
)
from rowbridge.connections.reader import check_source
from rowbridge.connections.sql.builder import SqlStatement, SqlStatementBuilder
from rowbridge.connections.sql.dialect import SqlDialect, get_dialect
from rowbridge.core.config import Settings, get_settings
from rowbridge.core.exceptions import (
    ConnectorStateError,
    SourceReadError,
    ValueConversionError,
)
from rowbridge.core.logging import (
    get_logger,
    increment_batch,
    increment_statement,
    log_context,
    record_operation_timing,
    record_rows_written,
)
from rowbridge.core.models import ErrorKind, Result
from rowbridge.query import Aggregate, DeleteQuery, InsertQuery, SelectQuery, UpdateQuery
from rowbridge.schema import Column, Role, Table
from rowbridge.types import TypeCode, try_parse

if TYPE_CHECKING:
    from rowbridge.connections.reader import BulkSource
    from rowbridge.connections.sql.reader import SqlReader

logger = get_logger(__name__)


@dataclass
class SqlConnectionConfig:
    """Connection configuration for the SQL connector.

    Attributes:
        url: SQLAlchemy async database URL
        echo_sql: Whether to echo SQL statements (for debugging)
        bulk_batch_size: Rows per committed transaction during bulk loads
        sqlite_timeout: SQLite busy timeout in seconds
        engine_options: Extra keyword arguments for ``create_async_engine``
    """

    url: str
    echo_sql: bool = False
    bulk_batch_size: int = 500
    sqlite_timeout: float = 30.0
    engine_options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **kwargs: Any) -> SqlConnectionConfig:
        settings = settings or get_settings()
        return cls(
            url=settings.sql_url,
            echo_sql=settings.sql_echo,
            bulk_batch_size=settings.sql_bulk_batch_size,
            **kwargs,
        )

    @classmethod
    def for_file(cls, path: Path, **kwargs: Any) -> SqlConnectionConfig:
        """SQLite database stored in ``path``."""
        return cls(url=f"sqlite+aiosqlite:///{path}", **kwargs)

    @classmethod
    def in_memory(cls, **kwargs: Any) -> SqlConnectionConfig:
        """Private in-memory SQLite database (useful for testing)."""
        return cls(url="sqlite+aiosqlite:///:memory:", **kwargs)

    @property
    def backend(self) -> str:
        return make_url(self.url).get_backend_name()

    @property
    def is_sqlite_memory(self) -> bool:
        url = make_url(self.url)
        return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


class SqlConnector(Connector):
    """Relational store reached through SQLAlchemy."""

    category = ConnectorCategory.SQL
    can_bulk_load: ClassVar[bool] = True
    can_sort: ClassVar[bool] = True
    can_filter: ClassVar[bool] = True
    can_aggregate: ClassVar[bool] = True

    def __init__(
        self,
        config: SqlConnectionConfig,
        dialect: SqlDialect | None = None,
        name: str | None = None,
    ):
        super().__init__(name or f"sql:{config.backend}")
        self.config = config
        self.dialect = dialect or get_dialect(config.url)
        self.builder = SqlStatementBuilder(self.dialect)
        self._engine: AsyncEngine | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise ConnectorStateError(f"{self.name} is not open")
        return self._engine

    # === Lifecycle ===

    async def _open(self) -> None:
        url = make_url(self.config.url)
        options: dict[str, Any] = {"echo": self.config.echo_sql, **self.config.engine_options}
        if url.get_backend_name() == "sqlite":
            if not self.config.is_sqlite_memory:
                # One connection per operation; no pooled connection outlives a call
                options.setdefault("poolclass", NullPool)
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            options.setdefault("connect_args", {"timeout": self.config.sqlite_timeout})

        self._engine = create_async_engine(self.config.url, **options)

        if url.get_backend_name() == "sqlite":

            @event.listens_for(self._engine.sync_engine, "connect")
            def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def _close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None

    def is_connection_failure(self, error: BaseException) -> bool:
        if isinstance(error, DisconnectionError | InterfaceError):
            return True
        if isinstance(error, DBAPIError) and error.connection_invalidated:
            return True
        return super().is_connection_failure(error)

    def _failure_kind(self, error: BaseException) -> ErrorKind:
        if isinstance(error, IntegrityError):
            return ErrorKind.CONSTRAINT
        return ErrorKind.UNEXPECTED

    # === Schema ===

    @connector_operation
    async def create_database(self, database_name: str) -> Result[bool]:
        """Create a database. SQLite databases are the file the URL names."""
        if self.dialect.name == "sqlite":
            return Result.ok(True)
        sql = f"CREATE DATABASE {self.dialect.add_delimiter(database_name)}"
        async with self.engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            await conn.execute(text(sql))
        logger.info("database_created", connector=self.name, database=database_name)
        return Result.ok(True)

    async def _table_exists(self, conn: AsyncConnection, table: Table) -> bool:
        return await conn.run_sync(
            lambda sync_conn: inspect(sync_conn).has_table(table.name, schema=table.schema_name)
        )

    @connector_operation
    async def table_exists(self, table: Table) -> Result[bool]:
        async with self.engine.connect() as conn:
            return Result.ok(await self._table_exists(conn, table))

    @connector_operation
    async def get_table_list(self) -> Result[list[str]]:
        async with self.engine.connect() as conn:
            names = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        return Result.ok(sorted(names))

    @connector_operation
    async def get_source_table_info(self, table_name: str) -> Result[Table]:
        """Discover columns, types, nullability and primary key of a table."""

        def _inspect(sync_conn: Any) -> tuple[list[dict[str, Any]], list[str], str | None] | None:
            inspector = inspect(sync_conn)
            if not inspector.has_table(table_name):
                return None
            columns = inspector.get_columns(table_name)
            primary_key = inspector.get_pk_constraint(table_name).get("constrained_columns") or []
            try:
                comment = inspector.get_table_comment(table_name).get("text")
            except NotImplementedError:
                comment = None
            return columns, primary_key, comment

        async with self.engine.connect() as conn:
            info = await conn.run_sync(_inspect)

        if info is None:
            return Result.fail(
                f"The table {table_name} was not found on {self.name}",
                kind=ErrorKind.NOT_FOUND,
            )

        columns, primary_key, comment = info
        table = Table(table_name, description=comment)
        for column_info in columns:
            sql_type = column_info["type"]
            type_code = self.dialect.convert_sql_to_type_code(str(sql_type))
            role = Role.TRACKING_FIELD
            if column_info["name"] in primary_key:
                single_integer_key = len(primary_key) == 1 and type_code in (
                    TypeCode.INT16,
                    TypeCode.INT32,
                    TypeCode.INT64,
                )
                role = Role.SURROGATE_KEY if single_integer_key else Role.NATURAL_KEY
            table.add_column(
                Column(
                    name=column_info["name"],
                    type_code=type_code,
                    max_length=getattr(sql_type, "length", None),
                    precision=getattr(sql_type, "precision", None),
                    scale=getattr(sql_type, "scale", None),
                    nullable=bool(column_info.get("nullable", True)),
                    role=role,
                    description=column_info.get("comment"),
                    schema_name=table_name,
                )
            )
        logger.debug("table_discovered", table=table_name, columns=len(table.columns))
        return Result.ok(table)

    @connector_operation
    async def create_table(self, table: Table, drop_if_exists: bool = False) -> Result[bool]:
        """Create a table; its surrogate-key column becomes the primary key."""
        valid = self.validate_table(table)
        if not valid.success:
            return valid

        statements = self.builder.build_create_table(table)
        async with self.engine.connect() as conn:
            exists = await self._table_exists(conn, table)
        if exists and not drop_if_exists:
            return Result.fail(
                f"The table {table.name} already exists on {self.name} and the drop "
                "table option is set to false.",
                kind=ErrorKind.CONSTRAINT,
            )
        if exists:
            statements.insert(0, self.builder.build_drop_table(table))

        current = statements[0]
        try:
            async with self.engine.begin() as conn:
                for current in statements:
                    await conn.execute(text(current))
        except SQLAlchemyError as e:
            if self.is_connection_failure(e):
                raise
            return Result.fail(
                f"Create table {table.name} failed. {e}",
                kind=self._failure_kind(e),
                cause=e,
                statement=current,
            )
        logger.info("table_created", connector=self.name, table=table.name, dropped=exists)
        return Result.ok(True)

    @connector_operation
    async def drop_table(self, table: Table) -> Result[bool]:
        statement = self.builder.build_drop_table(table)
        async with self.engine.begin() as conn:
            if not await self._table_exists(conn, table):
                return Result.ok(False)
            await conn.execute(text(statement))
        logger.info("table_dropped", connector=self.name, table=table.name)
        return Result.ok(True)

    @connector_operation
    async def truncate_table(
        self, table: Table, cancel: asyncio.Event | None = None
    ) -> Result[bool]:
        if is_cancelled(cancel):
            return Result.cancelled(f"Truncate of {table.name} cancelled")
        statement = self.builder.build_truncate(table)
        async with self.engine.begin() as conn:
            try:
                await conn.execute(text(statement))
            except SQLAlchemyError as e:
                if self.is_connection_failure(e):
                    raise
                return Result.fail(
                    f"Truncate table {table.name} failed. {e}",
                    kind=self._failure_kind(e),
                    cause=e,
                    statement=statement,
                )
        return Result.ok(True)

    # === DML ===

    async def _execute_in_transaction(
        self,
        table: Table,
        statements: Sequence[SqlStatement],
        cancel: asyncio.Event | None,
        operation: str,
    ) -> Result[int]:
        """Run statements in one transaction.

        On failure the transaction is rolled back and the result carries the
        rows affected by the statements that ran before the failing one,
        plus the failing statement with its values inlined.
        """
        rows = 0
        async with self.engine.connect() as conn:
            transaction = await conn.begin()
            for statement in statements:
                if is_cancelled(cancel):
                    await transaction.rollback()
                    return Result.cancelled(f"{operation} on {table.name} cancelled", 0)
                try:
                    result = await conn.execute(text(statement.text), statement.params)
                except SQLAlchemyError as e:
                    await transaction.rollback()
                    if self.is_connection_failure(e):
                        raise
                    rendered = statement.render(self.dialect)
                    logger.warning(
                        "statement_failed",
                        connector=self.name,
                        table=table.name,
                        operation=operation,
                        statement=rendered,
                        error=str(e),
                    )
                    return Result.fail(
                        f"The {operation} query for table {table.name} failed. {e}",
                        kind=self._failure_kind(e),
                        cause=e,
                        statement=rendered,
                        rows_affected=rows,
                    )
                increment_statement()
                rows += max(result.rowcount, 0)
            await transaction.commit()
        return Result.ok(rows, rows_affected=rows)

    def _build_all(self, build: Any, table: Table, queries: Sequence[Any]) -> list[SqlStatement]:
        try:
            return [build(table, query) for query in queries]
        except ValueError as e:
            raise ValueConversionError(f"Invalid value for table {table.name}: {e}") from e

    @connector_operation
    async def execute_insert(
        self,
        table: Table,
        queries: Sequence[InsertQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        statements = self._build_all(self.builder.build_insert, table, queries)
        result = await self._execute_in_transaction(table, statements, cancel, "insert")
        if result.success:
            record_rows_written(result.rows_affected or 0)
        return result

    @connector_operation
    async def execute_update(
        self,
        table: Table,
        queries: Sequence[UpdateQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        statements = self._build_all(self.builder.build_update, table, queries)
        return await self._execute_in_transaction(table, statements, cancel, "update")

    @connector_operation
    async def execute_delete(
        self,
        table: Table,
        queries: Sequence[DeleteQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        statements = self._build_all(self.builder.build_delete, table, queries)
        return await self._execute_in_transaction(table, statements, cancel, "delete")

    @connector_operation
    async def execute_scalar(
        self,
        table: Table,
        query: SelectQuery,
        cancel: asyncio.Event | None = None,
    ) -> Result[Any]:
        """First column of the first row, converted to the column's type."""
        if is_cancelled(cancel):
            return Result.cancelled(f"Scalar query on {table.name} cancelled")
        default_column = next((c for c in table.columns if c.role != Role.IGNORE_FIELD), None)
        if not query.columns and default_column is None:
            return Result.fail(
                f"The table {table.name} has no column to select",
                kind=ErrorKind.VALIDATION,
            )
        statement = self._build_all(self.builder.build_select, table, [query])[0]
        async with self.engine.connect() as conn:
            try:
                result = await conn.execute(text(statement.text), statement.params)
            except SQLAlchemyError as e:
                if self.is_connection_failure(e):
                    raise
                return Result.fail(
                    f"The scalar query for table {table.name} failed. {e}",
                    kind=self._failure_kind(e),
                    cause=e,
                    statement=statement.render(self.dialect),
                )
            row = result.first()

        if row is None:
            return Result.ok(None)
        value = row[0]

        if query.columns:
            select_column = query.columns[0]
            if select_column.aggregate == Aggregate.COUNT:
                return try_parse(TypeCode.INT64, value)
            if select_column.aggregate in (Aggregate.SUM, Aggregate.AVERAGE):
                return Result.ok(value)
            column = table.get_column(select_column.column.name) or select_column.column
        else:
            column = default_column
        return try_parse(column.type_code, value)

    @connector_operation
    async def execute_insert_bulk(
        self,
        table: Table,
        source: BulkSource,
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        """Stream rows from ``source`` through one prepared INSERT.

        The statement is compiled once; each row only re-binds parameters.
        Rows are committed in batches of ``bulk_batch_size``. Cancellation is
        checked between rows: the pending uncommitted batch is discarded
        and the result reports the rows committed so far.
        """
        column_names = source.column_names()
        statement = self.builder.build_bulk_insert(table, column_names)
        compiled = text(statement.text)
        targets: list[Column | None] = [table.get_column(name) for name in column_names]
        batch_size = self.config.bulk_batch_size
        committed = 0
        batch: list[dict[str, Any]] = []
        start = time.monotonic()

        with log_context(connector=self.name, table=table.name):
            async with self.engine.connect() as conn:

                async def _flush() -> Result[int] | None:
                    nonlocal committed, batch
                    try:
                        async with conn.begin():
                            await conn.execute(compiled, batch)
                    except SQLAlchemyError as e:
                        if self.is_connection_failure(e):
                            raise
                        return Result.fail(
                            f"Bulk insert into {table.name} failed. {e}",
                            kind=self._failure_kind(e),
                            cause=e,
                            statement=statement.text,
                            rows_affected=committed,
                        )
                    committed += len(batch)
                    increment_batch()
                    logger.debug("bulk_batch_committed", rows=len(batch), total=committed)
                    batch = []
                    return None

                while await source.read():
                    if is_cancelled(cancel):
                        logger.info("bulk_load_cancelled", committed=committed)
                        return Result.cancelled(
                            f"Bulk insert into {table.name} cancelled", committed
                        )
                    params: dict[str, Any] = {}
                    for ordinal, target in enumerate(targets):
                        value = source.value(ordinal)
                        if target is not None:
                            converted = try_parse(target.type_code, value, target.max_length)
                            if not converted.success:
                                return Result.fail(
                                    f"Bulk insert into {table.name} failed on column "
                                    f"{target.name}: {converted.error}",
                                    kind=ErrorKind.CONVERSION,
                                    rows_affected=committed,
                                )
                            value = converted.value
                        params[f"col{ordinal}"] = self.dialect.convert_parameter_type(value)
                    batch.append(params)
                    if len(batch) >= batch_size:
                        failure = await _flush()
                        if failure is not None:
                            return failure

                try:
                    check_source(source)
                except SourceReadError as e:
                    return Result.fail(
                        f"Bulk insert into {table.name} failed. {e}",
                        kind=e.kind,
                        cause=e,
                        rows_affected=committed,
                    )
                if is_cancelled(cancel):
                    return Result.cancelled(f"Bulk insert into {table.name} cancelled", committed)
                if batch:
                    failure = await _flush()
                    if failure is not None:
                        return failure

        record_rows_written(committed)
        record_operation_timing("sql_bulk_insert", time.monotonic() - start)
        logger.info("bulk_load_completed", connector=self.name, table=table.name, rows=committed)
        return Result.ok(committed, rows_affected=committed)

    def get_reader(self, table: Table) -> SqlReader:
        from rowbridge.connections.sql.reader import SqlReader

        return SqlReader(self, table)
