"""Base class for all connectors.

A connector executes the backend-neutral query representation against one
physical store. Every public operation returns a ``Result``; expected
failures never raise.

State machine per instance:

    UNOPENED -> OPEN -> BROKEN | CLOSED

A connection failure moves the connector to BROKEN; later calls on a
BROKEN or CLOSED connector fail fast with ``ErrorKind.UNREACHABLE``.
"""

from __future__ import annotations

import asyncio
import functools
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, ParamSpec, TypeVar

from rowbridge.core.exceptions import RowbridgeError
from rowbridge.core.logging import get_logger
from rowbridge.core.models import ErrorKind, Result
from rowbridge.query import DeleteQuery, InsertQuery, SelectQuery, UpdateQuery
from rowbridge.schema import Table
from rowbridge.types import TypeCode, get_max_value, get_min_value

if TYPE_CHECKING:
    from rowbridge.connections.reader import BulkSource, RowReader

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_DEFAULT_NAME_PATTERN = re.compile(r"^[^\x00]{1,128}$")


class ConnectorState(str, Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    BROKEN = "broken"
    CLOSED = "closed"


class ConnectorCategory(str, Enum):
    """Family of physical store a connector talks to."""

    SQL = "sql"
    NOSQL = "nosql"
    FILE = "file"


def is_cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def connector_operation(
    func: Callable[P, Awaitable[Result[T]]],
) -> Callable[P, Awaitable[Result[T]]]:
    """Wrap a public connector operation with the state guard.

    Opens an UNOPENED connector, fails fast when BROKEN or CLOSED, turns
    ``RowbridgeError`` into a failed result of its kind and marks the
    connector BROKEN on connection failures. Other exceptions become
    UNEXPECTED failures carrying the original exception as ``cause``.
    """

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[T]:
        connector: Connector = args[0]  # type: ignore[assignment]
        ready = await connector.ensure_open()
        if not ready.success:
            return ready.propagate()
        try:
            return await func(*args, **kwargs)
        except RowbridgeError as e:
            return Result.fail(str(e), kind=e.kind, cause=e, statement=e.statement)
        except Exception as e:
            if connector.is_connection_failure(e):
                connector.mark_broken(e)
                return Result.fail(
                    f"{connector.name}: connection failed during {func.__name__}: {e}",
                    kind=ErrorKind.UNREACHABLE,
                    cause=e,
                )
            logger.error(
                "connector_operation_failed",
                connector=connector.name,
                operation=func.__name__,
                error=str(e),
                exc_info=True,
            )
            return Result.fail(
                f"{connector.name}: {func.__name__} failed: {e}",
                kind=ErrorKind.UNEXPECTED,
                cause=e,
            )

    return wrapper


class Connector(ABC):
    """Contract every backend implements.

    Capability flags let callers adapt (e.g. sort in memory when
    ``can_sort`` is False) instead of failing at call time.
    """

    category: ClassVar[ConnectorCategory]
    can_bulk_load: ClassVar[bool] = False
    can_sort: ClassVar[bool] = False
    can_filter: ClassVar[bool] = False
    can_aggregate: ClassVar[bool] = False

    table_name_pattern: ClassVar[re.Pattern[str]] = _DEFAULT_NAME_PATTERN
    column_name_pattern: ClassVar[re.Pattern[str]] = _DEFAULT_NAME_PATTERN

    def __init__(self, name: str | None = None):
        self.name = name or type(self).__name__
        self._state = ConnectorState.UNOPENED
        self._broken_reason: str | None = None
        self._state_lock = asyncio.Lock()

    # === State ===

    @property
    def state(self) -> ConnectorState:
        return self._state

    async def open(self) -> Result[bool]:
        """Open the backend connection."""
        async with self._state_lock:
            if self._state == ConnectorState.OPEN:
                return Result.ok(True)
            failure = self._state_failure()
            if failure is not None:
                return failure
            try:
                await self._open()
            except Exception as e:
                self.mark_broken(e)
                return Result.fail(
                    f"{self.name}: could not open connection: {e}",
                    kind=ErrorKind.UNREACHABLE,
                    cause=e,
                )
            self._state = ConnectorState.OPEN
            logger.debug("connector_opened", connector=self.name)
            return Result.ok(True)

    async def close(self) -> None:
        if self._state == ConnectorState.CLOSED:
            return
        try:
            await self._close()
        finally:
            self._state = ConnectorState.CLOSED
            logger.debug("connector_closed", connector=self.name)

    async def ensure_open(self) -> Result[bool]:
        if self._state == ConnectorState.OPEN:
            return Result.ok(True)
        return await self.open()

    def _state_failure(self) -> Result[Any] | None:
        if self._state == ConnectorState.BROKEN:
            return Result.fail(
                f"{self.name} is broken: {self._broken_reason}",
                kind=ErrorKind.UNREACHABLE,
            )
        if self._state == ConnectorState.CLOSED:
            return Result.fail(
                f"{self.name} is closed; create a new connector to reconnect",
                kind=ErrorKind.UNREACHABLE,
            )
        return None

    def mark_broken(self, error: BaseException) -> None:
        self._state = ConnectorState.BROKEN
        self._broken_reason = str(error)
        logger.warning("connector_broken", connector=self.name, error=str(error))

    def is_connection_failure(self, error: BaseException) -> bool:
        """Whether ``error`` means the backend can no longer be reached."""
        return isinstance(error, ConnectionError)

    def _failure_kind(self, error: BaseException) -> ErrorKind:
        """Outcome category of a backend error. Default: UNEXPECTED."""
        return ErrorKind.UNEXPECTED

    def failure_result(
        self, error: Exception, message: str, rows_affected: int | None = None
    ) -> Result[Any]:
        """Turn an error raised part way through an operation into a failed result.

        Connection failures mark the connector BROKEN.
        """
        statement = None
        if isinstance(error, RowbridgeError):
            kind = error.kind
            statement = error.statement
        elif self.is_connection_failure(error):
            self.mark_broken(error)
            kind = ErrorKind.UNREACHABLE
        else:
            kind = self._failure_kind(error)
        return Result.fail(
            f"{message} {error}",
            kind=kind,
            cause=error,
            statement=statement,
            rows_affected=rows_affected,
        )

    async def _open(self) -> None:  # noqa: B027
        """Acquire backend resources. Default: nothing to acquire."""

    async def _close(self) -> None:  # noqa: B027
        """Release backend resources."""

    async def __aenter__(self) -> Connector:
        result = await self.open()
        if not result.success:
            raise ConnectionError(result.error)
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # === Names and ranges ===

    def is_valid_table_name(self, name: str) -> bool:
        return bool(name) and bool(self.table_name_pattern.match(name))

    def is_valid_column_name(self, name: str) -> bool:
        return bool(name) and bool(self.column_name_pattern.match(name))

    def validate_table(self, table: Table) -> Result[bool]:
        """Check table and column names before any I/O."""
        if not self.is_valid_table_name(table.name):
            return Result.fail(
                f"The table name {table.name!r} is not valid for {self.name}",
                kind=ErrorKind.VALIDATION,
            )
        for column in table.columns:
            if not self.is_valid_column_name(column.name):
                return Result.fail(
                    f"The column name {column.name!r} in table {table.name} is not valid "
                    f"for {self.name}",
                    kind=ErrorKind.VALIDATION,
                )
        return Result.ok(True)

    def get_max_value(self, type_code: TypeCode, length: int = 0) -> Any:
        """Largest value this store can hold for ``type_code``."""
        return get_max_value(type_code, length)

    def get_min_value(self, type_code: TypeCode) -> Any:
        """Smallest value this store can hold for ``type_code``."""
        return get_min_value(type_code)

    def initialize_table(self, table: Table) -> Table:
        """Add the columns this store requires. Default: unchanged."""
        return table

    # === Operations ===

    @abstractmethod
    async def create_database(self, database_name: str) -> Result[bool]:
        """Create (or attach to) a database/container/directory."""

    @abstractmethod
    async def create_table(self, table: Table, drop_if_exists: bool = False) -> Result[bool]:
        """Create a table; an existing one fails unless ``drop_if_exists``."""

    @abstractmethod
    async def drop_table(self, table: Table) -> Result[bool]:
        pass

    @abstractmethod
    async def table_exists(self, table: Table) -> Result[bool]:
        pass

    @abstractmethod
    async def get_table_list(self) -> Result[list[str]]:
        pass

    @abstractmethod
    async def get_source_table_info(self, table_name: str) -> Result[Table]:
        """Discover a table's schema from the store."""

    @abstractmethod
    async def truncate_table(
        self, table: Table, cancel: asyncio.Event | None = None
    ) -> Result[bool]:
        pass

    @abstractmethod
    async def execute_insert(
        self,
        table: Table,
        queries: Sequence[InsertQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        pass

    @abstractmethod
    async def execute_update(
        self,
        table: Table,
        queries: Sequence[UpdateQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        pass

    @abstractmethod
    async def execute_delete(
        self,
        table: Table,
        queries: Sequence[DeleteQuery],
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        pass

    @abstractmethod
    async def execute_scalar(
        self,
        table: Table,
        query: SelectQuery,
        cancel: asyncio.Event | None = None,
    ) -> Result[Any]:
        pass

    @abstractmethod
    async def execute_insert_bulk(
        self,
        table: Table,
        source: BulkSource,
        cancel: asyncio.Event | None = None,
    ) -> Result[int]:
        """Stream rows from ``source`` into ``table``.

        A cancelled load returns ``Result.cancelled`` with the number of
        rows committed before the cancellation was seen.
        """

    @abstractmethod
    def get_reader(self, table: Table) -> RowReader:
        pass
