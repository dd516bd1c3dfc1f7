"""Table schema with an in-memory row buffer and row-scan lookups."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

from rowbridge.core.logging import get_logger
from rowbridge.core.models import ErrorKind, Result
from rowbridge.schema.column import Column, Role
from rowbridge.schema.column_set import ColumnSet
from rowbridge.types import TypeCode, clean_string, compare, format_value

if TYPE_CHECKING:
    from rowbridge.query.models import Filter, SelectQuery

logger = get_logger(__name__)

Row = list[Any]


def escape_csv_field(value: str) -> str:
    """Quote a CSV field when it holds a quote, space, separator or line break.

    Embedded quotes are doubled.
    """
    if any(ch in value for ch in ('"', " ", ",", "\n", "\r")):
        return '"' + value.replace('"', '""') + '"'
    return value


def format_csv_row(values: Iterable[Any]) -> str:
    return ",".join(escape_csv_field("" if v is None else format_value(v)) for v in values)


class Table:
    """A table's schema plus a buffer of fixed-arity rows.

    Rows are lists positionally aligned with ``columns``. The table owns its
    buffer; connectors fill it a batch at a time and never keep references
    to it.
    """

    def __init__(
        self,
        name: str,
        columns: Iterable[Column] | None = None,
        schema_name: str | None = None,
        description: str | None = None,
        logical_name: str | None = None,
    ):
        self.name = name
        self.schema_name = schema_name
        self.description = description
        self.logical_name = logical_name or name
        self.columns = ColumnSet(columns)
        self.rows: list[Row] = []
        self.continuation_token: str | None = None

    @property
    def base_name(self) -> str:
        """Table name reduced to letters and digits."""
        return clean_string(self.name)

    @property
    def qualified_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.name}"
        return self.name

    # === Schema ===

    def add_column(
        self,
        name: str | Column,
        type_code: TypeCode = TypeCode.STRING,
        role: Role = Role.TRACKING_FIELD,
        **kwargs: Any,
    ) -> Column:
        column = name if isinstance(name, Column) else Column(
            name=name, type_code=type_code, role=role, **kwargs
        )
        self.columns.append(column)
        return column

    def get_ordinal(self, column: Column | str) -> int:
        return self.columns.ordinal(column)

    def get_column(self, name: str) -> Column | None:
        return self.columns.get(name)

    def get_column_by_role(self, role: Role) -> Column | None:
        return self.columns.by_role(role)

    def get_ordinal_by_role(self, role: Role) -> int:
        return self.columns.ordinal_of_role(role)

    def get_columns_by_role(self, *roles: Role) -> list[Column]:
        return self.columns.all_by_role(*roles)

    def add_audit_columns(self) -> None:
        """Add the standard audit columns the delta engine maintains."""
        audit = [
            ("SurrogateKey", Role.SURROGATE_KEY),
            ("ValidFromDate", Role.VALID_FROM_DATE),
            ("ValidToDate", Role.VALID_TO_DATE),
            ("CreateDate", Role.CREATE_DATE),
            ("UpdateDate", Role.UPDATE_DATE),
            ("IsCurrent", Role.IS_CURRENT_FIELD),
        ]
        for name, role in audit:
            if self.get_column_by_role(role) is None:
                self.columns.append(Column.for_role(name, role, nullable=False))

    # === Rows ===

    def add_row(self, *values: Any) -> Row:
        """Append a row; the value count must equal the column count."""
        if len(values) == 1 and isinstance(values[0], list | tuple) and len(self.columns) != 1:
            values = tuple(values[0])
        if len(values) != len(self.columns):
            raise ValueError(
                f"Row has {len(values)} values but table {self.name} has "
                f"{len(self.columns)} columns"
            )
        row = list(values)
        self.rows.append(row)
        return row

    def clear_rows(self) -> None:
        self.rows = []

    def __len__(self) -> int:
        return len(self.rows)

    # === Derived tables ===

    def copy(self, remove_schema: bool = False, include_rows: bool = False) -> Table:
        """Deep copy of the schema (and optionally the rows)."""
        columns = [
            c.copy_column(schema_name=None) if remove_schema else c.copy_column()
            for c in self.columns
        ]
        table = Table(
            self.name,
            columns,
            schema_name=None if remove_schema else self.schema_name,
            description=self.description,
            logical_name=self.logical_name,
        )
        if include_rows:
            table.rows = copy.deepcopy(self.rows)
        return table

    def get_rejected_table(self, rejected_name: str) -> Table | None:
        """Sibling table holding rows that failed validation."""
        if not rejected_name:
            return None
        table = self.copy()
        table.name = rejected_name
        table.logical_name = rejected_name
        table.description = f"Rejected table for: {self.description or self.name}"
        if self.get_column_by_role(Role.REJECTED_REASON) is None:
            table.columns.append(Column.for_role("RejectedReason", Role.REJECTED_REASON))
        return table

    def default_select_query(self, rows: int = -1) -> SelectQuery:
        """Select every non-ignored, typed column."""
        from rowbridge.query.models import SelectColumn, SelectQuery

        return SelectQuery(
            columns=[
                SelectColumn(column=c)
                for c in self.columns
                if c.role != Role.IGNORE_FIELD and c.type_code != TypeCode.UNKNOWN
            ],
            table=self.name,
            rows=rows,
        )

    def get_csv(self) -> str:
        """Render the header and buffered rows as CSV text."""
        lines = [",".join(escape_csv_field(c.name) for c in self.columns)]
        lines.extend(format_csv_row(row) for row in self.rows)
        return "\n".join(lines) + "\n"

    # === Lookups ===

    def _filter_value(self, value: Any, column: Column | None, row: Sequence[Any]) -> Any:
        if value is not None or column is None:
            return value
        ordinal = self.get_ordinal(column)
        if ordinal < 0:
            raise KeyError(f"Column {column.name} not found in table {self.name}")
        return row[ordinal]

    def _filter_matches(self, filter_: Filter, row: Sequence[Any]) -> bool:
        value1 = self._filter_value(filter_.value1, filter_.column1, row)
        value2 = self._filter_value(filter_.value2, filter_.column2, row)
        candidates = value2 if isinstance(value2, list) else [value2]
        for candidate in candidates:
            result = compare(filter_.compare_type, value1, candidate)
            if not result.success:
                raise ValueError(result.error)
            if filter_.operator.evaluate(result.value):
                return True
        return False

    def row_match(self, filters: Sequence[Filter], row: Sequence[Any]) -> bool:
        """Check a row against a filter chain.

        Each filter's ``and_or`` joins it to the next one. AND binds tighter
        than OR, as in a SQL WHERE clause, and each AND group stops at its
        first failing filter.

        Raises:
            KeyError: A filter column is not in the table
            ValueError: A value could not be compared under the filter's type
        """
        from rowbridge.query.models import AndOr

        group_match = True
        for index, filter_ in enumerate(filters):
            if group_match:
                group_match = self._filter_matches(filter_, row)
            is_last = index == len(filters) - 1
            if is_last or filter_.and_or == AndOr.OR:
                if group_match:
                    return True
                group_match = True
        return not filters

    def lookup_single_row(self, filters: Sequence[Filter], start_row: int = 0) -> Result[Row]:
        """First buffered row matching ``filters``, scanning from ``start_row``."""
        try:
            for row in self.rows[start_row:]:
                if self.row_match(filters, row):
                    return Result.ok(row)
        except (KeyError, ValueError) as e:
            logger.warning("lookup_failed", table=self.name, error=str(e))
            return Result.fail(f"Error in lookup: {e}", kind=ErrorKind.CONVERSION, cause=e)
        return Result.fail("Record not found.", kind=ErrorKind.NOT_FOUND)

    def lookup_multiple_rows(
        self, filters: Sequence[Filter], start_row: int = 0
    ) -> Result[list[Row]]:
        """All buffered rows matching ``filters``, in buffer order."""
        try:
            rows = [row for row in self.rows[start_row:] if self.row_match(filters, row)]
        except (KeyError, ValueError) as e:
            logger.warning("lookup_failed", table=self.name, error=str(e))
            return Result.fail(f"Error in lookup: {e}", kind=ErrorKind.CONVERSION, cause=e)
        return Result.ok(rows)

    def __repr__(self) -> str:
        return f"Table({self.name!r}, columns={self.columns.names()!r}, rows={len(self.rows)})"
