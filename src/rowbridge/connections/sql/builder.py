"""Render the query representation into parameterised SQL statements."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from rowbridge.connections.sql.dialect import SqlDialect
from rowbridge.query import (
    AndOr,
    CompareOperator,
    DeleteQuery,
    Filter,
    InsertQuery,
    SelectQuery,
    SortDirection,
    UpdateQuery,
)
from rowbridge.schema import Column, Role, Table
from rowbridge.types import TypeCode, try_parse

_PARAMETER = re.compile(r"(?<!:):(\w+)")


@dataclass
class SqlStatement:
    """Statement text with named (``:name``) parameters."""

    text: str
    params: dict[str, Any] = field(default_factory=dict)
    types: dict[str, TypeCode] = field(default_factory=dict)

    def render(self, dialect: SqlDialect) -> str:
        """Statement with parameters inlined as literals, for diagnostics only."""

        def _literal(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in self.params:
                return match.group(0)
            return dialect.get_sql_field_value_quote(
                self.types.get(name, TypeCode.UNKNOWN), self.params[name]
            )

        return _PARAMETER.sub(_literal, self.text)


class SqlStatementBuilder:
    """Builds statements for one dialect.

    Literal values are always bound as parameters; identifiers go through
    ``add_delimiter``.
    """

    def __init__(self, dialect: SqlDialect):
        self.dialect = dialect

    def _bind(
        self,
        statement: SqlStatement,
        name: str,
        type_code: TypeCode,
        value: Any,
        max_length: int | None = None,
    ) -> str:
        converted = try_parse(type_code, value, max_length)
        if not converted.success:
            raise ValueError(converted.error)
        statement.params[name] = self.dialect.convert_parameter_type(converted.value)
        statement.types[name] = type_code
        return f":{name}"

    # === Filters ===

    def _filter_side(
        self,
        statement: SqlStatement,
        column: Column | None,
        value: Any,
        filter_: Filter,
        name: str,
    ) -> str:
        if column is not None:
            return self.dialect.add_delimiter(column.name)
        if isinstance(value, list):
            names = [
                self._bind(statement, f"{name}_{i}", filter_.compare_type, item)
                for i, item in enumerate(value)
            ]
            return "(" + ", ".join(names) + ")"
        return self._bind(statement, name, filter_.compare_type, value)

    def _null_condition(self, column: Column, operator: CompareOperator) -> str:
        """Compare a column with a null literal the way ``compare`` orders nulls.

        Null sorts below every value, so no value is less than null and
        every value is greater than or equal to it.
        """
        name = self.dialect.add_delimiter(column.name)
        match operator:
            case CompareOperator.EQUAL | CompareOperator.IS_IN | CompareOperator.LESS_EQUAL:
                return f"{name} IS NULL"
            case CompareOperator.NOT_EQUAL | CompareOperator.GREATER:
                return f"{name} IS NOT NULL"
            case CompareOperator.LESS:
                return "1 = 0"
        return "1 = 1"

    def build_filters(
        self, statement: SqlStatement, filters: Sequence[Filter], prefix: str = "f"
    ) -> str:
        """Render a WHERE clause (empty when there are no filters)."""
        if not filters:
            return ""
        parts: list[str] = []
        for index, filter_ in enumerate(filters):
            name = f"{prefix}{index}"
            if isinstance(filter_.value2, list) and not filter_.value2:
                # Nothing can be IN an empty list
                condition = "1 = 0"
            elif filter_.column1 is not None and filter_.column2 is None and filter_.value2 is None:
                condition = self._null_condition(filter_.column1, filter_.operator)
            else:
                left = self._filter_side(
                    statement, filter_.column1, filter_.value1, filter_, f"{name}a"
                )
                right = self._filter_side(
                    statement, filter_.column2, filter_.value2, filter_, f"{name}b"
                )
                condition = f"{left} {self.dialect.compare_operator(filter_.operator)} {right}"
            parts.append(condition)
            parts.append("OR" if filter_.and_or == AndOr.OR else "AND")
        # trailing conjunction
        parts.pop()
        return " WHERE " + " ".join(parts)

    # === Statements ===

    def build_select(self, table: Table, query: SelectQuery | None = None) -> SqlStatement:
        query = query or SelectQuery()
        statement = SqlStatement("")
        if query.columns:
            columns = ", ".join(self.dialect.aggregate_expression(c) for c in query.columns)
        else:
            columns = ", ".join(
                self.dialect.add_delimiter(c.name)
                for c in table.columns
                if c.role != Role.IGNORE_FIELD
            )
        sql = (
            f"SELECT {self.dialect.limit_prefix(query.rows)}{columns} "
            f"FROM {self.dialect.table_name(table)}{self.dialect.from_attribute(table)}"
        )
        sql += self.build_filters(statement, query.filters)
        if query.groups:
            groups = ", ".join(self.dialect.add_delimiter(c.name) for c in query.groups)
            sql += f" GROUP BY {groups}"
        if query.sorts:
            sql += " ORDER BY " + ", ".join(
                self.dialect.add_delimiter(s.column.name)
                + (" DESC" if s.direction == SortDirection.DESCENDING else "")
                for s in query.sorts
            )
        sql += self.dialect.limit_suffix(query.rows)
        statement.text = sql
        return statement

    def _column_type(self, table: Table, column: Column) -> tuple[TypeCode, int | None]:
        target = table.get_column(column.name)
        if target is None:
            return column.type_code, column.max_length
        return target.type_code, target.max_length

    def build_insert(self, table: Table, query: InsertQuery) -> SqlStatement:
        statement = SqlStatement("")
        names: list[str] = []
        values: list[str] = []
        for index, query_column in enumerate(query.insert_columns):
            type_code, max_length = self._column_type(table, query_column.column)
            names.append(self.dialect.add_delimiter(query_column.column.name))
            values.append(
                self._bind(statement, f"col{index}", type_code, query_column.value, max_length)
            )
        statement.text = (
            f"INSERT INTO {self.dialect.table_name(table)} ({', '.join(names)}) "
            f"VALUES ({', '.join(values)})"
        )
        return statement

    def build_bulk_insert(self, table: Table, column_names: Sequence[str]) -> SqlStatement:
        """INSERT with one ``:colN`` parameter per source field, bound per row."""
        names = ", ".join(self.dialect.add_delimiter(name) for name in column_names)
        values = ", ".join(f":col{i}" for i in range(len(column_names)))
        return SqlStatement(
            f"INSERT INTO {self.dialect.table_name(table)} ({names}) VALUES ({values})"
        )

    def build_update(self, table: Table, query: UpdateQuery) -> SqlStatement:
        statement = SqlStatement("")
        assignments: list[str] = []
        for index, query_column in enumerate(query.update_columns):
            type_code, max_length = self._column_type(table, query_column.column)
            parameter = self._bind(
                statement, f"col{index}", type_code, query_column.value, max_length
            )
            name = self.dialect.add_delimiter(query_column.column.name)
            assignments.append(f"{name} = {parameter}")
        statement.text = (
            f"UPDATE {self.dialect.table_name(table)} SET {', '.join(assignments)}"
            + self.build_filters(statement, query.filters)
        )
        return statement

    def build_delete(self, table: Table, query: DeleteQuery) -> SqlStatement:
        statement = SqlStatement("")
        statement.text = f"DELETE FROM {self.dialect.table_name(table)}" + self.build_filters(
            statement, query.filters
        )
        return statement

    def build_create_table(self, table: Table) -> list[str]:
        """CREATE TABLE, followed by COMMENT statements where supported.

        Dialects without native comments get the descriptions as inline
        ``--`` comments inside the DDL.
        """
        lines: list[str] = []
        header = f"CREATE TABLE {self.dialect.table_name(table)}"
        if table.description and not self.dialect.supports_comments:
            header += f" -- {_one_line(table.description)}"
        lines.append(header)
        lines.append("(")
        column_count = len(table.columns)
        for index, column in enumerate(table.columns):
            name = self.dialect.add_delimiter(column.name)
            line = f"    {name} {self.dialect.get_sql_type(column)}"
            line += " NULL" if column.nullable else " NOT NULL"
            if column.role == Role.SURROGATE_KEY:
                line += " PRIMARY KEY"
            if index < column_count - 1:
                line += ","
            if column.description and not self.dialect.supports_comments:
                line += f" -- {_one_line(column.description)}"
            lines.append(line)
        lines.append(")")
        statements = ["\n".join(lines)]

        if self.dialect.supports_comments:
            table_name = self.dialect.table_name(table)
            if table.description:
                statements.append(
                    f"COMMENT ON TABLE {table_name} IS "
                    f"{self.dialect.quote_value(table.description)}"
                )
            for column in table.columns:
                if column.description:
                    statements.append(
                        f"COMMENT ON COLUMN {table_name}.{self.dialect.add_delimiter(column.name)} "
                        f"IS {self.dialect.quote_value(column.description)}"
                    )
        return statements

    def build_drop_table(self, table: Table) -> str:
        return f"DROP TABLE {self.dialect.table_name(table)}"

    def build_truncate(self, table: Table) -> str:
        return f"{self.dialect.truncate_keyword} {self.dialect.table_name(table)}"


def _one_line(text: str) -> str:
    return " ".join(text.split())
