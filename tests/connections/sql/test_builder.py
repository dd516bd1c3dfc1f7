"""Tests for SQL statement rendering."""

import pytest

from rowbridge.connections.sql import (
    PostgresDialect,
    SqliteDialect,
    SqlServerDialect,
    SqlStatementBuilder,
)
from rowbridge.query import (
    Aggregate,
    AndOr,
    CompareOperator,
    DeleteQuery,
    Filter,
    InsertQuery,
    QueryColumn,
    SelectColumn,
    SelectQuery,
    Sort,
    SortDirection,
    UpdateQuery,
)
from rowbridge.schema import Table
from rowbridge.types import TypeCode


@pytest.fixture
def builder() -> SqlStatementBuilder:
    return SqlStatementBuilder(SqliteDialect())


class TestSelect:
    """Tests for SELECT rendering."""

    def test_all_columns(self, builder: SqlStatementBuilder, sample_table: Table):
        statement = builder.build_select(sample_table)
        assert statement.text == (
            'SELECT "IntColumn", "StringColumn", "DateColumn", "BooleanColumn", '
            '"DoubleColumn" FROM "test_table"'
        )
        assert statement.params == {}

    def test_filters_are_parameterised(self, builder: SqlStatementBuilder, sample_table: Table):
        query = SelectQuery(
            filters=[
                Filter.column_value(
                    "IntColumn", CompareOperator.GREATER, 5, and_or=AndOr.OR
                ),
                Filter.column_value("StringColumn", CompareOperator.EQUAL, "it's"),
            ]
        )
        statement = builder.build_select(sample_table, query)

        assert statement.text.endswith(
            ' WHERE "IntColumn" > :f0b OR "StringColumn" = :f1b'
        )
        assert statement.params == {"f0b": 5, "f1b": "it's"}

    def test_null_literal_uses_is_null(self, builder: SqlStatementBuilder, sample_table: Table):
        query = SelectQuery(
            filters=[
                Filter.column_value("StringColumn", CompareOperator.EQUAL, None),
                Filter.column_value("DateColumn", CompareOperator.NOT_EQUAL, None),
            ]
        )
        statement = builder.build_select(sample_table, query)
        assert statement.text.endswith(
            ' WHERE "StringColumn" IS NULL AND "DateColumn" IS NOT NULL'
        )

    @pytest.mark.parametrize(
        "operator,condition,matches_value,matches_null",
        [
            (CompareOperator.EQUAL, '"StringColumn" IS NULL', False, True),
            (CompareOperator.NOT_EQUAL, '"StringColumn" IS NOT NULL', True, False),
            (CompareOperator.LESS, "1 = 0", False, False),
            (CompareOperator.LESS_EQUAL, '"StringColumn" IS NULL', False, True),
            (CompareOperator.GREATER, '"StringColumn" IS NOT NULL', True, False),
            (CompareOperator.GREATER_EQUAL, "1 = 1", True, True),
        ],
    )
    def test_null_literal_agrees_with_row_match(
        self,
        builder: SqlStatementBuilder,
        sample_table: Table,
        operator,
        condition,
        matches_value,
        matches_null,
    ):
        filters = [Filter.column_value("StringColumn", operator, None)]

        statement = builder.build_select(sample_table, SelectQuery(filters=filters))

        assert statement.text.endswith(f" WHERE {condition}")
        row = list(sample_table.rows[0])
        assert sample_table.row_match(filters, row) is matches_value
        row[1] = None
        assert sample_table.row_match(filters, row) is matches_null

    def test_in_list(self, builder: SqlStatementBuilder, sample_table: Table):
        query = SelectQuery(
            filters=[Filter.column_value("IntColumn", CompareOperator.IS_IN, [1, 2])]
        )
        statement = builder.build_select(sample_table, query)
        assert statement.text.endswith(' WHERE "IntColumn" IN (:f0b_0, :f0b_1)')
        assert statement.params == {"f0b_0": 1, "f0b_1": 2}

    def test_empty_in_list_matches_nothing(
        self, builder: SqlStatementBuilder, sample_table: Table
    ):
        query = SelectQuery(
            filters=[Filter.column_value("IntColumn", CompareOperator.IS_IN, [])]
        )
        assert builder.build_select(sample_table, query).text.endswith(" WHERE 1 = 0")

    def test_column_comparison(self, builder: SqlStatementBuilder, sample_table: Table):
        query = SelectQuery(
            filters=[
                Filter.column_column(
                    "IntColumn", CompareOperator.LESS, "DoubleColumn", TypeCode.DOUBLE
                )
            ]
        )
        assert builder.build_select(sample_table, query).text.endswith(
            ' WHERE "IntColumn" < "DoubleColumn"'
        )

    def test_sort_group_and_limit(self, builder: SqlStatementBuilder, sample_table: Table):
        query = SelectQuery(
            columns=[
                SelectColumn(column="BooleanColumn"),
                SelectColumn(column="IntColumn", aggregate=Aggregate.COUNT),
            ],
            groups=[sample_table.columns["BooleanColumn"]],
            sorts=[Sort(column="BooleanColumn", direction=SortDirection.DESCENDING)],
            rows=3,
        )
        statement = builder.build_select(sample_table, query)
        assert statement.text == (
            'SELECT "BooleanColumn", count("IntColumn") FROM "test_table" '
            'GROUP BY "BooleanColumn" ORDER BY "BooleanColumn" DESC LIMIT 3'
        )

    def test_sql_server_top_and_nolock(self, sample_table: Table):
        statement = SqlStatementBuilder(SqlServerDialect()).build_select(
            sample_table, SelectQuery(columns=[SelectColumn(column="IntColumn")], rows=3)
        )
        assert statement.text == "SELECT TOP 3 [IntColumn] FROM [test_table] WITH (NOLOCK)"

    def test_bad_literal_raises(self, builder: SqlStatementBuilder, sample_table: Table):
        query = SelectQuery(
            filters=[
                Filter(
                    column1=sample_table.columns["IntColumn"],
                    operator=CompareOperator.EQUAL,
                    value2="not a number",
                    compare_type=sample_table.columns["IntColumn"].type_code,
                )
            ]
        )
        with pytest.raises(ValueError):
            builder.build_select(sample_table, query)


class TestWrites:
    """Tests for INSERT, UPDATE and DELETE rendering."""

    def test_insert_converts_values(self, builder: SqlStatementBuilder, sample_table: Table):
        query = InsertQuery(
            table="test_table",
            insert_columns=[
                QueryColumn(column="IntColumn", value="7"),
                QueryColumn(column="BooleanColumn", value=True),
            ],
        )
        statement = builder.build_insert(sample_table, query)

        assert statement.text == (
            'INSERT INTO "test_table" ("IntColumn", "BooleanColumn") VALUES (:col0, :col1)'
        )
        assert statement.params == {"col0": 7, "col1": 1}

    def test_insert_rejects_long_strings(self, builder: SqlStatementBuilder, sample_table: Table):
        query = InsertQuery(
            table="test_table",
            insert_columns=[QueryColumn(column="StringColumn", value="x" * 51)],
        )
        with pytest.raises(ValueError, match="maximum string length"):
            builder.build_insert(sample_table, query)

    def test_render_inlines_values(self, builder: SqlStatementBuilder, sample_table: Table):
        query = InsertQuery(
            table="test_table",
            insert_columns=[
                QueryColumn(column="IntColumn", value=1),
                QueryColumn(column="StringColumn", value="O'Brien"),
            ],
        )
        statement = builder.build_insert(sample_table, query)
        assert statement.render(builder.dialect) == (
            "INSERT INTO \"test_table\" (\"IntColumn\", \"StringColumn\") VALUES (1, 'O''Brien')"
        )

    def test_update(self, builder: SqlStatementBuilder, sample_table: Table):
        query = UpdateQuery(
            table="test_table",
            update_columns=[QueryColumn(column="StringColumn", value="changed")],
            filters=[Filter.column_value("IntColumn", CompareOperator.EQUAL, 3)],
        )
        statement = builder.build_update(sample_table, query)
        assert statement.text == (
            'UPDATE "test_table" SET "StringColumn" = :col0 WHERE "IntColumn" = :f0b'
        )
        assert statement.params == {"col0": "changed", "f0b": 3}

    def test_delete_without_filters(self, builder: SqlStatementBuilder, sample_table: Table):
        statement = builder.build_delete(sample_table, DeleteQuery(table="test_table"))
        assert statement.text == 'DELETE FROM "test_table"'

    def test_bulk_insert(self, builder: SqlStatementBuilder, sample_table: Table):
        statement = builder.build_bulk_insert(sample_table, ["IntColumn", "StringColumn"])
        assert statement.text == (
            'INSERT INTO "test_table" ("IntColumn", "StringColumn") VALUES (:col0, :col1)'
        )


class TestDdl:
    """Tests for CREATE, DROP and TRUNCATE rendering."""

    def test_sqlite_create_table_uses_inline_comments(
        self, builder: SqlStatementBuilder, sample_table: Table
    ):
        statements = builder.build_create_table(sample_table)

        assert len(statements) == 1
        lines = statements[0].splitlines()
        assert lines[0] == 'CREATE TABLE "test_table" -- Test table'
        assert lines[2] == '    "IntColumn" int NOT NULL PRIMARY KEY, -- Row number'
        assert lines[3] == '    "StringColumn" nvarchar(50) NULL,'
        assert lines[-2] == '    "DoubleColumn" float NULL'
        assert lines[-1] == ")"

    def test_postgres_create_table_adds_comment_statements(self, sample_table: Table):
        statements = SqlStatementBuilder(PostgresDialect()).build_create_table(sample_table)

        assert statements[1] == "COMMENT ON TABLE \"test_table\" IS 'Test table'"
        assert statements[2] == (
            "COMMENT ON COLUMN \"test_table\".\"IntColumn\" IS 'Row number'"
        )
        assert "--" not in statements[0]

    def test_drop_and_truncate(self, builder: SqlStatementBuilder, sample_table: Table):
        assert builder.build_drop_table(sample_table) == 'DROP TABLE "test_table"'
        assert builder.build_truncate(sample_table) == 'DELETE FROM "test_table"'
        postgres = SqlStatementBuilder(PostgresDialect())
        assert postgres.build_truncate(sample_table) == 'TRUNCATE TABLE "test_table"'
