"""Tests for SQL statement construction."""

import re

import pytest

from athena_pg_migrator.errors import ConfigurationError
from athena_pg_migrator.models import TableDefinition
from athena_pg_migrator.services.statement_builder import StatementBuilder

from tests.conftest import render_sql


@pytest.fixture
def builder():
    table = TableDefinition("src_accounts", "accounts", ("id", "name", "email"))
    return StatementBuilder.from_tables([table], schema="public")


class TestBuildSelect:

    def test_projection_follows_column_order(self, builder):
        table = TableDefinition("src_accounts", "accounts", ("name", "id"))
        assert builder.build_select(table) == 'SELECT "name", "id" FROM "src_accounts"'

    def test_rejects_column_outside_allow_list(self, builder):
        table = TableDefinition("src_accounts", "accounts", ("id", "password"))
        with pytest.raises(ConfigurationError, match="password"):
            builder.build_select(table)

    def test_rejects_table_without_columns(self, builder):
        with pytest.raises(ConfigurationError):
            builder.build_select(TableDefinition("src_accounts", "accounts", ()))


class TestBuildInsert:

    def test_statement_text(self, builder):
        batch = builder.build_insert("accounts", ["id", "name"], [["1", "alice"], ["2", "bob"]])

        assert render_sql(batch.sql) == (
            'INSERT INTO "public"."accounts" ("id", "name") '
            "VALUES (%(p1)s, %(p2)s), (%(p3)s, %(p4)s)"
        )
        assert batch.parameter_values == ["1", "alice", "2", "bob"]
        assert batch.parameters == {"p1": "1", "p2": "alice", "p3": "2", "p4": "bob"}

    def test_parameter_numbering_is_a_row_major_bijection(self, builder):
        columns = ["id", "name", "email"]
        rows = [[f"r{i}c{j}" for j in range(len(columns))] for i in range(7)]

        batch = builder.build_insert("accounts", columns, rows)

        numbers = [int(n) for n in re.findall(r"%\(p(\d+)\)s", render_sql(batch.sql))]
        assert sorted(numbers) == list(range(1, 7 * 3 + 1))
        assert numbers == list(range(1, 7 * 3 + 1))
        for i, row in enumerate(rows):
            for j, value in enumerate(row):
                assert batch.parameter_values[i * 3 + j] == value
                assert batch.parameters[f"p{i * 3 + j + 1}"] == value

    def test_null_values_are_kept(self, builder):
        batch = builder.build_insert("accounts", ["id", "name"], [["1", None]])
        assert batch.parameters == {"p1": "1", "p2": None}

    def test_empty_rows_rejected_before_construction(self, builder):
        with pytest.raises(ValueError):
            builder.build_insert("accounts", ["id", "name"], [])

    def test_row_width_must_match_columns(self, builder):
        with pytest.raises(ValueError, match="第2行"):
            builder.build_insert("accounts", ["id", "name"], [["1", "alice"], ["2"]])

    def test_rejects_unknown_table(self, builder):
        with pytest.raises(ConfigurationError):
            builder.build_insert("users", ["id"], [["1"]])

    def test_rejects_injection_in_identifier(self):
        builder = StatementBuilder({"accounts", "id"})
        with pytest.raises(ConfigurationError):
            builder.build_insert("accounts; DROP TABLE accounts", ["id"], [["1"]])
        with pytest.raises(ConfigurationError):
            StatementBuilder({"accounts"}, schema="public;--")

    def test_without_schema(self):
        builder = StatementBuilder({"accounts", "id"})
        batch = builder.build_insert("accounts", ["id"], [["1"]])
        assert render_sql(batch.sql) == 'INSERT INTO "accounts" ("id") VALUES (%(p1)s)'

    def test_reserved_words_are_quoted(self):
        table = TableDefinition("src_users", "users", ("id", "user", "order"))
        builder = StatementBuilder.from_tables([table], schema="public")

        batch = builder.build_insert("users", table.columns, [["1", "u", "o"]])

        assert builder.build_select(table) == 'SELECT "id", "user", "order" FROM "src_users"'
        assert render_sql(batch.sql) == (
            'INSERT INTO "public"."users" ("id", "user", "order") VALUES (%(p1)s, %(p2)s, %(p3)s)'
        )


class TestValidateTable:

    def test_accepts_resolved_table(self, builder):
        builder.validate_table(TableDefinition("src_accounts", "accounts", ("id", "name")))

    def test_rejects_invalid_column_name(self):
        table = TableDefinition("src_orders", "orders", ("id", "bad-col"))
        builder = StatementBuilder.from_tables([table])

        with pytest.raises(ConfigurationError, match="bad-col"):
            builder.validate_table(table)
