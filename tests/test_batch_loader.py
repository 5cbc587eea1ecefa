"""Tests for batch INSERT execution."""

import psycopg2
import pytest

from athena_pg_migrator.errors import LoadError
from athena_pg_migrator.models import TableDefinition
from athena_pg_migrator.services.batch_loader import BatchLoader
from athena_pg_migrator.services.statement_builder import StatementBuilder

COLUMNS = ("id", "name")


@pytest.fixture
def loader(pg_manager):
    builder = StatementBuilder.from_tables([TableDefinition("src_accounts", "accounts", COLUMNS)], schema="public")
    return BatchLoader(pg_manager, builder)


class TestBatchLoader:

    def test_load_batch(self, loader, database, fake_pool):
        affected = loader.load_batch("accounts", COLUMNS, [["1", "alice"], ["2", "bob"]])

        assert affected == 2
        assert len(database.statements) == 1
        assert database.rows_for("accounts") == [("1", "alice"), ("2", "bob")]
        assert fake_pool.getconn_calls == 1
        assert fake_pool.putconn_calls == 1

    def test_empty_rows_is_noop(self, loader, database, fake_pool):
        assert loader.load_batch("accounts", COLUMNS, []) == 0
        assert database.statements == []
        assert fake_pool.getconn_calls == 0

    def test_database_error_raises_load_error_and_releases(self, loader, database, fake_pool):
        database.fail_when = lambda sql, params: psycopg2.IntegrityError(
            'duplicate key value violates unique constraint "accounts_pkey"'
        )

        with pytest.raises(LoadError) as exc_info:
            loader.load_batch("accounts", COLUMNS, [["1", "a"], ["2", "b"], ["3", "c"]])

        error = exc_info.value
        assert error.table == "accounts"
        assert error.attempted_rows == 3
        assert isinstance(error.cause, psycopg2.IntegrityError)
        assert fake_pool.putconn_calls == 1
        conn = fake_pool.idle[0]
        assert conn.rollbacks == 1
        assert conn.commits == 0

    def test_width_mismatch_raises_load_error_without_connection(self, loader, fake_pool):
        with pytest.raises(LoadError):
            loader.load_batch("accounts", COLUMNS, [["1"]])
        assert fake_pool.getconn_calls == 0

    def test_each_call_releases_exactly_once(self, loader, database, fake_pool):
        database.fail_when = lambda sql, params: (
            psycopg2.DataError("invalid input syntax") if params["p1"] == "bad" else None
        )

        loader.load_batch("accounts", COLUMNS, [["1", "a"]])
        with pytest.raises(LoadError):
            loader.load_batch("accounts", COLUMNS, [["bad", "b"]])
        loader.load_batch("accounts", COLUMNS, [["3", "c"]])

        assert fake_pool.getconn_calls == 3
        assert fake_pool.putconn_calls == 3
