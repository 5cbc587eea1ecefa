"""Shared fakes for the Athena API and the psycopg2 connection pool."""

import re

import pytest
from botocore.exceptions import ClientError
from psycopg2 import sql

from athena_pg_migrator.clients.pg_client import PGClientManager


def client_error(code="InvalidRequestException", message="bad request", operation="StartQueryExecution"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def render_sql(query):
    """Render a psycopg2.sql composition without a live connection (identifiers double-quoted)."""
    if isinstance(query, str):
        return query
    if isinstance(query, sql.Composed):
        return "".join(render_sql(part) for part in query.seq)
    if isinstance(query, sql.Identifier):
        return ".".join('"' + s.replace('"', '""') + '"' for s in query.strings)
    if isinstance(query, sql.Placeholder):
        return f"%({query.name})s" if query.name else "%s"
    if isinstance(query, sql.SQL):
        return query.string
    raise TypeError(f"cannot render {query!r}")


def athena_rows(rows):
    """Convert plain rows to the Athena ResultSet.Rows shape (None -> missing VarCharValue)."""
    return [
        {"Data": [{} if value is None else {"VarCharValue": value} for value in row]}
        for row in rows
    ]


class FakeAthena:
    """
    In-memory stand-in for the boto3 Athena client.

    tables: {table_name: {"columns": [...], "pages": [rows, rows, ...], "states": [...], "fail_page": index}}
    The first page should include the header row, as Athena returns it.
    Fetching the page at "fail_page" raises a ClientError.
    """

    def __init__(self, tables=None):
        self.tables = tables or {}
        self.executions = {}
        self.submitted = []
        self.metadata_calls = []
        self.results_calls = []
        self.submit_error = None

    def get_table_metadata(self, CatalogName, DatabaseName, TableName):
        self.metadata_calls.append(TableName)
        if TableName not in self.tables:
            raise client_error("MetadataException", f"Table {TableName} not found", "GetTableMetadata")
        columns = self.tables[TableName].get("columns", [])
        return {"TableMetadata": {"Name": TableName, "Columns": [{"Name": c, "Type": "string"} for c in columns]}}

    def start_query_execution(self, **request):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(request)
        table = re.search(r'FROM "?(\w+)"?$', request["QueryString"]).group(1)
        execution_id = f"exec-{len(self.submitted)}"
        states = list(self.tables[table].get("states", ["RUNNING", "SUCCEEDED"]))
        self.executions[execution_id] = {"table": table, "states": states, "reason": self.tables[table].get("reason")}
        return {"QueryExecutionId": execution_id}

    def get_query_execution(self, QueryExecutionId):
        execution = self.executions[QueryExecutionId]
        state = execution["states"].pop(0) if len(execution["states"]) > 1 else execution["states"][0]
        status = {"State": state}
        if state == "FAILED" and execution["reason"]:
            status["StateChangeReason"] = execution["reason"]
        return {"QueryExecution": {"QueryExecutionId": QueryExecutionId, "Status": status}}

    def get_query_results(self, QueryExecutionId, MaxResults=1000, NextToken=None):
        self.results_calls.append((QueryExecutionId, NextToken))
        table = self.tables[self.executions[QueryExecutionId]["table"]]
        pages = table["pages"]
        index = 0 if NextToken is None else int(NextToken.split("-")[1])
        if table.get("fail_page") == index:
            raise client_error("InternalServerException", "result fetch failed", "GetQueryResults")
        response = {"ResultSet": {"Rows": athena_rows(pages[index])}}
        if index + 1 < len(pages):
            response["NextToken"] = f"token-{index + 1}"
        return response


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self.rowcount = -1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        statement = render_sql(query)
        self.connection.database.execute(statement, params)
        self.rowcount = statement.count("(%(p")


class FakeConnection:
    def __init__(self, database):
        self.database = database
        self.closed = 0
        self.commits = 0
        self.rollbacks = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.commits += 1
        else:
            self.rollbacks += 1
        return False

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = 1


class FakeDatabase:
    """Records executed statements; `fail_when(sql, params)` returning an exception makes execute raise it."""

    def __init__(self):
        self.statements = []
        self.fail_when = None

    def execute(self, sql, params):
        if self.fail_when is not None:
            error = self.fail_when(sql, params)
            if error is not None:
                raise error
        self.statements.append((sql, params))

    def rows_for(self, table):
        rows = []
        for sql, params in self.statements:
            match = re.match(r'INSERT INTO (?:"\w+"\.)?"(\w+)" \(([^)]*)\) VALUES', sql)
            if match.group(1) != table:
                continue
            width = len(match.group(2).split(", "))
            values = [params[f"p{i + 1}"] for i in range(len(params))]
            rows.extend(tuple(values[i:i + width]) for i in range(0, len(values), width))
        return rows


class FakePool:
    def __init__(self, database):
        self.database = database
        self.getconn_calls = 0
        self.putconn_calls = 0
        self.closed_connections = 0
        self.idle = []
        self.closed_all = False

    def getconn(self):
        self.getconn_calls += 1
        if self.idle:
            return self.idle.pop()
        return FakeConnection(self.database)

    def putconn(self, conn, close=False):
        self.putconn_calls += 1
        if close:
            conn.close()
            self.closed_connections += 1
        else:
            self.idle.append(conn)

    def closeall(self):
        self.closed_all = True


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def fake_pool(database):
    return FakePool(database)


@pytest.fixture
def pg_manager(fake_pool):
    manager = PGClientManager()
    manager.attach_pool(fake_pool, max_connections=4)
    return manager


@pytest.fixture
def accounts_athena():
    return FakeAthena({
        "src_accounts": {
            "columns": ["id", "name"],
            "pages": [
                [["id", "name"], ["1", "alice"], ["2", "bob"]],
                [["3", "carol"]],
            ],
        }
    })


@pytest.fixture
def base_config(tmp_path):
    return {
        "region": "eu-west-1",
        "catalog": "AwsDataCatalog",
        "database": "backup_db",
        "output_location": "s3://bucket/results/",
        "result_reuse_max_age": 0,
        "pg_host": "127.0.0.1",
        "pg_port": 5432,
        "pg_user": "postgres",
        "pg_password": "",
        "pg_database": "app",
        "pg_schema": "public",
        "pool_max_connections": 4,
        "pool_idle_timeout": 30,
        "pool_connect_timeout": 20,
        "poll_interval": 0,
        "poll_timeout": 5,
        "poll_backoff": 1.0,
        "max_poll_interval": 0,
        "page_size": 1000,
        "metadata_workers": 4,
        "failure_policy": "abort",
        "source_prefix": "src_",
        "tables": [],
        "log_path": str(tmp_path / "logs"),
        "log_level": "info",
        "report_path": str(tmp_path / "reports"),
    }
