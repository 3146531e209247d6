"""Full pipeline against an in-memory SQLite database."""

from __future__ import annotations

import hashlib

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import DBAPIError

from sqlgate.core.config import DatabaseSettings, ExecutionSettings
from sqlgate.core.errors import ErrorKind, QueryTimeoutError, ValidationError, VisibilityError
from sqlgate.core.models import Relation, SessionContext
from sqlgate.executor.params import QueryVariable
from sqlgate.executor.runner import RepoContext, run_sql
from sqlgate.executor.service import QueryService
from sqlgate.visibility.rules import rules_from_mapping

RULES = {
    "table_visibility": {"default": {"deny": ["api_keys"]}},
    "column_visibility": {
        "default": [
            ["ssn", "error"],
            ["users", "email", {"mask": "sha256"}],
            ["users", "password", "omit"],
        ]
    },
}


@pytest.fixture()
def engine():
    engine = create_engine("sqlite://")
    with engine.begin() as connection:
        connection.exec_driver_sql(
            "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, email TEXT, password TEXT, ssn TEXT, age INTEGER)"
        )
        connection.exec_driver_sql("CREATE TABLE api_keys (id INTEGER PRIMARY KEY, user_id INTEGER, secret TEXT)")
        connection.exec_driver_sql("CREATE VIEW active_keys AS SELECT secret FROM api_keys")
        connection.exec_driver_sql(
            "INSERT INTO users (id, name, email, password, ssn, age) VALUES "
            "(1, 'Ann', 'ann@example.com', 'pw1', '111', 34), "
            "(2, 'Jack', 'jack@example.com', 'pw2', '222', 19)"
        )
        connection.exec_driver_sql("INSERT INTO api_keys (id, user_id, secret) VALUES (1, 1, 'k-1')")
    yield engine
    engine.dispose()


@pytest.fixture()
def repo(engine) -> RepoContext:
    return RepoContext.build(
        "main",
        DatabaseSettings(url="sqlite://"),
        rules=rules_from_mapping(RULES, "main"),
        engine=engine,
    )


@pytest.fixture()
def service(repo) -> QueryService:
    return QueryService({"main": repo}, "main", ExecutionSettings())


def test_select_applies_column_policies(repo):
    result = run_sql(repo, "SELECT id, email, password FROM users WHERE id = ?", [1])

    assert result.columns == ["id", "email"]
    assert result.rows == [[1, hashlib.sha256(b"ann@example.com").hexdigest()]]
    assert result.num_rows == 1
    assert result.command == "select"
    assert result.meta == {"repo": "main", "relations": ["users"]}


def test_hidden_column_fails_the_query(repo):
    with pytest.raises(VisibilityError, match="Query selects hidden column\\(s\\): ssn"):
        run_sql(repo, "SELECT name, ssn FROM users")


def test_view_over_blocked_table_is_rejected(repo):
    with pytest.raises(VisibilityError, match="api_keys"):
        run_sql(repo, "SELECT * FROM active_keys")


def test_builtin_catalog_tables_are_blocked(repo):
    with pytest.raises(VisibilityError, match="sqlite_"):
        run_sql(repo, "SELECT name FROM sqlite_master")


def test_guardrails_run_before_the_engine(repo):
    with pytest.raises(ValidationError, match="Only read-only queries are allowed"):
        run_sql(repo, "DELETE FROM users")
    with pytest.raises(ValidationError, match="Only a single statement is allowed"):
        run_sql(repo, "SELECT 1; SELECT 2")


def test_read_only_session_is_enforced_and_restored(repo, engine):
    def write(connection):
        connection.exec_driver_sql("INSERT INTO users (id, name) VALUES (3, 'Eve')")

    with pytest.raises(DBAPIError, match="readonly"):
        repo.driver.execute_in_transaction(engine, SessionContext(read_only=True), write)

    with engine.connect() as connection:
        assert connection.exec_driver_sql("PRAGMA query_only").scalar() == 0
        assert connection.exec_driver_sql("SELECT count(*) FROM users").scalar() == 2


def test_writes_commit_when_not_read_only(repo, engine):
    result = run_sql(
        repo,
        "INSERT INTO users (id, name, age) VALUES (?, ?, ?)",
        [3, "Eve", 41],
        SessionContext(read_only=False),
    )
    assert result.command == "insert"
    assert result.num_rows == 1
    with engine.connect() as connection:
        assert connection.exec_driver_sql("SELECT name FROM users WHERE id = 3").scalar() == "Eve"


def test_long_statement_times_out(repo):
    sql = (
        "WITH RECURSIVE counter(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM counter LIMIT 500000000) "
        "SELECT count(*) FROM counter"
    )
    with pytest.raises(QueryTimeoutError, match="SQLite Error: interrupted"):
        run_sql(repo, sql, session=SessionContext(statement_timeout_ms=20, timeout_ms=20))


def test_engine_errors_are_formatted(repo):
    with pytest.raises(Exception) as excinfo:
        run_sql(repo, "SELECT * FROM no_such_table")
    assert str(excinfo.value) == "SQLite Error: no such table: no_such_table"
    assert excinfo.value.kind is ErrorKind.ENGINE


def test_service_runs_templates_with_typed_variables(service):
    outcome = service.run_query(
        "SELECT name FROM users WHERE age > {{min_age}} ORDER BY id",
        [QueryVariable(name="min_age", default="30")],
    )
    assert outcome.ok, outcome.error
    assert outcome.result.rows == [["Ann"]]
    assert outcome.cache is None

    outcome = service.run_query("SELECT name FROM users WHERE id = {{user_id}}", supplied={"user_id": "2"})
    assert outcome.result.rows == [["Jack"]]


def test_service_returns_tagged_failures(service):
    cast_failure = service.run_query("SELECT name FROM users WHERE id = {{user_id}}", supplied={"user_id": "2x"})
    assert not cast_failure.ok
    assert cast_failure.error.kind is ErrorKind.CAST

    missing = service.run_query("SELECT name FROM users WHERE id = {{user_id}}")
    assert missing.error.kind is ErrorKind.VALIDATION
    assert missing.error.message == "Missing required variable: user_id"

    blocked = service.run_sql("SELECT secret FROM api_keys")
    assert blocked.error.kind is ErrorKind.VISIBILITY
    assert blocked.error.details == {"relations": "api_keys"}

    unknown = service.run_sql("SELECT 1", repo="elsewhere")
    assert unknown.error.message == "Unknown data repo 'elsewhere'"


def test_service_lists_visible_tables(service):
    assert service.list_schemas().result == []
    outcome = service.list_tables(include_views=True)
    assert outcome.result == [Relation(None, "active_keys"), Relation(None, "users")]
    assert service.list_tables().result == [Relation(None, "users")]
