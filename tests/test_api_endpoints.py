from __future__ import annotations

from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from sqlgate.api import main
from sqlgate.core.errors import CastError, QueryTimeoutError, ValidationError, VisibilityError
from sqlgate.core.models import QueryResult, Relation
from sqlgate.executor.service import QueryOutcome


def _result(**meta: Any) -> QueryResult:
    return QueryResult(
        columns=["id", "name"],
        rows=[[1, "Ann"]],
        num_rows=1,
        duration_ms=3,
        command="select",
        meta={"repo": "main", **meta},
    )


class StubService:
    """Records calls and replays canned outcomes."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.outcome = QueryOutcome.success(_result())

    def run_query(self, statement, variables=(), supplied=None, **options):
        self.calls.append({"op": "run_query", "statement": statement, "variables": variables, "supplied": supplied, **options})
        return self.outcome

    def run_sql(self, sql, params=(), **options):
        self.calls.append({"op": "run_sql", "sql": sql, "params": params, **options})
        return self.outcome

    def list_schemas(self, *, repo=None):
        self.calls.append({"op": "list_schemas", "repo": repo})
        return QueryOutcome.success(["public", "reporting"])

    def list_tables(self, *, repo=None, schemas=None, include_views=False):
        self.calls.append({"op": "list_tables", "repo": repo, "schemas": schemas, "include_views": include_views})
        return self.outcome


@pytest.fixture
def stub(monkeypatch: pytest.MonkeyPatch) -> StubService:
    stub = StubService()
    monkeypatch.setattr(main, "service", stub)
    return stub


@pytest.fixture
def client(stub: StubService) -> TestClient:
    return TestClient(main.app)


def test_template_query_success(client: TestClient, stub: StubService) -> None:
    response = client.post(
        "/queries/run",
        json={
            "statement": "SELECT id, name FROM users WHERE age > {{min_age}}",
            "variables": [{"name": "min_age", "type": "number", "default": "30"}],
            "values": {"min_age": "21"},
            "repo": "main",
            "cache_ttl_ms": 60000,
        },
        headers={"x-request-id": "req-1"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["rows"] == [[1, "Ann"]]
    assert body["columns"] == ["id", "name"]
    assert body["meta"] == {"repo": "main"}
    assert response.headers["x-request-id"] == "req-1"

    call = stub.calls[0]
    assert call["op"] == "run_query"
    assert call["supplied"] == {"min_age": "21"}
    assert call["variables"][0].name == "min_age"
    assert call["variables"][0].type == "number"
    assert call["cache_ttl_ms"] == 60000
    assert call["read_only"] is None


def test_raw_sql_reports_cache_status(client: TestClient, stub: StubService) -> None:
    stub.outcome = QueryOutcome.success(_result(), cache="hit")
    response = client.post("/sql/run", json={"sql": "SELECT id, name FROM users WHERE id = $1", "params": [1]})

    assert response.status_code == 200
    assert response.json()["cache"] == "hit"
    assert stub.calls[0]["params"] == [1]


@pytest.mark.parametrize(
    ("error", "status", "kind"),
    [
        (ValidationError("Missing required variable: min_age"), 400, "validation"),
        (CastError("Invalid number"), 400, "cast"),
        (VisibilityError("Query touches blocked table(s): billing.cards", relations=["billing.cards"]), 403, "visibility"),
        (QueryTimeoutError("SQL error: canceling statement due to statement timeout"), 504, "timeout"),
        (RuntimeError("connection reset"), 502, "engine"),
    ],
)
def test_failures_map_to_status_codes(client: TestClient, stub: StubService, error, status, kind) -> None:
    stub.outcome = QueryOutcome.failure(error)
    response = client.post("/sql/run", json={"sql": "SELECT 1"})

    assert response.status_code == status
    detail = response.json()["detail"]
    assert detail["kind"] == kind
    assert detail["message"] == str(error)


def test_visibility_failure_names_relations(client: TestClient, stub: StubService) -> None:
    stub.outcome = QueryOutcome.failure(VisibilityError("blocked", relations=["public.secrets"]))
    response = client.post("/queries/run", json={"statement": "SELECT * FROM secrets"})
    assert response.status_code == 403
    assert response.json()["detail"]["details"] == {"relations": "public.secrets"}


def test_request_validation_rejects_bad_timeouts(client: TestClient) -> None:
    response = client.post("/sql/run", json={"sql": "SELECT 1", "statement_timeout_ms": 0})
    assert response.status_code == 422


def test_catalog_endpoints(client: TestClient, stub: StubService) -> None:
    schemas = client.get("/repos/main/schemas")
    assert schemas.status_code == 200
    assert schemas.json() == ["public", "reporting"]

    stub.outcome = QueryOutcome.success([Relation("public", "users"), Relation(None, "events")])
    tables = client.get("/repos/main/tables", params={"schema": ["public", "reporting"], "include_views": "true"})
    assert tables.status_code == 200
    assert tables.json() == [
        {"schema_name": "public", "table": "users"},
        {"schema_name": None, "table": "events"},
    ]
    assert stub.calls[-1] == {
        "op": "list_tables",
        "repo": "main",
        "schemas": ["public", "reporting"],
        "include_views": True,
    }


def test_hidden_schema_is_forbidden(client: TestClient, stub: StubService) -> None:
    stub.outcome = QueryOutcome.failure(VisibilityError("Schema(s) not visible: vault", relations=["vault"]))
    response = client.get("/repos/main/tables", params={"schema": "vault"})
    assert response.status_code == 403
    assert response.json()["detail"]["message"] == "Schema(s) not visible: vault"


def test_shutdown_disposes_engines(monkeypatch: pytest.MonkeyPatch, stub: StubService) -> None:
    disposed = []
    monkeypatch.setattr(main, "dispose_engines", lambda: disposed.append(True))

    with TestClient(main.app) as client:
        assert client.get("/repos/main/schemas").status_code == 200
        assert disposed == []
    assert disposed == [True]
