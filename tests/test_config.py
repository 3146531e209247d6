from __future__ import annotations

import json

import pytest

from sqlgate.core import config
from sqlgate.core.models import SessionContext

_ENV_VARS = (
    "DATA_REPOS",
    "DATABASE_URL",
    "DEFAULT_DATA_REPO",
    "SQLGATE_READ_ONLY",
    "SQLGATE_STATEMENT_TIMEOUT_MS",
    "SQLGATE_TIMEOUT_MS",
    "SQLGATE_SEARCH_PATH",
    "CACHE_REDIS_URL",
    "CACHE_NAMESPACE",
    "VISIBILITY_CONFIG_PATH",
    "LOG_SQL_TEXT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


def test_single_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://app:secret@db/analytics")
    settings = config.get_settings()

    assert settings.default_repo == "default"
    repo = settings.repo()
    assert repo.backend_name == "postgresql"
    assert repo.database == "analytics"
    assert settings.execution == config.ExecutionSettings()
    assert settings.log_sql_text is False


def test_named_repos_and_execution_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(
        "DATA_REPOS",
        json.dumps({"warehouse": "postgresql+psycopg://u:p@wh/dw", "local": "sqlite:///local.db"}),
    )
    monkeypatch.setenv("DEFAULT_DATA_REPO", "local")
    monkeypatch.setenv("SQLGATE_READ_ONLY", "false")
    monkeypatch.setenv("SQLGATE_STATEMENT_TIMEOUT_MS", "250")
    monkeypatch.setenv("SQLGATE_SEARCH_PATH", "reporting,public")
    monkeypatch.setenv("CACHE_NAMESPACE", "gate")

    settings = config.get_settings()
    assert sorted(settings.repos) == ["local", "warehouse"]
    assert settings.repo().backend_name == "sqlite"
    assert settings.execution.read_only is False
    assert settings.execution.statement_timeout_ms == 250
    assert settings.execution.search_path == "reporting,public"
    assert settings.cache.namespace == "gate"
    assert settings.cache.redis_url is None

    with pytest.raises(KeyError, match="Unknown data repo 'missing'"):
        settings.repo("missing")


def test_missing_database_configuration_fails() -> None:
    with pytest.raises(RuntimeError, match="DATA_REPOS"):
        config.get_settings()


def test_malformed_repo_mapping_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATA_REPOS", "[1, 2]")
    with pytest.raises(RuntimeError, match="JSON object"):
        config.get_settings()


@pytest.mark.parametrize(
    ("statement_ms", "overall_ms", "expected"),
    [(5000, 15000, 5000), (20000, 15000, 15000), (0, 15000, 15000), (0, 0, 0)],
)
def test_effective_timeout_is_smallest_positive_budget(statement_ms, overall_ms, expected) -> None:
    session = SessionContext(statement_timeout_ms=statement_ms, timeout_ms=overall_ms)
    assert session.effective_timeout_ms == expected
