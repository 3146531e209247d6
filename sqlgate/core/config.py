"""Application configuration helpers.

Centralises loading of environment variables so the rest of the codebase can
depend on typed settings instead of reaching into ``os.environ`` directly.

Settings are read once by the host (API, CLI) and threaded down as explicit
values; pipeline modules never call ``get_settings`` themselves.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv
from sqlalchemy.engine import make_url

load_dotenv()


def _get_env(name: str, default: str | None = None, *, required: bool = False) -> str | None:
    """Fetch an environment variable with optional required flag."""
    value = os.getenv(name, default)
    if required and (value is None or value == ""):
        raise RuntimeError(f"Environment variable '{name}' must be set.")
    return value


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings for one data repository."""

    url: str
    pool_size: int = 5
    max_overflow: int = 5
    migration_source: str = "schema_migrations"
    migration_prefix: str = "public"

    @property
    def backend_name(self) -> str:
        return make_url(self.url).get_backend_name()

    @property
    def database(self) -> str | None:
        return make_url(self.url).database or None


@dataclass(frozen=True)
class ExecutionSettings:
    """Default session settings applied to every execution."""

    read_only: bool = True
    statement_timeout_ms: int = 5000
    timeout_ms: int = 15000
    search_path: str | None = None


@dataclass(frozen=True)
class CacheSettings:
    """Settings for the result cache (Redis)."""

    redis_url: str | None = None
    ttl_seconds: int = 3600
    namespace: str = "sqlgate"


@dataclass(frozen=True)
class Settings:
    """Aggregated application settings."""

    repos: dict[str, DatabaseSettings]
    default_repo: str
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    cache: CacheSettings | None = None
    visibility_config_path: str | None = None
    # Logging
    log_sql_text: bool = False

    def repo(self, name: str | None = None) -> DatabaseSettings:
        key = name or self.default_repo
        try:
            return self.repos[key]
        except KeyError as exc:
            raise KeyError(f"Unknown data repo '{key}'. Available: {sorted(self.repos)}") from exc


def _load_repos(pool_size: int, max_overflow: int) -> dict[str, DatabaseSettings]:
    repos: dict[str, DatabaseSettings] = {}
    raw = _get_env("DATA_REPOS")
    if raw:
        try:
            mapping = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"DATA_REPOS must be a JSON object: {exc}") from exc
        if not isinstance(mapping, dict):
            raise RuntimeError("DATA_REPOS must be a JSON object of name -> URL.")
        for name, url in mapping.items():
            repos[str(name)] = DatabaseSettings(url=str(url), pool_size=pool_size, max_overflow=max_overflow)

    url = _get_env("DATABASE_URL")
    if url and "default" not in repos:
        repos["default"] = DatabaseSettings(url=url, pool_size=pool_size, max_overflow=max_overflow)

    if not repos:
        raise RuntimeError("Environment variable 'DATA_REPOS' or 'DATABASE_URL' must be set.")
    return repos


def load_cache_settings() -> CacheSettings:
    """Cache settings alone, for tools that do not need database settings."""
    return CacheSettings(
        redis_url=_get_env("CACHE_REDIS_URL"),
        ttl_seconds=int(_get_env("CACHE_TTL_SECONDS", "3600")),
        namespace=_get_env("CACHE_NAMESPACE", "sqlgate"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    repos = _load_repos(
        pool_size=int(_get_env("DATABASE_POOL_SIZE", "5")),
        max_overflow=int(_get_env("DATABASE_MAX_OVERFLOW", "5")),
    )
    default_repo = _get_env("DEFAULT_DATA_REPO") or ("default" if "default" in repos else next(iter(repos)))
    execution = ExecutionSettings(
        read_only=_get_env("SQLGATE_READ_ONLY", "true").lower() not in {"false", "0", "no"},
        statement_timeout_ms=int(_get_env("SQLGATE_STATEMENT_TIMEOUT_MS", "5000")),
        timeout_ms=int(_get_env("SQLGATE_TIMEOUT_MS", "15000")),
        search_path=_get_env("SQLGATE_SEARCH_PATH") or None,
    )
    cache = load_cache_settings()
    return Settings(
        repos=repos,
        default_repo=default_repo,
        execution=execution,
        cache=cache,
        visibility_config_path=_get_env("VISIBILITY_CONFIG_PATH"),
        log_sql_text=_get_env("LOG_SQL_TEXT", "false").lower() in {"true", "1", "yes"},
    )
