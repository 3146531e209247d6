"""Service layer: run saved-query templates and raw SQL, returning tagged outcomes.

This is the boundary of the pipeline. Every failure is converted into an
``ErrorSummary`` on the returned ``QueryOutcome``; nothing raises to callers.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

from sqlalchemy.exc import DBAPIError

from sqlgate.core import cache
from sqlgate.core.config import ExecutionSettings, Settings
from sqlgate.core.errors import (
    EngineError,
    ErrorKind,
    ErrorSummary,
    QueryTimeoutError,
    SqlGateError,
    ValidationError,
    VisibilityError,
    summarize_exception,
)
from sqlgate.core.logging import bind_query_context, get_logger, log_structured
from sqlgate.core.models import QueryResult, Relation, SessionContext
from sqlgate.engines import registry
from sqlgate.executor.params import QueryVariable, build_sql_params, lookup_column_types
from sqlgate.executor.runner import RepoContext, run_sql
from sqlgate.sql.guardrails import validate_search_path
from sqlgate.sql.variables import extract_variables
from sqlgate.types.caster import TypeHandlerRegistry
from sqlgate.visibility.rules import load_rules

logger = get_logger(__name__)


@dataclass
class QueryOutcome:
    """Either a result or an error summary, never both."""

    result: Any = None
    error: ErrorSummary | None = None
    cache: str | None = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @staticmethod
    def success(result: Any, **meta: Any) -> "QueryOutcome":
        cache_status = meta.pop("cache", None)
        return QueryOutcome(result=result, cache=cache_status, meta=meta)

    @staticmethod
    def failure(exc: Exception) -> "QueryOutcome":
        return QueryOutcome(error=summarize_exception(exc))


def _as_pipeline_error(exc: DBAPIError, repo: RepoContext) -> SqlGateError:
    message = registry.format_error(exc, repo.driver)
    if registry.classify_error(exc, repo.driver) is ErrorKind.TIMEOUT:
        return QueryTimeoutError(message)
    return EngineError(message)


class QueryService:
    """Run statements against configured data repos with per-call session settings."""

    def __init__(
        self,
        repos: Mapping[str, RepoContext],
        default_repo: str,
        execution: ExecutionSettings | None = None,
        *,
        log_sql_text: bool = False,
    ) -> None:
        self.repos = dict(repos)
        self.default_repo = default_repo
        self.execution = execution or ExecutionSettings()
        self.log_sql_text = log_sql_text

    @classmethod
    def from_settings(cls, settings: Settings, type_handlers: TypeHandlerRegistry | None = None) -> "QueryService":
        repos = {
            name: RepoContext.build(
                name,
                db_settings,
                rules=load_rules(settings.visibility_config_path, name),
                type_handlers=type_handlers,
            )
            for name, db_settings in settings.repos.items()
        }
        return cls(repos, settings.default_repo, settings.execution, log_sql_text=settings.log_sql_text)

    def repo(self, name: str | None = None) -> RepoContext:
        key = name or self.default_repo
        try:
            return self.repos[key]
        except KeyError as exc:
            raise ValidationError(f"Unknown data repo '{key}'") from exc

    def session(
        self,
        *,
        read_only: bool | None = None,
        statement_timeout_ms: int | None = None,
        timeout_ms: int | None = None,
        search_path: str | None = None,
    ) -> SessionContext:
        defaults = self.execution
        return SessionContext(
            read_only=defaults.read_only if read_only is None else read_only,
            statement_timeout_ms=statement_timeout_ms or defaults.statement_timeout_ms,
            timeout_ms=timeout_ms or defaults.timeout_ms,
            search_path=search_path if search_path is not None else defaults.search_path,
        )

    # -- boundary ---------------------------------------------------------

    def _guard(self, event: str, repo_name: str | None, fn: Callable[[], QueryOutcome]) -> QueryOutcome:
        started = perf_counter()
        try:
            outcome = fn()
        except DBAPIError as exc:
            outcome = QueryOutcome.failure(_as_pipeline_error(exc, self.repo(repo_name)))
        except SqlGateError as exc:
            outcome = QueryOutcome.failure(exc)
        except Exception as exc:
            logger.exception("Unexpected failure during %s", event)
            outcome = QueryOutcome.failure(exc)

        elapsed_ms = round((perf_counter() - started) * 1000, 2)
        if outcome.ok:
            log_structured(
                logger, logging.INFO, f"{event}_completed", repo=repo_name or self.default_repo,
                elapsed_ms=elapsed_ms, cache=outcome.cache,
            )
        else:
            log_structured(
                logger, logging.WARNING, f"{event}_failed", repo=repo_name or self.default_repo,
                elapsed_ms=elapsed_ms, kind=outcome.error.kind.value, error=outcome.error.message,
            )
        return outcome

    # -- queries ----------------------------------------------------------

    def run_query(
        self,
        statement: str,
        variables: Sequence[QueryVariable] = (),
        supplied: Mapping[str, Any] | None = None,
        *,
        repo: str | None = None,
        read_only: bool | None = None,
        statement_timeout_ms: int | None = None,
        timeout_ms: int | None = None,
        search_path: str | None = None,
        cache_ttl_ms: int | None = None,
        refresh_cache: bool = False,
    ) -> QueryOutcome:
        """Bind ``{{var}}`` templates in ``statement`` and run it."""

        def work() -> QueryOutcome:
            ctx = self.repo(repo)
            session = self.session(
                read_only=read_only,
                statement_timeout_ms=statement_timeout_ms,
                timeout_ms=timeout_ms,
                search_path=search_path,
            )
            with self._query_context(ctx, session):
                self._log_start("query_run_start", statement)
                column_types: Dict[Tuple[str, str], str] = {}
                if extract_variables(statement):
                    column_types = self._column_types(ctx, statement, session.search_path)
                sql, params = build_sql_params(
                    statement,
                    variables,
                    supplied,
                    ctx.driver,
                    column_types=column_types,
                    registry=ctx.type_handlers,
                )
                return self._execute(ctx, sql, params, session, cache_ttl_ms, refresh_cache)

        return self._guard("query_run", repo, work)

    def run_sql(
        self,
        sql: str,
        params: Sequence[Any] = (),
        *,
        repo: str | None = None,
        read_only: bool | None = None,
        statement_timeout_ms: int | None = None,
        timeout_ms: int | None = None,
        search_path: str | None = None,
        cache_ttl_ms: int | None = None,
        refresh_cache: bool = False,
    ) -> QueryOutcome:
        """Run final SQL that already uses the engine's placeholder syntax."""

        def work() -> QueryOutcome:
            ctx = self.repo(repo)
            session = self.session(
                read_only=read_only,
                statement_timeout_ms=statement_timeout_ms,
                timeout_ms=timeout_ms,
                search_path=search_path,
            )
            with self._query_context(ctx, session):
                self._log_start("sql_run_start", sql)
                return self._execute(ctx, sql, list(params), session, cache_ttl_ms, refresh_cache)

        return self._guard("sql_run", repo, work)

    @staticmethod
    def _query_context(ctx: RepoContext, session: SessionContext):
        return bind_query_context(
            repo=ctx.name,
            engine=ctx.driver.engine_id,
            search_path=session.search_path,
            read_only=session.read_only,
        )

    def _log_start(self, event: str, sql: str) -> None:
        fields: Dict[str, Any] = {}
        if self.log_sql_text:
            fields["sql"] = sql
        else:
            fields["sql_sha256"] = hashlib.sha256(sql.encode("utf-8")).hexdigest()[:16]
        log_structured(logger, logging.INFO, event, **fields)

    def _execute(
        self,
        ctx: RepoContext,
        sql: str,
        params: List[Any],
        session: SessionContext,
        cache_ttl_ms: int | None,
        refresh_cache: bool,
    ) -> QueryOutcome:
        if not cache_ttl_ms:
            return QueryOutcome.success(run_sql(ctx, sql, params, session))
        key = cache.result_cache_key(sql, params, ctx.name, session.search_path)
        payload, status = cache.get_or_store(
            key,
            cache_ttl_ms,
            lambda: run_sql(ctx, sql, params, session).as_dict(),
            refresh=refresh_cache,
        )
        return QueryOutcome.success(QueryResult.from_mapping(payload), cache=status)

    def _search_schemas(self, ctx: RepoContext, search_path: str | None) -> List[str]:
        path = validate_search_path(search_path)
        if path:
            return [part.strip() for part in path.split(",")]
        return ctx.driver.default_schemas(ctx.settings)

    def _column_types(self, ctx: RepoContext, statement: str, search_path: str | None) -> Dict[Tuple[str, str], str]:
        schemas = self._search_schemas(ctx, search_path)
        digest = hashlib.sha256(f"{statement}|{','.join(schemas)}".encode("utf-8")).hexdigest()

        def produce() -> List[List[str]]:
            with ctx.engine.connect() as connection:
                found = lookup_column_types(ctx.driver, connection, statement, schemas)
            return [[table, column, native] for (table, column), native in sorted(found.items())]

        triples, _status = cache.get_or_store(f"columns:{ctx.name}:{digest}", None, produce)
        return {(table, column): native for table, column, native in triples}

    # -- catalog ----------------------------------------------------------

    def list_schemas(self, *, repo: str | None = None) -> QueryOutcome:
        """Visible schemas of ``repo``; empty for schema-less engines."""

        def work() -> QueryOutcome:
            ctx = self.repo(repo)
            with ctx.engine.connect() as connection:
                schemas = ctx.driver.list_schemas(connection)
            return QueryOutcome.success(ctx.visibility.filter_schemas(schemas))

        return self._guard("list_schemas", repo, work)

    def list_tables(
        self,
        *,
        repo: str | None = None,
        schemas: Sequence[str] | None = None,
        include_views: bool = False,
    ) -> QueryOutcome:
        """Visible relations in ``schemas`` (the engine's defaults when omitted)."""

        def work() -> QueryOutcome:
            ctx = self.repo(repo)
            requested = list(schemas) if schemas else ctx.driver.default_schemas(ctx.settings)
            denied = ctx.visibility.validate_schemas(requested)
            if denied:
                raise VisibilityError(f"Schema(s) not visible: {', '.join(denied)}", relations=denied)
            with ctx.engine.connect() as connection:
                relations: List[Relation] = ctx.driver.list_tables(connection, requested, include_views)
            return QueryOutcome.success(ctx.visibility.filter_relations(relations))

        return self._guard("list_tables", repo, work)
