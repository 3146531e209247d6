"""Run one final statement: guardrails, preflight, timed read-only execution, column policies."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Any, List, Sequence, Tuple

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError

from sqlgate.core.config import DatabaseSettings
from sqlgate.core.db import get_engine
from sqlgate.core.errors import EngineError, ErrorKind, QueryTimeoutError, VisibilityError
from sqlgate.core.logging import get_logger, log_structured
from sqlgate.core.models import QueryResult, Relation, SessionContext
from sqlgate.engines import registry
from sqlgate.engines.base import EngineDriver
from sqlgate.preflight.authorizer import authorize
from sqlgate.sql.guardrails import needs_preflight, validate_search_path, validate_statement
from sqlgate.types.caster import TypeHandlerRegistry
from sqlgate.visibility.engine import VisibilityEngine
from sqlgate.visibility.policy import ColumnPolicy
from sqlgate.visibility.rules import VisibilityRules

logger = get_logger(__name__)


@dataclass(frozen=True)
class RepoContext:
    """Everything needed to run statements against one data repo."""

    name: str
    settings: DatabaseSettings
    driver: EngineDriver
    visibility: VisibilityEngine
    engine: Engine
    type_handlers: TypeHandlerRegistry | None = None

    @staticmethod
    def build(
        name: str,
        settings: DatabaseSettings,
        rules: VisibilityRules | None = None,
        type_handlers: TypeHandlerRegistry | None = None,
        engine: Engine | None = None,
    ) -> "RepoContext":
        driver = registry.driver_for_backend(settings.backend_name)
        visibility = VisibilityEngine(
            rules,
            builtin_table_denies=driver.builtin_denies(settings),
            builtin_schema_denies=driver.builtin_schema_denies(settings),
        )
        return RepoContext(
            name=name,
            settings=settings,
            driver=driver,
            visibility=visibility,
            engine=engine or get_engine(settings),
            type_handlers=type_handlers,
        )


def _command(sql: str) -> str:
    words = sql.strip().split(None, 1)
    return words[0].lower() if words else ""


def enforce_column_policies(
    visibility: VisibilityEngine,
    relations: Sequence[Relation],
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
) -> Tuple[List[str], List[List[Any]]]:
    """Raise for ``error`` columns, drop ``omit`` columns and mask ``mask`` columns."""
    policies: List[ColumnPolicy | None] = [visibility.column_policy(relations, column) for column in columns]
    hidden = [column for column, policy in zip(columns, policies) if policy is not None and policy.causes_error]
    if hidden:
        raise VisibilityError(f"Query selects hidden column(s): {', '.join(hidden)}")

    keep = [index for index, policy in enumerate(policies) if policy is None or not policy.omits_column]
    masks = {index: policy for index, policy in enumerate(policies) if policy is not None and policy.requires_mask}
    if len(keep) == len(columns) and not masks:
        return list(columns), [list(row) for row in rows]

    new_columns = [columns[index] for index in keep]
    new_rows = [
        [masks[index].apply(row[index]) if index in masks else row[index] for index in keep]
        for row in rows
    ]
    return new_columns, new_rows


def _native_failure(exc: DBAPIError, driver: EngineDriver) -> Exception:
    message = registry.format_error(exc, driver)
    if registry.classify_error(exc, driver) is ErrorKind.TIMEOUT:
        return QueryTimeoutError(message)
    return EngineError(message)


def run_sql(
    repo: RepoContext,
    sql: str,
    params: Sequence[Any] = (),
    session: SessionContext | None = None,
) -> QueryResult:
    """Execute a final statement (engine placeholders, positional params) on ``repo``.

    Raises ``SqlGateError`` subclasses; the statement never reaches the engine
    when guardrails or preflight reject it.
    """
    session = session or SessionContext()
    driver = repo.driver
    validate_statement(sql, read_only=session.read_only, engine_id=driver.engine_id)
    search_path = validate_search_path(session.search_path)
    preflight = needs_preflight(sql, driver.engine_id)

    def work(connection: Connection) -> QueryResult:
        touched: List[Relation] = []
        if preflight:
            touched = authorize(driver, connection, repo.visibility, sql, params, search_path)
        started = perf_counter()
        result = driver.execute(connection, sql, params)
        if result.returns_rows:
            columns = list(result.keys())
            rows = [list(row) for row in result.fetchall()]
            num_rows = len(rows)
        else:
            columns, rows = [], []
            num_rows = max(result.rowcount, 0)
        duration_ms = int(round((perf_counter() - started) * 1000))
        columns, rows = enforce_column_policies(repo.visibility, touched, columns, rows)
        return QueryResult(
            columns=columns,
            rows=rows,
            num_rows=num_rows,
            duration_ms=duration_ms,
            command=_command(sql),
            meta={"repo": repo.name, "relations": [str(relation) for relation in touched]},
        )

    try:
        result = driver.execute_in_transaction(repo.engine, session, work)
    except DBAPIError as exc:
        failure = _native_failure(exc, driver)
        log_structured(logger, logging.WARNING, "statement_failed", repo=repo.name, error=str(failure))
        raise failure from exc
    logger.info("Statement on %s returned %d row(s) in %d ms", repo.name, result.num_rows, result.duration_ms)
    return result
