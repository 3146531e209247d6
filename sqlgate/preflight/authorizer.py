"""EXPLAIN-based authorization of a statement before it runs.

The statement itself is never executed here. The engine's plan command lists
every relation the statement would read (through views and aliases too) and
each one is checked against the visibility rules.
"""

from __future__ import annotations

import logging
from typing import Any, List, Sequence

from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError

from sqlgate.core.errors import EngineError, ErrorKind, QueryTimeoutError, VisibilityError
from sqlgate.core.logging import get_logger, log_structured
from sqlgate.core.models import Relation
from sqlgate.engines import registry
from sqlgate.engines.base import EngineDriver
from sqlgate.preflight import relations as rel
from sqlgate.visibility.engine import VisibilityEngine

logger = get_logger(__name__)


def _explain(driver: EngineDriver, connection: Connection, prefix: str, sql: str, params: Sequence[Any]):
    try:
        return driver.execute(connection, prefix + sql, params).fetchall()
    except DBAPIError as exc:
        message = rel.strip_explain_tail(registry.format_error(exc, driver))
        if registry.classify_error(exc, driver) is ErrorKind.TIMEOUT:
            raise QueryTimeoutError(message) from exc
        raise EngineError(message) from exc


def explain_relations(
    driver: EngineDriver,
    connection: Connection,
    sql: str,
    params: Sequence[Any] = (),
) -> List[Relation] | None:
    """Relations named by the engine's plan; ``None`` for engines without plan support."""
    if driver.engine_id == "postgres":
        rows = _explain(driver, connection, "EXPLAIN (VERBOSE, FORMAT JSON) ", sql, params)
        return rel.postgres_relations(rel.decode_plan(rows[0][0])) if rows else []
    if driver.engine_id == "sqlite":
        rows = _explain(driver, connection, "EXPLAIN QUERY PLAN ", sql, params)
        return rel.sqlite_relations(rows, sql)
    if driver.engine_id == "mysql":
        rows = _explain(driver, connection, "EXPLAIN FORMAT=JSON ", sql, params)
        plan = rel.decode_plan(rows[0][0]) if rows else {}
        return rel.mysql_relations(plan, sql)
    return None


def authorize(
    driver: EngineDriver,
    connection: Connection,
    visibility: VisibilityEngine,
    sql: str,
    params: Sequence[Any] = (),
    search_path: str | None = None,
) -> List[Relation]:
    """Return the relations ``sql`` touches, or raise ``VisibilityError`` naming blocked ones.

    Runs on the caller's connection so the plan sees the same transaction
    and search path as the real execution.
    """
    if search_path:
        driver.set_search_path(connection, search_path)
    touched = explain_relations(driver, connection, sql, params)
    if touched is None:
        logger.debug("No plan-based preflight for engine %s", driver.engine_id)
        return []
    blocked = [relation for relation in touched if not visibility.is_relation_allowed(relation)]
    if blocked:
        names = [str(relation) for relation in blocked]
        log_structured(logger, logging.WARNING, "preflight_blocked", engine=driver.engine_id, relations=names)
        raise VisibilityError(f"Query touches blocked table(s): {rel.format_relations(blocked)}", relations=names)
    return touched
