"""SQLite driver (stdlib ``sqlite3`` through SQLAlchemy)."""

from __future__ import annotations

import re
import sqlite3
import time
from typing import Any, Callable, List, Sequence, TypeVar

from sqlalchemy.engine import Connection, Engine

from sqlgate.core.config import DatabaseSettings
from sqlgate.core.errors import ErrorKind
from sqlgate.core.logging import get_logger
from sqlgate.core.models import ColumnInfo, Relation, SessionContext
from sqlgate.engines.base import EngineDriver

logger = get_logger(__name__)

T = TypeVar("T")

# VM instructions between deadline checks.
_PROGRESS_STEPS = 1000

_UNSET = object()


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _dbapi_connection(connection: Connection) -> sqlite3.Connection:
    return connection.connection.dbapi_connection


class SQLiteDriver(EngineDriver):
    engine_id = "sqlite"
    dialect_names = ("sqlite",)
    native_errors = (sqlite3.Error,)

    def execute_in_transaction(self, engine: Engine, session: SessionContext, fn: Callable[[Connection], T]) -> T:
        with engine.connect() as connection:
            previous = self._enable_query_only(connection) if session.read_only else _UNSET
            self.set_statement_timeout(connection, session.effective_timeout_ms)
            try:
                try:
                    result = fn(connection)
                except BaseException:
                    connection.rollback()
                    raise
                self.end_transaction(connection, session)
                return result
            finally:
                _dbapi_connection(connection).set_progress_handler(None, 0)
                if previous is not _UNSET:
                    connection.exec_driver_sql(f"PRAGMA query_only = {1 if previous else 0}")
                    connection.commit()

    def _enable_query_only(self, connection: Connection) -> Any:
        row = connection.exec_driver_sql("PRAGMA query_only").first()
        if row is None:
            logger.warning(
                "PRAGMA query_only is not supported by this SQLite build; "
                "open the database with mode=ro or immutable=1 to enforce read-only access."
            )
            return _UNSET
        connection.exec_driver_sql("PRAGMA query_only = ON")
        return row[0] or 0

    def set_statement_timeout(self, connection: Connection, timeout_ms: int) -> None:
        if timeout_ms <= 0:
            return
        deadline = time.monotonic() + timeout_ms / 1000.0

        def interrupt_after_deadline() -> int:
            return 1 if time.monotonic() > deadline else 0

        _dbapi_connection(connection).set_progress_handler(interrupt_after_deadline, _PROGRESS_STEPS)

    def format_error(self, error: Any) -> str:
        if isinstance(error, sqlite3.Error):
            return f"SQLite Error: {error}"
        return super().format_error(error)

    def classify_error(self, error: Any) -> ErrorKind:
        if isinstance(error, sqlite3.Error) and "interrupted" in str(error).lower():
            return ErrorKind.TIMEOUT
        return super().classify_error(error)

    def builtin_denies(self, repo: DatabaseSettings | None = None) -> List[Any]:
        migrations = repo.migration_source if repo else "schema_migrations"
        return [(None, re.compile("^sqlite_")), (None, migrations), (None, "sqlgate_queries")]

    def list_schemas(self, connection: Connection) -> List[str]:
        return []

    def list_tables(self, connection: Connection, schemas: Sequence[str], include_views: bool = False) -> List[Relation]:
        types = "('table', 'view')" if include_views else "('table')"
        rows = self._rows(
            connection,
            f"SELECT name FROM sqlite_master WHERE type IN {types} AND name NOT LIKE 'sqlite_%' ORDER BY name",
        )
        return [Relation(schema=None, table=row[0]) for row in rows]

    def get_table_schema(self, connection: Connection, schema: str | None, table: str) -> List[ColumnInfo]:
        rows = connection.exec_driver_sql(f"PRAGMA table_info({_quote_identifier(table)})").fetchall()
        return [
            ColumnInfo(
                name=name,
                type=col_type or "",
                nullable=not notnull,
                default=default,
                primary_key=pk > 0,
            )
            for _cid, name, col_type, notnull, default, pk in rows
        ]
