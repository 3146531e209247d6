"""MySQL driver (PyMySQL).

MySQL has no transaction-local settings, so the session's read-only flag,
isolation level and ``max_execution_time`` are snapshotted before the
transaction and restored afterwards. A connection whose state cannot be
restored is invalidated so the pool never hands it out again.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Sequence, TypeVar

from pymysql.err import MySQLError
from sqlalchemy import bindparam, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError

from sqlgate.core.config import DatabaseSettings
from sqlgate.core.errors import ErrorKind
from sqlgate.core.logging import get_logger
from sqlgate.core.models import ColumnInfo, Relation, SessionContext
from sqlgate.engines.base import EngineDriver, format_type
from sqlgate.types.mapper import SemanticType, ValueType

logger = get_logger(__name__)

T = TypeVar("T")

_CASTS = {
    SemanticType.DATE: "CAST(? AS DATE)",
    SemanticType.DATETIME: "CAST(? AS DATETIME)",
    SemanticType.TIME: "CAST(? AS TIME)",
    SemanticType.INTEGER: "CAST(? AS SIGNED)",
    SemanticType.NUMBER: "CAST(? AS DECIMAL)",
    SemanticType.BOOLEAN: "CAST(? AS UNSIGNED)",
    SemanticType.JSON: "CAST(? AS JSON)",
}

_ISOLATION_LEVELS = {
    "READ-COMMITTED": "READ COMMITTED",
    "REPEATABLE-READ": "REPEATABLE READ",
    "READ-UNCOMMITTED": "READ UNCOMMITTED",
    "SERIALIZABLE": "SERIALIZABLE",
}

# ER_QUERY_TIMEOUT, ER_QUERY_INTERRUPTED
_TIMEOUT_CODES = {3024, 1317}

_SYSTEM_SCHEMAS = ["information_schema", "mysql", "performance_schema", "sys"]


class MySQLDriver(EngineDriver):
    engine_id = "mysql"
    dialect_names = ("mysql", "mariadb")
    percent_paramstyle = True
    native_errors = (MySQLError,)

    def execute_in_transaction(self, engine: Engine, session: SessionContext, fn: Callable[[Connection], T]) -> T:
        with engine.connect() as connection:
            snapshot = self._snapshot(connection)
            try:
                if session.read_only:
                    connection.exec_driver_sql("SET SESSION TRANSACTION READ ONLY")
                self.set_statement_timeout(connection, session.effective_timeout_ms)
                # Session characteristics apply from the next transaction on.
                connection.commit()
                try:
                    result = fn(connection)
                except BaseException:
                    connection.rollback()
                    raise
                self.end_transaction(connection, session)
                return result
            finally:
                self._restore(connection, snapshot)

    def _scalar(self, connection: Connection, sql: str) -> Any:
        return connection.exec_driver_sql(sql).scalar()

    def _snapshot(self, connection: Connection) -> Dict[str, Any]:
        try:
            isolation = self._scalar(connection, "SELECT @@session.transaction_isolation")
        except DBAPIError:
            # MySQL < 8.0
            isolation = self._scalar(connection, "SELECT @@session.tx_isolation")
        return {
            "read_only": self._scalar(connection, "SELECT @@session.transaction_read_only"),
            "isolation": isolation,
            "max_execution_time": self._scalar(connection, "SELECT @@session.max_execution_time") or 0,
        }

    def _restore(self, connection: Connection, snapshot: Dict[str, Any]) -> None:
        try:
            if connection.in_transaction():
                connection.rollback()
            if snapshot.get("read_only") in (1, "1", True):
                connection.exec_driver_sql("SET SESSION TRANSACTION READ ONLY")
            else:
                connection.exec_driver_sql("SET SESSION TRANSACTION READ WRITE")
            level = _ISOLATION_LEVELS.get(str(snapshot.get("isolation") or ""))
            if level:
                connection.exec_driver_sql(f"SET SESSION TRANSACTION ISOLATION LEVEL {level}")
            previous = snapshot.get("max_execution_time")
            self.set_statement_timeout(connection, int(previous) if isinstance(previous, int) and previous >= 0 else 0)
            connection.commit()
        except DBAPIError as exc:
            logger.warning("Could not restore MySQL session state; discarding connection: %s", exc)
            connection.invalidate()

    def set_statement_timeout(self, connection: Connection, timeout_ms: int) -> None:
        connection.exec_driver_sql(f"SET SESSION max_execution_time = {int(timeout_ms)}")

    def param_placeholder(self, index: int, variable: str, value_type: ValueType | None) -> str:
        return _CASTS.get(value_type, "?")

    def format_error(self, error: Any) -> str:
        if isinstance(error, MySQLError):
            args = getattr(error, "args", ())
            if len(args) >= 2 and isinstance(args[1], str):
                return f"MySQL Error ({args[0]}): {args[1]}"
            return f"MySQL Error: {error}"
        return super().format_error(error)

    def classify_error(self, error: Any) -> ErrorKind:
        if isinstance(error, MySQLError):
            args = getattr(error, "args", ())
            if args and args[0] in _TIMEOUT_CODES:
                return ErrorKind.TIMEOUT
        return super().classify_error(error)

    def builtin_denies(self, repo: DatabaseSettings | None = None) -> List[Any]:
        migrations = repo.migration_source if repo else "schema_migrations"
        denies: List[Any] = [(schema, re.compile(".*")) for schema in _SYSTEM_SCHEMAS]
        denies += [(None, migrations), (None, "sqlgate_queries")]
        database = repo.database if repo else None
        if database:
            denies += [(database, migrations), (database, "sqlgate_queries")]
        return denies

    def builtin_schema_denies(self, repo: DatabaseSettings | None = None) -> List[Any]:
        return ["mysql", "information_schema", "performance_schema", "sys"]

    def default_schemas(self, repo: DatabaseSettings | None = None) -> List[str]:
        return [(repo.database if repo else None) or "public"]

    def list_schemas(self, connection: Connection) -> List[str]:
        rows = self._rows(
            connection,
            "SELECT schema_name FROM information_schema.schemata "
            "WHERE schema_name NOT IN ('information_schema', 'mysql', 'performance_schema', 'sys') "
            "ORDER BY schema_name",
        )
        return [row[0] for row in rows]

    def list_tables(self, connection: Connection, schemas: Sequence[str], include_views: bool = False) -> List[Relation]:
        if not schemas:
            return []
        types = "'BASE TABLE','VIEW'" if include_views else "'BASE TABLE'"
        statement = text(
            "SELECT table_schema, table_name FROM information_schema.tables "
            f"WHERE table_type IN ({types}) AND table_schema IN :schemas "
            "ORDER BY table_schema, table_name"
        ).bindparams(bindparam("schemas", expanding=True))
        rows = connection.execute(statement, {"schemas": list(schemas)})
        return [Relation(schema=schema, table=table) for schema, table in rows]

    def get_table_schema(self, connection: Connection, schema: str | None, table: str) -> List[ColumnInfo]:
        rows = self._rows(
            connection,
            """
            SELECT
              c.column_name,
              c.data_type,
              c.character_maximum_length,
              c.numeric_precision,
              c.numeric_scale,
              c.is_nullable,
              c.column_default,
              IF(c.column_key = 'PRI', 1, 0) AS is_primary_key
            FROM information_schema.columns c
            WHERE c.table_schema = :schema AND c.table_name = :table
            ORDER BY c.ordinal_position
            """,
            {"schema": schema, "table": table},
        )
        return [
            ColumnInfo(
                name=name,
                type=format_type(
                    data_type, char_len, num_prec, num_scale, varchar=("varchar",), char="char", numeric="decimal"
                ),
                nullable=nullable == "YES",
                default=default,
                primary_key=is_pk == 1,
            )
            for name, data_type, char_len, num_prec, num_scale, nullable, default, is_pk in rows
        ]

    def resolve_table_schema(self, connection: Connection, table: str, schemas: Sequence[str]) -> str | None:
        if not schemas:
            return None
        statement = text(
            "SELECT table_schema FROM information_schema.tables "
            "WHERE table_name = :table AND table_schema IN :schemas"
        ).bindparams(bindparam("schemas", expanding=True))
        found = {row[0] for row in connection.execute(statement, {"table": table, "schemas": list(schemas)})}
        return next((schema for schema in schemas if schema in found), None)
