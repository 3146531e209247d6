"""PostgreSQL driver (psycopg 3)."""

from __future__ import annotations

import re
from typing import Any, List, Sequence, Tuple

import psycopg
from sqlalchemy.engine import Connection

from sqlgate.core.config import DatabaseSettings
from sqlgate.core.errors import ErrorKind
from sqlgate.core.models import ColumnInfo, Relation, SessionContext
from sqlgate.engines.base import EngineDriver, format_type
from sqlgate.sql.guardrails import validate_search_path
from sqlgate.sql.scanner import rewrite_code
from sqlgate.types.mapper import SemanticType, ValueType

_POSITIONAL = re.compile(r"\$(\d+)")

_CASTS = {
    SemanticType.DATE: "::date",
    SemanticType.DATETIME: "::timestamp",
    SemanticType.TIME: "::time",
    SemanticType.BOOLEAN: "::boolean",
    SemanticType.JSON: "::jsonb",
    SemanticType.UUID: "::uuid",
}

_SYNTAX_ERROR = "42601"
_QUERY_CANCELED = "57014"

_LIST_SCHEMAS = """
SELECT schema_name
FROM information_schema.schemata
WHERE schema_name NOT IN ('pg_catalog', 'information_schema', 'pg_toast')
ORDER BY schema_name
"""

_LIST_TABLES = """
SELECT table_schema, table_name
FROM information_schema.tables
WHERE table_type IN ({types})
  AND table_schema = ANY(:schemas)
ORDER BY table_schema, table_name
"""

_TABLE_SCHEMA = """
SELECT
  c.column_name,
  c.data_type,
  c.character_maximum_length,
  c.numeric_precision,
  c.numeric_scale,
  c.is_nullable,
  c.column_default,
  CASE WHEN tc.constraint_type = 'PRIMARY KEY' THEN true ELSE false END AS is_primary_key
FROM information_schema.columns c
LEFT JOIN information_schema.key_column_usage kcu
  ON c.table_name = kcu.table_name
 AND c.column_name = kcu.column_name
 AND c.table_schema = kcu.table_schema
LEFT JOIN information_schema.table_constraints tc
  ON kcu.constraint_name = tc.constraint_name
 AND kcu.table_schema = tc.table_schema
 AND tc.constraint_type = 'PRIMARY KEY'
WHERE c.table_schema = :schema AND c.table_name = :table
ORDER BY c.ordinal_position
"""

_RESOLVE_SCHEMA = """
SELECT table_schema
FROM information_schema.tables
WHERE table_name = :table AND table_schema = ANY(CAST(:schemas AS text[]))
ORDER BY array_position(CAST(:schemas AS text[]), CAST(table_schema AS text)) NULLS LAST
LIMIT 1
"""


class PostgresDriver(EngineDriver):
    engine_id = "postgres"
    dialect_names = ("postgresql",)
    percent_paramstyle = True
    native_errors = (psycopg.Error,)

    def apply_session(self, connection: Connection, session: SessionContext) -> None:
        if session.read_only:
            connection.exec_driver_sql("SET LOCAL transaction_read_only = on")
        self.set_statement_timeout(connection, session.effective_timeout_ms)
        if session.search_path:
            self.set_search_path(connection, session.search_path)

    def set_statement_timeout(self, connection: Connection, timeout_ms: int) -> None:
        connection.exec_driver_sql(f"SET LOCAL statement_timeout = {int(timeout_ms)}")

    def set_search_path(self, connection: Connection, search_path: str | None) -> None:
        path = validate_search_path(search_path)
        if path:
            connection.exec_driver_sql(f"SET LOCAL search_path = {path}")

    def param_placeholder(self, index: int, variable: str, value_type: ValueType | None) -> str:
        return f"${index}{_CASTS.get(value_type, '')}"

    def to_dbapi(self, sql: str, params: Sequence[Any]) -> Tuple[str, Tuple[Any, ...]]:
        if not params:
            return sql, ()
        ordered: List[Any] = []

        def code(chunk: str) -> str:
            def replace(match: re.Match[str]) -> str:
                ordered.append(params[int(match.group(1)) - 1])
                return "%s"

            return _POSITIONAL.sub(replace, chunk.replace("%", "%%"))

        def other(chunk: str) -> str:
            return chunk.replace("%", "%%")

        return rewrite_code(sql, code, other, engine_id=self.engine_id), tuple(ordered)

    def format_error(self, error: Any) -> str:
        if isinstance(error, psycopg.Error):
            diag = getattr(error, "diag", None)
            message = getattr(diag, "message_primary", None) or str(error).strip()
            if getattr(error, "sqlstate", None) == _SYNTAX_ERROR:
                return f"SQL syntax error: {message}"
            return f"SQL error: {message}"
        return super().format_error(error)

    def classify_error(self, error: Any) -> ErrorKind:
        if isinstance(error, psycopg.Error) and getattr(error, "sqlstate", None) == _QUERY_CANCELED:
            return ErrorKind.TIMEOUT
        return super().classify_error(error)

    def builtin_denies(self, repo: DatabaseSettings | None = None) -> List[Any]:
        migrations = repo.migration_source if repo else "schema_migrations"
        prefix = repo.migration_prefix if repo else "public"
        return [
            ("pg_catalog", re.compile(".*")),
            ("information_schema", re.compile(".*")),
            (prefix, migrations),
            (prefix, "sqlgate_queries"),
        ]

    def builtin_schema_denies(self, repo: DatabaseSettings | None = None) -> List[Any]:
        return [
            "auth",
            "extensions",
            "graphql",
            "graphql_public",
            "pgbouncer",
            "realtime",
            "storage",
            "vault",
            "pg_catalog",
            "information_schema",
            "pg_toast",
            re.compile("^pg_temp"),
            re.compile("^pg_toast"),
        ]

    def default_schemas(self, repo: DatabaseSettings | None = None) -> List[str]:
        return ["public"]

    def list_schemas(self, connection: Connection) -> List[str]:
        return [row[0] for row in self._rows(connection, _LIST_SCHEMAS)]

    def list_tables(self, connection: Connection, schemas: Sequence[str], include_views: bool = False) -> List[Relation]:
        types = "'BASE TABLE','VIEW'" if include_views else "'BASE TABLE'"
        rows = self._rows(connection, _LIST_TABLES.format(types=types), {"schemas": list(schemas)})
        return [Relation(schema=schema, table=table) for schema, table in rows]

    def get_table_schema(self, connection: Connection, schema: str | None, table: str) -> List[ColumnInfo]:
        rows = self._rows(connection, _TABLE_SCHEMA, {"schema": schema or "public", "table": table})
        return [
            ColumnInfo(
                name=name,
                type=format_type(
                    data_type,
                    char_len,
                    num_prec,
                    num_scale,
                    varchar=("character varying", "varchar"),
                    char="character",
                    numeric="numeric",
                ),
                nullable=nullable == "YES",
                default=default,
                primary_key=bool(is_pk),
            )
            for name, data_type, char_len, num_prec, num_scale, nullable, default, is_pk in rows
        ]

    def resolve_table_schema(self, connection: Connection, table: str, schemas: Sequence[str]) -> str | None:
        rows = self._rows(connection, _RESOLVE_SCHEMA, {"table": table, "schemas": list(schemas)})
        return rows[0][0] if rows else None
