"""Engine driver interface shared by every supported database engine."""

from __future__ import annotations

import re
from abc import ABC
from typing import Any, Callable, List, Sequence, Tuple, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from sqlgate.core.config import DatabaseSettings
from sqlgate.core.errors import ErrorKind
from sqlgate.core.logging import get_logger
from sqlgate.core.models import ColumnInfo, Relation, SessionContext
from sqlgate.sql.scanner import rewrite_code
from sqlgate.types.mapper import ValueType

logger = get_logger(__name__)

T = TypeVar("T")

_QMARK = re.compile(r"\?")


class EngineDriver(ABC):
    """Per-engine capabilities: session control, placeholders, errors, catalog.

    Subclasses override what their engine supports; the defaults here are the
    conservative behaviour used for unknown engines.
    """

    engine_id = "default"
    dialect_names: Tuple[str, ...] = ()
    # Driver paramstyle uses %s, so literal % must be doubled when binding.
    percent_paramstyle = False
    # Native exception classes this driver claims for formatting.
    native_errors: Tuple[type, ...] = ()

    # -- transactions -----------------------------------------------------

    def execute_in_transaction(self, engine: Engine, session: SessionContext, fn: Callable[[Connection], T]) -> T:
        """Run ``fn`` inside one transaction and end it on every exit path."""
        with engine.connect() as connection:
            try:
                self.apply_session(connection, session)
                result = fn(connection)
            except BaseException:
                connection.rollback()
                raise
            self.end_transaction(connection, session)
            return result

    def apply_session(self, connection: Connection, session: SessionContext) -> None:
        """Apply read-only mode, timeout and search path at the start of the transaction."""

    def end_transaction(self, connection: Connection, session: SessionContext) -> None:
        if session.read_only:
            connection.rollback()
        else:
            connection.commit()

    def set_statement_timeout(self, connection: Connection, timeout_ms: int) -> None:
        """No-op for engines without a statement timeout."""

    def set_search_path(self, connection: Connection, search_path: str | None) -> None:
        """No-op for engines without a search path."""

    # -- placeholders -----------------------------------------------------

    def param_placeholder(self, index: int, variable: str, value_type: ValueType | None) -> str:
        return "?"

    def to_dbapi(self, sql: str, params: Sequence[Any]) -> Tuple[str, Tuple[Any, ...]]:
        """Translate engine placeholder syntax into the DBAPI driver's paramstyle."""
        if not params or not self.percent_paramstyle:
            return sql, tuple(params)

        def code(chunk: str) -> str:
            return _QMARK.sub("%s", chunk.replace("%", "%%"))

        def other(chunk: str) -> str:
            return chunk.replace("%", "%%")

        return rewrite_code(sql, code, other, engine_id=self.engine_id), tuple(params)

    def execute(self, connection: Connection, sql: str, params: Sequence[Any] = ()):
        """Execute engine-syntax SQL with positional params on ``connection``."""
        statement, bound = self.to_dbapi(sql, params)
        if not bound:
            return connection.execution_options(no_parameters=True).exec_driver_sql(statement)
        return connection.exec_driver_sql(statement, bound)

    # -- errors -----------------------------------------------------------

    def handled_errors(self) -> Tuple[type, ...]:
        return self.native_errors

    def format_error(self, error: Any) -> str:
        if isinstance(error, BaseException):
            return str(error) or error.__class__.__name__
        if isinstance(error, str):
            return error
        return f"Database Error: {error!r}"

    def classify_error(self, error: Any) -> ErrorKind:
        if isinstance(error, TimeoutError):
            return ErrorKind.TIMEOUT
        return ErrorKind.ENGINE

    # -- visibility defaults ----------------------------------------------

    def builtin_denies(self, repo: DatabaseSettings | None = None) -> List[Any]:
        return [
            ("pg_catalog", re.compile(".*")),
            ("information_schema", re.compile(".*")),
            (None, re.compile("^sqlite_")),
            (None, "schema_migrations"),
            ("public", "schema_migrations"),
            ("public", "sqlgate_queries"),
            (None, "sqlgate_queries"),
        ]

    def builtin_schema_denies(self, repo: DatabaseSettings | None = None) -> List[Any]:
        return []

    def default_schemas(self, repo: DatabaseSettings | None = None) -> List[str]:
        return []

    # -- catalog ----------------------------------------------------------

    def list_schemas(self, connection: Connection) -> List[str]:
        return []

    def list_tables(self, connection: Connection, schemas: Sequence[str], include_views: bool = False) -> List[Relation]:
        return []

    def get_table_schema(self, connection: Connection, schema: str | None, table: str) -> List[ColumnInfo]:
        return []

    def resolve_table_schema(self, connection: Connection, table: str, schemas: Sequence[str]) -> str | None:
        return None

    # -- helpers ----------------------------------------------------------

    @staticmethod
    def _rows(connection: Connection, sql: str, params: dict[str, Any] | None = None) -> List[Tuple[Any, ...]]:
        return [tuple(row) for row in connection.execute(text(sql), params or {})]


def format_type(base: str, char_len: Any, num_prec: Any, num_scale: Any, *, varchar: Sequence[str], char: str, numeric: str) -> str:
    """Render ``varchar(n)``, ``char(n)`` and ``numeric(p,s)`` from catalog columns."""
    if base in varchar and char_len:
        return f"varchar({char_len})"
    if base == char and char_len:
        return f"char({char_len})"
    if base == numeric and num_prec is not None and num_scale is not None:
        return f"{numeric}({num_prec},{num_scale})"
    if base == numeric and num_prec is not None:
        return f"{numeric}({num_prec})"
    return base
