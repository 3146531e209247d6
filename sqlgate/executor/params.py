"""Turn a ``{{var}}`` template statement into engine SQL plus positional params."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from sqlalchemy.engine import Connection

from sqlgate.core.errors import ValidationError
from sqlgate.core.logging import get_logger
from sqlgate.engines.base import EngineDriver
from sqlgate.sql.transformer import transform
from sqlgate.sql.variables import VARIABLE_PATTERN, VariableBinding, resolve_bindings
from sqlgate.types.caster import CastContext, TypeHandlerRegistry, cast_value
from sqlgate.types.mapper import SemanticType, ValueType, map_type, parse_type_name

logger = get_logger(__name__)

ColumnTypes = Mapping[Tuple[str, str], str]


@dataclass(frozen=True)
class QueryVariable:
    """Stored metadata for one template variable of a saved query."""

    name: str
    type: str | None = None
    default: str | None = None
    widget: str = "input"
    label: str | None = None
    static_options: List[str] = field(default_factory=list)
    options_query: str | None = None

    @staticmethod
    def from_mapping(payload: Mapping[str, Any]) -> "QueryVariable":
        return QueryVariable(
            name=str(payload["name"]),
            type=payload.get("type"),
            default=payload.get("default"),
            widget=payload.get("widget") or "input",
            label=payload.get("label"),
            static_options=list(payload.get("static_options") or []),
            options_query=payload.get("options_query"),
        )


def _detected_native(binding: VariableBinding | None, column_types: ColumnTypes) -> str | None:
    if binding is None or not binding.table or not binding.column:
        return None
    return column_types.get((binding.table.lower(), binding.column.lower()))


def resolve_type(detected: ValueType | None, manual: ValueType | None) -> ValueType | None:
    """Non-text detected type, then the manual type, then detected text, else untyped."""
    if detected is not None and detected != SemanticType.TEXT:
        return detected
    if manual is not None:
        return manual
    return detected


def build_sql_params(
    statement: str,
    variables: Sequence[QueryVariable],
    supplied: Mapping[str, Any] | None,
    driver: EngineDriver,
    column_types: ColumnTypes | None = None,
    registry: TypeHandlerRegistry | None = None,
) -> Tuple[str, List[Any]]:
    """Return ``(sql, params)`` with one placeholder per ``{{var}}`` occurrence.

    ``column_types`` maps lower-cased ``(table, column)`` pairs to native type
    names; it drives automatic typing of bound variables.
    """
    supplied = supplied or {}
    column_types = column_types or {}
    meta = {variable.name: variable for variable in variables}
    sql = transform(statement, driver.engine_id)
    bindings = {binding.variable: binding for binding in resolve_bindings(sql)}

    resolved: Dict[str, Tuple[Any, ValueType | None]] = {}
    params: List[Any] = []
    for index, match in enumerate(VARIABLE_PATTERN.finditer(sql), start=1):
        name = match.group(1)
        if name not in resolved:
            resolved[name] = _resolve_value(name, meta.get(name), supplied, bindings.get(name), column_types, driver, registry)
        value, value_type = resolved[name]
        placeholder = driver.param_placeholder(index, name, value_type)
        sql = sql.replace(match.group(0), placeholder, 1)
        params.append(value)
    return sql, params


def _resolve_value(
    name: str,
    variable: QueryVariable | None,
    supplied: Mapping[str, Any],
    binding: VariableBinding | None,
    column_types: ColumnTypes,
    driver: EngineDriver,
    registry: TypeHandlerRegistry | None,
) -> Tuple[Any, ValueType | None]:
    value = supplied.get(name)
    if value is None and variable is not None:
        value = variable.default
    if value is None:
        raise ValidationError(f"Missing required variable: {name}")

    native = _detected_native(binding, column_types)
    detected = map_type(driver.engine_id, native) if native else None
    manual = parse_type_name(variable.type) if variable is not None else None
    value_type = resolve_type(detected, manual)
    if value_type is None:
        return value, None

    context = CastContext(
        table=binding.table if binding else None,
        column=binding.column if binding else None,
        native_type=native,
        engine_id=driver.engine_id,
    )
    return cast_value(value, value_type, context, registry), value_type


def lookup_column_types(
    driver: EngineDriver,
    connection: Connection,
    statement: str,
    schemas: Sequence[str],
) -> Dict[Tuple[str, str], str]:
    """Native types of every column a variable in ``statement`` binds to."""
    tables = {
        binding.table
        for binding in resolve_bindings(transform(statement, driver.engine_id))
        if binding.table and binding.column
    }
    types: Dict[Tuple[str, str], str] = {}
    for table in sorted(tables):
        schema = driver.resolve_table_schema(connection, table, schemas) if schemas else None
        if schema is None and schemas:
            schema = schemas[0]
        for column in driver.get_table_schema(connection, schema, table):
            types[(table.lower(), column.name.lower())] = column.type
    logger.debug("Resolved column types for %d table(s)", len(tables))
    return types
