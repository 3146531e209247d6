"""Map engine-native column type names onto a closed set of semantic types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class SemanticType(str, Enum):
    UUID = "uuid"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    JSON = "json"
    BINARY = "binary"
    TEXT = "text"
    ENUM = "enum"
    COMPOSITE = "composite"
    # Manual variable type only; never produced by map_type.
    NUMBER = "number"


@dataclass(frozen=True)
class ArrayOf:
    element: "SemanticType | ArrayOf"

    def __str__(self) -> str:
        return f"array({self.element.value if isinstance(self.element, SemanticType) else self.element})"


ValueType = Union[SemanticType, ArrayOf]


_POSTGRES_EXACT = {
    "uuid": SemanticType.UUID,
    "integer": SemanticType.INTEGER,
    "bigint": SemanticType.INTEGER,
    "smallint": SemanticType.INTEGER,
    "serial": SemanticType.INTEGER,
    "bigserial": SemanticType.INTEGER,
    "int2": SemanticType.INTEGER,
    "int4": SemanticType.INTEGER,
    "int8": SemanticType.INTEGER,
    "real": SemanticType.FLOAT,
    "double precision": SemanticType.FLOAT,
    "float4": SemanticType.FLOAT,
    "float8": SemanticType.FLOAT,
    "boolean": SemanticType.BOOLEAN,
    "bool": SemanticType.BOOLEAN,
    "date": SemanticType.DATE,
    "json": SemanticType.JSON,
    "jsonb": SemanticType.JSON,
    "bytea": SemanticType.BINARY,
    "user-defined": SemanticType.ENUM,
}

_MYSQL_EXACT = {
    "char(36)": SemanticType.UUID,
    "char(32)": SemanticType.UUID,
    "binary(16)": SemanticType.UUID,
    "tinyint(1)": SemanticType.BOOLEAN,
    "date": SemanticType.DATE,
    "time": SemanticType.TIME,
    "json": SemanticType.JSON,
}

# Ordered: longer prefixes that share a stem come first.
_MYSQL_PREFIXES = (
    ("tinyint", SemanticType.INTEGER),
    ("smallint", SemanticType.INTEGER),
    ("mediumint", SemanticType.INTEGER),
    ("bigint", SemanticType.INTEGER),
    ("int", SemanticType.INTEGER),
    ("decimal", SemanticType.DECIMAL),
    ("numeric", SemanticType.DECIMAL),
    ("float", SemanticType.FLOAT),
    ("double", SemanticType.FLOAT),
    ("datetime", SemanticType.DATETIME),
    ("timestamp", SemanticType.DATETIME),
    ("varbinary", SemanticType.BINARY),
    ("binary", SemanticType.BINARY),
    ("tinyblob", SemanticType.BINARY),
    ("mediumblob", SemanticType.BINARY),
    ("longblob", SemanticType.BINARY),
    ("blob", SemanticType.BINARY),
)

_SQLITE_EXACT = {
    "INTEGER": SemanticType.INTEGER,
    "REAL": SemanticType.FLOAT,
    "NUMERIC": SemanticType.DECIMAL,
    "DATE": SemanticType.DATE,
    "DATETIME": SemanticType.DATETIME,
    "BLOB": SemanticType.BINARY,
}


def _map_postgres(native: str) -> ValueType:
    lowered = native.strip().lower()
    if lowered.endswith("[]"):
        return ArrayOf(_map_postgres(lowered[:-2]))
    if lowered in _POSTGRES_EXACT:
        return _POSTGRES_EXACT[lowered]
    if lowered.startswith(("numeric", "decimal")):
        return SemanticType.DECIMAL
    if lowered.startswith("timestamp"):
        return SemanticType.DATETIME
    if lowered.startswith("time"):
        return SemanticType.TIME
    return SemanticType.TEXT


def _map_mysql(native: str) -> ValueType:
    lowered = native.strip().lower()
    if lowered in _MYSQL_EXACT:
        return _MYSQL_EXACT[lowered]
    for prefix, semantic in _MYSQL_PREFIXES:
        if lowered.startswith(prefix):
            return semantic
    return SemanticType.TEXT


def _map_sqlite(native: str) -> ValueType:
    # SQLite stores UUIDs as TEXT; everything unlisted has text affinity here.
    return _SQLITE_EXACT.get(native.strip().upper(), SemanticType.TEXT)


_MAPPERS = {
    "postgres": _map_postgres,
    "mysql": _map_mysql,
    "sqlite": _map_sqlite,
}


def map_type(engine_id: str, native: str | None) -> ValueType:
    """Return the semantic type for an engine-native type name.

    Total: unknown engines and unknown type names map to ``text``.
    """
    if not native:
        return SemanticType.TEXT
    mapper = _MAPPERS.get(engine_id)
    if mapper is None:
        return SemanticType.TEXT
    return mapper(native)


def parse_type_name(name: str | SemanticType | ArrayOf | None) -> ValueType | None:
    """Parse a manual type name such as ``"date"``, ``"number"`` or ``"integer[]"``."""
    if name is None or isinstance(name, (SemanticType, ArrayOf)):
        return name
    cleaned = str(name).strip().lower()
    if not cleaned:
        return None
    if cleaned.endswith("[]"):
        element = parse_type_name(cleaned[:-2])
        return ArrayOf(element) if element is not None else None
    try:
        return SemanticType(cleaned)
    except ValueError:
        return None
