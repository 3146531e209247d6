from __future__ import annotations

import pytest

from sqlgate.types.mapper import ArrayOf, SemanticType, map_type, parse_type_name


@pytest.mark.parametrize(
    ("native", "expected"),
    [
        ("integer", SemanticType.INTEGER),
        ("bigint", SemanticType.INTEGER),
        ("numeric(10,2)", SemanticType.DECIMAL),
        ("double precision", SemanticType.FLOAT),
        ("boolean", SemanticType.BOOLEAN),
        ("timestamp without time zone", SemanticType.DATETIME),
        ("time with time zone", SemanticType.TIME),
        ("jsonb", SemanticType.JSON),
        ("bytea", SemanticType.BINARY),
        ("uuid", SemanticType.UUID),
        ("USER-DEFINED", SemanticType.ENUM),
        ("character varying", SemanticType.TEXT),
    ],
)
def test_postgres_types(native, expected):
    assert map_type("postgres", native) == expected


def test_postgres_arrays_map_recursively():
    assert map_type("postgres", "integer[]") == ArrayOf(SemanticType.INTEGER)
    assert map_type("postgres", "uuid[][]") == ArrayOf(ArrayOf(SemanticType.UUID))


@pytest.mark.parametrize(
    ("native", "expected"),
    [
        ("char(36)", SemanticType.UUID),
        ("char(32)", SemanticType.UUID),
        ("binary(16)", SemanticType.UUID),
        ("tinyint(1)", SemanticType.BOOLEAN),
        ("tinyint(4)", SemanticType.INTEGER),
        ("int(11)", SemanticType.INTEGER),
        ("decimal(10,2)", SemanticType.DECIMAL),
        ("double", SemanticType.FLOAT),
        ("datetime", SemanticType.DATETIME),
        ("time", SemanticType.TIME),
        ("json", SemanticType.JSON),
        ("longblob", SemanticType.BINARY),
        ("varchar(255)", SemanticType.TEXT),
    ],
)
def test_mysql_types(native, expected):
    assert map_type("mysql", native) == expected


def test_sqlite_types_are_case_insensitive():
    assert map_type("sqlite", "integer") == SemanticType.INTEGER
    assert map_type("sqlite", "REAL") == SemanticType.FLOAT
    assert map_type("sqlite", "TEXT") == SemanticType.TEXT


@pytest.mark.parametrize("engine_id", ["postgres", "mysql", "sqlite", "oracle"])
def test_unknown_types_default_to_text(engine_id):
    assert map_type(engine_id, "UNKNOWN_TYPE") == SemanticType.TEXT
    assert map_type(engine_id, None) == SemanticType.TEXT


def test_parse_type_name():
    assert parse_type_name("number") == SemanticType.NUMBER
    assert parse_type_name("Date") == SemanticType.DATE
    assert parse_type_name("integer[]") == ArrayOf(SemanticType.INTEGER)
    assert parse_type_name("nonsense") is None
    assert parse_type_name(None) is None
