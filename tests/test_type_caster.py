from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest

from sqlgate.core.errors import CastError
from sqlgate.types.caster import CastContext, TypeHandlerRegistry, cast_number, cast_value
from sqlgate.types.mapper import ArrayOf, SemanticType

UUID_TEXT = "550e8400-e29b-41d4-a716-446655440000"


def test_uuid_error_names_value_and_format():
    with pytest.raises(CastError) as excinfo:
        cast_value("not-a-uuid", SemanticType.UUID, CastContext(table="users", column="id"))
    message = str(excinfo.value)
    assert "not-a-uuid" in message
    assert "8-4-4-4-12" in message


def test_uuid_follows_column_storage():
    assert cast_value(UUID_TEXT, SemanticType.UUID, CastContext(engine_id="postgres")) == uuid.UUID(UUID_TEXT)
    assert cast_value(UUID_TEXT, "binary(16)", CastContext(engine_id="mysql")) == uuid.UUID(UUID_TEXT).bytes
    assert cast_value(UUID_TEXT, "char(32)", CastContext(engine_id="mysql")) == uuid.UUID(UUID_TEXT).hex
    assert cast_value(UUID_TEXT, "char(36)", CastContext(engine_id="mysql")) == UUID_TEXT


def test_numbers_are_strict():
    assert cast_value("42", SemanticType.INTEGER) == 42
    assert cast_value("2.5", SemanticType.FLOAT) == 2.5
    assert cast_value("10.25", SemanticType.DECIMAL) == Decimal("10.25")
    for bad in ("42abc", "4 2", "", True):
        with pytest.raises(CastError):
            cast_value(bad, SemanticType.INTEGER)
    with pytest.raises(CastError):
        cast_value("1.5x", SemanticType.DECIMAL)


@pytest.mark.parametrize("raw", [True, "true", "1", 1, "yes", "on"])
def test_boolean_true_values(raw):
    assert cast_value(raw, SemanticType.BOOLEAN) is True


@pytest.mark.parametrize("raw", [False, "false", "0", 0, "no", "off"])
def test_boolean_false_values(raw):
    assert cast_value(raw, SemanticType.BOOLEAN) is False


@pytest.mark.parametrize("raw", ["TRUE", "Yes", "2", 2, "y"])
def test_boolean_rejects_everything_else(raw):
    with pytest.raises(CastError):
        cast_value(raw, SemanticType.BOOLEAN)


def test_temporal_values_require_iso8601():
    assert cast_value("2024-03-01", SemanticType.DATE) == date(2024, 3, 1)
    assert cast_value("13:45:00", SemanticType.TIME) == time(13, 45)
    assert cast_value("2024-03-01T10:00:00Z", SemanticType.DATETIME) == datetime(
        2024, 3, 1, 10, 0, tzinfo=timezone.utc
    )
    with pytest.raises(CastError) as excinfo:
        cast_value("03/01/2024", SemanticType.DATE)
    assert "YYYY-MM-DD" in str(excinfo.value)
    with pytest.raises(CastError):
        cast_value("2024-02-30", SemanticType.DATE)


def test_json_and_composite():
    assert cast_value({"a": 1}, SemanticType.JSON) == {"a": 1}
    assert cast_value("[1, 2]", SemanticType.JSON) == [1, 2]
    assert cast_value('{"x": 1}', SemanticType.COMPOSITE) == {"x": 1}
    with pytest.raises(CastError):
        cast_value("{broken", SemanticType.JSON)


def test_binary_accepts_only_bytes():
    assert cast_value(b"\x00\x01", SemanticType.BINARY) == b"\x00\x01"
    with pytest.raises(CastError):
        cast_value("0001", SemanticType.BINARY)


def test_text_and_enum_stringify():
    assert cast_value(12, SemanticType.TEXT) == "12"
    assert cast_value(True, SemanticType.ENUM) == "true"


def test_arrays_cast_each_element():
    target = ArrayOf(SemanticType.INTEGER)
    assert cast_value(["1", 2], target) == [1, 2]
    assert cast_value("{1,2,3}", target) == [1, 2, 3]
    assert cast_value("[4, 5]", target) == [4, 5]
    with pytest.raises(CastError):
        cast_value(["1", "x"], target)
    with pytest.raises(CastError):
        cast_value("not an array", target)


def test_manual_number():
    assert cast_number("30") == 30
    assert cast_number("2.5") == 2.5
    with pytest.raises(CastError, match="contains non-numeric characters"):
        cast_number("30abc")
    with pytest.raises(CastError, match="is not a valid number"):
        cast_number("abc")


class UpperHandler:
    def __init__(self) -> None:
        self.calls = []

    def cast(self, value, context):
        self.calls.append(context)
        return value.upper()

    def requires_casting(self, value):
        return isinstance(value, str)


def test_custom_handler_takes_precedence():
    handler = UpperHandler()
    registry = TypeHandlerRegistry({"citext": handler})
    context = CastContext(table="users", column="email", native_type="citext", engine_id="postgres")

    assert cast_value("a@b.c", SemanticType.TEXT, context, registry) == "A@B.C"
    assert handler.calls == [context]
    # requires_casting() False hands the value back untouched
    assert cast_value(7, SemanticType.TEXT, context, registry) == 7


def test_incomplete_handler_is_ignored():
    class Broken:
        def cast(self, value, context):
            return value

    registry = TypeHandlerRegistry()
    assert registry.register("money", Broken()) is False
    assert "money" not in registry
    assert cast_value("5", "money", CastContext(engine_id="postgres"), registry) == "5"


def test_handler_failures_become_cast_errors():
    class Failing:
        def cast(self, value, context):
            raise ValueError("bad ltree path")

        def requires_casting(self, value):
            return True

    registry = TypeHandlerRegistry({"ltree": Failing()})
    with pytest.raises(CastError, match="bad ltree path"):
        cast_value("a..b", "ltree", CastContext(engine_id="postgres"), registry)
