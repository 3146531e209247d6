"""Cast raw variable values into engine-ready values for a semantic type.

Values usually arrive as strings from a form or an API payload. Casting is
strict: a value that does not fully match the expected format raises
``CastError`` with a message naming the value, the type and a format hint.

Custom handlers registered against an engine-native type name take
precedence over the built-in rules::

    class StatusHandler:
        def cast(self, value, context):
            return value.lower()

        def requires_casting(self, value):
            return isinstance(value, str)

    registry = TypeHandlerRegistry({"status_enum": StatusHandler()})
    cast_value("ACTIVE", "status_enum", CastContext(engine_id="postgres"), registry)
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Protocol

from sqlgate.core.errors import CastError
from sqlgate.core.logging import get_logger
from sqlgate.types.mapper import ArrayOf, SemanticType, ValueType, map_type

logger = get_logger(__name__)

_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}:\d{2}(?:\.\d{1,6})?$")
_DATETIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}(?:\.\d{1,6})?(?:Z|[+-]\d{2}:\d{2})?$"
)

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")

_TYPE_NAMES = {
    SemanticType.UUID: "UUID",
    SemanticType.JSON: "JSON",
}

_HINTS = {
    SemanticType.UUID: " (expected format: 8-4-4-4-12 hex digits)",
    SemanticType.DATE: " (expected ISO8601: YYYY-MM-DD)",
    SemanticType.TIME: " (expected ISO8601: HH:MM:SS)",
    SemanticType.DATETIME: " (expected ISO8601: YYYY-MM-DDTHH:MM:SS)",
    SemanticType.BOOLEAN: " (expected: true/false, yes/no, 1/0, on/off)",
    SemanticType.JSON: " (expected valid JSON)",
}


class TypeHandler(Protocol):
    def cast(self, value: Any, context: "CastContext") -> Any: ...

    def requires_casting(self, value: Any) -> bool: ...


@dataclass(frozen=True)
class CastContext:
    table: str | None = None
    column: str | None = None
    native_type: str | None = None
    engine_id: str | None = None


class TypeHandlerRegistry:
    """Custom handlers keyed by engine-native type name."""

    def __init__(self, handlers: Mapping[str, Any] | None = None) -> None:
        self._handlers: dict[str, TypeHandler] = {}
        for native_type, handler in (handlers or {}).items():
            self.register(native_type, handler)

    def register(self, native_type: str, handler: Any) -> bool:
        if not (callable(getattr(handler, "cast", None)) and callable(getattr(handler, "requires_casting", None))):
            logger.warning(
                "Type handler %r for type %s does not implement cast/requires_casting. "
                "Falling back to built-in type mapping.",
                handler,
                native_type,
            )
            return False
        self._handlers[native_type.lower()] = handler
        return True

    def get(self, native_type: str | None) -> TypeHandler | None:
        if not native_type:
            return None
        return self._handlers.get(native_type.lower())

    def __contains__(self, native_type: str) -> bool:
        return self.get(native_type) is not None

    def __len__(self) -> int:
        return len(self._handlers)


def type_display_name(target: ValueType) -> str:
    if isinstance(target, ArrayOf):
        return f"array of {type_display_name(target.element)}"
    return _TYPE_NAMES.get(target, target.value)


def _hint(target: ValueType) -> str:
    if isinstance(target, ArrayOf):
        return " (expected JSON array or PostgreSQL format)"
    return _HINTS.get(target, "")


def cast_error(target: ValueType, value: Any) -> CastError:
    name = type_display_name(target)
    shown = f"'{value}'" if isinstance(value, str) else repr(value)
    return CastError(
        f"Invalid {name} format: {shown} is not a valid {name}{_hint(target)}",
        value=value,
        type_name=str(target.value if isinstance(target, SemanticType) else target),
    )


def cast_value(
    value: Any,
    target: ValueType | str,
    context: CastContext | None = None,
    registry: TypeHandlerRegistry | None = None,
) -> Any:
    """Cast ``value`` to ``target``, a semantic type or an engine-native type name."""
    context = context or CastContext()
    native_type = context.native_type
    if isinstance(target, str) and not isinstance(target, SemanticType):
        native_type = target
        context = replace(context, native_type=native_type)
        target = map_type(context.engine_id or "", target)

    handler = registry.get(native_type) if registry is not None else None
    if handler is not None:
        if not handler.requires_casting(value):
            return value
        try:
            return handler.cast(value, context)
        except CastError:
            raise
        except Exception as exc:
            raise CastError(str(exc) or f"Custom handler failed for {native_type}", value=value, type_name=native_type) from exc

    return _cast_builtin(value, target, context)


def _cast_builtin(value: Any, target: ValueType, context: CastContext) -> Any:
    if isinstance(target, ArrayOf):
        return _cast_array(value, target, context)
    caster = _BUILTIN_CASTERS.get(target, _cast_text)
    return caster(value, target, context)


def _cast_uuid(value: Any, target: ValueType, context: CastContext) -> Any:
    if isinstance(value, uuid.UUID):
        parsed = value
    elif isinstance(value, str) and _UUID_RE.match(value):
        parsed = uuid.UUID(value)
    else:
        raise cast_error(target, value)

    native = (context.native_type or "").lower()
    if native == "binary(16)":
        return parsed.bytes
    if native == "char(32)":
        return parsed.hex
    if native == "char(36)" or context.engine_id != "postgres":
        return str(parsed)
    return parsed


def _cast_integer(value: Any, target: ValueType, context: CastContext) -> int:
    if isinstance(value, bool):
        raise cast_error(target, value)
    if isinstance(value, int):
        return value
    text = str(value)
    if not _INTEGER_RE.match(text):
        raise cast_error(target, value)
    return int(text)


def _cast_float(value: Any, target: ValueType, context: CastContext) -> float:
    if isinstance(value, bool):
        raise cast_error(target, value)
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value)
    if not _FLOAT_RE.match(text):
        raise cast_error(target, value)
    return float(text)


def _cast_decimal(value: Any, target: ValueType, context: CastContext) -> Decimal:
    if isinstance(value, bool):
        raise cast_error(target, value)
    if isinstance(value, Decimal):
        return value
    text = str(value)
    if not _FLOAT_RE.match(text):
        raise cast_error(target, value)
    try:
        return Decimal(text)
    except InvalidOperation as exc:  # pragma: no cover - regex already filters
        raise cast_error(target, value) from exc


def _cast_boolean(value: Any, target: ValueType, context: CastContext) -> bool:
    if value is True or value is False:
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
    raise cast_error(target, value)


def _cast_date(value: Any, target: ValueType, context: CastContext) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value)
    if not _DATE_RE.match(text):
        raise cast_error(target, value)
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise cast_error(target, value) from exc


def _cast_time(value: Any, target: ValueType, context: CastContext) -> time:
    if isinstance(value, time):
        return value
    text = str(value)
    if not _TIME_RE.match(text):
        raise cast_error(target, value)
    try:
        return time.fromisoformat(text)
    except ValueError as exc:
        raise cast_error(target, value) from exc


def _cast_datetime(value: Any, target: ValueType, context: CastContext) -> datetime:
    if isinstance(value, datetime):
        return value
    text = str(value)
    if not _DATETIME_RE.match(text):
        raise cast_error(target, value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise cast_error(target, value) from exc


def _cast_json(value: Any, target: ValueType, context: CastContext) -> Any:
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise cast_error(target, value) from exc
    raise cast_error(target, value)


def _cast_composite(value: Any, target: ValueType, context: CastContext) -> Any:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise cast_error(target, value) from exc
    raise cast_error(target, value)


def _cast_binary(value: Any, target: ValueType, context: CastContext) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise cast_error(target, value)


def _cast_text(value: Any, target: ValueType, context: CastContext) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def cast_number(value: Any) -> int | float:
    """Cast a manual ``number`` variable: integral text becomes ``int``, otherwise ``float``."""
    if isinstance(value, bool):
        raise CastError(f"Invalid number format: {value!r} is not a valid number", value=value, type_name="number")
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    if _INTEGER_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    if re.match(r"^[+-]?\d", text):
        raise CastError(
            f"Invalid number format: '{value}' contains non-numeric characters", value=value, type_name="number"
        )
    raise CastError(f"Invalid number format: '{value}' is not a valid number", value=value, type_name="number")


def _cast_manual_number(value: Any, target: ValueType, context: CastContext) -> int | float:
    return cast_number(value)


def _split_braced_array(text: str) -> list[str]:
    inner = text[1:-1].strip()
    if not inner:
        return []
    return [item.strip() for item in inner.split(",")]


def _cast_array(value: Any, target: ArrayOf, context: CastContext) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return [_cast_builtin(item, target.element, context) for item in value]
    if isinstance(value, str):
        trimmed = value.strip()
        if trimmed.startswith("{") and trimmed.endswith("}"):
            elements: Any = _split_braced_array(trimmed)
        else:
            try:
                elements = json.loads(value)
            except json.JSONDecodeError as exc:
                raise cast_error(target, value) from exc
            if not isinstance(elements, list):
                raise cast_error(target, value)
        return [_cast_builtin(item, target.element, context) for item in elements]
    raise cast_error(target, value)


_BUILTIN_CASTERS = {
    SemanticType.UUID: _cast_uuid,
    SemanticType.INTEGER: _cast_integer,
    SemanticType.FLOAT: _cast_float,
    SemanticType.DECIMAL: _cast_decimal,
    SemanticType.BOOLEAN: _cast_boolean,
    SemanticType.DATE: _cast_date,
    SemanticType.TIME: _cast_time,
    SemanticType.DATETIME: _cast_datetime,
    SemanticType.JSON: _cast_json,
    SemanticType.COMPOSITE: _cast_composite,
    SemanticType.BINARY: _cast_binary,
    SemanticType.TEXT: _cast_text,
    SemanticType.ENUM: _cast_text,
    SemanticType.NUMBER: _cast_manual_number,
}
