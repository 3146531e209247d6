"""Error taxonomy for the query pipeline and helpers to summarise failures."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CAST = "cast"
    VISIBILITY = "visibility"
    ENGINE = "engine"
    TIMEOUT = "timeout"


class SqlGateError(Exception):
    """Base class for failures raised inside the pipeline."""

    kind: ErrorKind = ErrorKind.ENGINE


class ValidationError(SqlGateError):
    """Raised for missing variables, malformed search paths and rejected statements."""

    kind = ErrorKind.VALIDATION


class CastError(SqlGateError):
    """Raised when a value cannot be converted to its resolved type."""

    kind = ErrorKind.CAST

    def __init__(self, message: str, *, value: object = None, type_name: str | None = None) -> None:
        super().__init__(message)
        self.value = value
        self.type_name = type_name


class VisibilityError(SqlGateError):
    """Raised when a schema, relation or column is hidden by policy."""

    kind = ErrorKind.VISIBILITY

    def __init__(self, message: str, *, relations: list[str] | None = None) -> None:
        super().__init__(message)
        self.relations = relations or []


AuthError = VisibilityError


class EngineError(SqlGateError):
    """Raised for native driver failures after formatting by the engine driver."""

    kind = ErrorKind.ENGINE


class QueryTimeoutError(SqlGateError):
    """Raised when a statement exceeds its time budget."""

    kind = ErrorKind.TIMEOUT


@dataclass(frozen=True)
class ErrorSummary:
    kind: ErrorKind
    message: str
    details: dict[str, str] | None = None

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"kind": self.kind.value, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


def summarize_exception(exc: Exception) -> ErrorSummary:
    """Convert exceptions into a tagged summary safe to return to callers."""
    if isinstance(exc, CastError):
        details = {"type": exc.type_name} if exc.type_name else None
        return ErrorSummary(kind=exc.kind, message=str(exc), details=details)
    if isinstance(exc, VisibilityError):
        details = {"relations": ", ".join(exc.relations)} if exc.relations else None
        return ErrorSummary(kind=exc.kind, message=str(exc), details=details)
    if isinstance(exc, SqlGateError):
        return ErrorSummary(kind=exc.kind, message=str(exc))
    if isinstance(exc, SQLAlchemyError):
        text = str(getattr(exc, "orig", None) or exc.__cause__ or exc)
        return ErrorSummary(kind=ErrorKind.ENGINE, message=f"Database Error: {text}")
    if isinstance(exc, TimeoutError):
        return ErrorSummary(kind=ErrorKind.TIMEOUT, message=str(exc) or "Query timed out")
    return ErrorSummary(kind=ErrorKind.ENGINE, message=str(exc) or exc.__class__.__name__)
