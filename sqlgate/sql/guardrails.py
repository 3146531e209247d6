"""SQL guardrails enforcing read-only behaviour and safety checks."""

from __future__ import annotations

import logging
import re

from sqlglot.tokens import TokenType

from sqlgate.core.errors import ValidationError
from sqlgate.sql.scanner import strip_comments, tokenize_sql

logger = logging.getLogger(__name__)

_PROHIBITED_KEYWORDS = re.compile(
    r"\b(INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|TRUNCATE|GRANT|REVOKE|VACUUM|ANALYZE|CALL|LOCK)\b",
    re.IGNORECASE,
)
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NO_PREFLIGHT_PREFIXES = ("EXPLAIN", "PRAGMA", "SHOW")


class GuardrailViolation(ValidationError):
    """Raised when submitted SQL violates safety policies."""


def ensure_single_statement(query: str, engine_id: str | None = None) -> None:
    """Reject input holding more than one statement; one trailing ``;`` is fine.

    Semicolons inside string literals, quoted identifiers, comments and
    dollar-quoted bodies do not count.
    """
    try:
        tokens = tokenize_sql(query, engine_id)
    except ValidationError as exc:
        raise GuardrailViolation(str(exc)) from exc

    while tokens and tokens[-1].token_type == TokenType.SEMICOLON:
        tokens.pop()
    if any(token.token_type == TokenType.SEMICOLON for token in tokens):
        raise GuardrailViolation("Only a single statement is allowed")


def ensure_read_only(query: str) -> None:
    """Ensure the SQL query holds no DML/DDL keywords."""
    if _PROHIBITED_KEYWORDS.search(query):
        raise GuardrailViolation("Only read-only queries are allowed")


def validate_search_path(search_path: str | None) -> str | None:
    """Return a normalised ``a, b`` search path or raise for anything but identifiers."""
    if search_path is None:
        return None
    if not isinstance(search_path, str):
        raise ValidationError("search_path must be a comma-separated string of identifiers")
    parts = [part.strip() for part in search_path.split(",")]
    if not parts or any(not _IDENTIFIER.match(part) for part in parts):
        raise ValidationError(f"Invalid search_path: {search_path!r}")
    return ", ".join(parts)


def needs_preflight(query: str, engine_id: str | None = None) -> bool:
    """EXPLAIN, PRAGMA and SHOW statements are not authorised through a plan."""
    head = strip_comments(query, engine_id).lstrip()[:12].upper()
    return not head.startswith(_NO_PREFLIGHT_PREFIXES)


def validate_statement(query: str, *, read_only: bool = True, engine_id: str | None = None) -> None:
    """Validate a final statement before it reaches the engine."""
    ensure_single_statement(query, engine_id)
    if read_only:
        ensure_read_only(query)
    logger.debug("Statement passed guardrails (read_only=%s)", read_only)
