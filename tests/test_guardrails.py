from __future__ import annotations

import pytest

from sqlgate.core.errors import ValidationError
from sqlgate.sql.guardrails import (
    GuardrailViolation,
    ensure_single_statement,
    needs_preflight,
    validate_search_path,
    validate_statement,
)


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT 1",
        "SELECT 1;",
        "SELECT 1 ;  ",
        "SELECT ';' AS semi",
        'SELECT 1 AS "a;b"',
        "SELECT 1 -- trailing; comment\n",
        "SELECT /* ; */ 1",
    ],
)
def test_single_statement_allowed(sql):
    ensure_single_statement(sql, "postgres")


def test_multiple_statements_rejected():
    with pytest.raises(GuardrailViolation, match="Only a single statement is allowed"):
        ensure_single_statement("SELECT 1; SELECT 2", "sqlite")


def test_deny_keywords_only_when_read_only():
    with pytest.raises(GuardrailViolation, match="Only read-only queries are allowed"):
        validate_statement("DELETE FROM users")
    validate_statement("DELETE FROM users", read_only=False)
    validate_statement("SELECT * FROM updates_log")


def test_guardrail_violation_is_a_validation_error():
    assert issubclass(GuardrailViolation, ValidationError)


def test_search_path_validation():
    assert validate_search_path("reporting , public") == "reporting, public"
    assert validate_search_path(None) is None
    for bad in ("public; DROP TABLE x", "1abc", "a,,b", ""):
        with pytest.raises(ValidationError):
            validate_search_path(bad)


@pytest.mark.parametrize(
    ("sql", "expected"),
    [
        ("SELECT 1", True),
        ("  explain SELECT 1", False),
        ("/* note */ SHOW TABLES", False),
        ("-- pragma next\nPRAGMA table_info(users)", False),
        ("WITH x AS (SELECT 1) SELECT * FROM x", True),
    ],
)
def test_needs_preflight(sql, expected):
    assert needs_preflight(sql) is expected
