"""Heuristic resolution of ``{{var}}`` template variables to table columns.

This is not a SQL parser. It recognises the common shapes analysts write:

* explicit comparisons ``users.id = {{user_id}}`` or ``u.id = {{user_id}}``
* implicit comparisons ``id = {{user_id}}``, bound to the first ``FROM`` table
* anything else (``SELECT`` lists, ``VALUES``), left without a column

Subqueries, CTEs and multi-table implicit comparisons are best effort.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List

VARIABLE_PATTERN = re.compile(r"\{\{([A-Za-z_][A-Za-z0-9_]*)\}\}")
_LOOSE_VARIABLE_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

_LINE_COMMENT = re.compile(r"--.*?(\n|$)")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_WHITESPACE = re.compile(r"\s+")

_FROM_ALIAS = re.compile(r"\bfrom\s+(?:\w+\.)?(\w+)(?:\s+as)?\s+(\w+)")
_JOIN_ALIAS = re.compile(r"\bjoin\s+(?:\w+\.)?(\w+)(?:\s+as)?\s+(\w+)")
_PRIMARY_TABLE = re.compile(r"\bfrom\s+(?:\w+\.)?(\w+)")

_COMPARISON_OPS = r"=|<>|!=|<=|>=|<|>|like|ilike|in"
_EXPLICIT = re.compile(rf"(\w+)\.(\w+)\s*(?:{_COMPARISON_OPS})\s*\{{\{{(\w+)\}}\}}")
_IMPLICIT = re.compile(rf"(?<!\.)\b(\w+)\s*(?:{_COMPARISON_OPS})\s*\{{\{{(\w+)\}}\}}")

_NOT_ALIASES = {
    "where", "join", "inner", "left", "right", "full", "cross", "natural", "on", "using",
    "group", "order", "limit", "offset", "having", "union", "except", "intersect", "window",
}


@dataclass(frozen=True)
class VariableBinding:
    variable: str
    table: str | None
    column: str | None


def extract_variables(sql: str) -> List[str]:
    """Unique variable names in order of first appearance."""
    seen: Dict[str, None] = {}
    for match in _LOOSE_VARIABLE_PATTERN.finditer(sql):
        seen.setdefault(match.group(1), None)
    return list(seen)


def normalize_sql(sql: str) -> str:
    """Lower-case, comment-free, whitespace-collapsed copy; variable names keep their case."""
    text = _BLOCK_COMMENT.sub(" ", _LINE_COMMENT.sub(" ", sql))
    pieces: List[str] = []
    last = 0
    for match in _LOOSE_VARIABLE_PATTERN.finditer(text):
        pieces.append(text[last : match.start()].lower())
        pieces.append("{{" + match.group(1) + "}}")
        last = match.end()
    pieces.append(text[last:].lower())
    return _WHITESPACE.sub(" ", "".join(pieces)).strip()


def table_aliases(normalized_sql: str) -> Dict[str, str]:
    aliases: Dict[str, str] = {}
    for pattern in (_FROM_ALIAS, _JOIN_ALIAS):
        for table, alias in pattern.findall(normalized_sql):
            if alias not in _NOT_ALIASES:
                aliases[alias] = table
    return aliases


def primary_table(normalized_sql: str) -> str | None:
    match = _PRIMARY_TABLE.search(normalized_sql)
    return match.group(1) if match else None


def resolve_bindings(sql: str) -> List[VariableBinding]:
    """Return one binding per variable; explicit beats implicit beats unbound."""
    normalized = normalize_sql(sql)
    aliases = table_aliases(normalized)
    primary = primary_table(normalized)

    explicit = [
        VariableBinding(variable=variable, table=aliases.get(qualifier, qualifier), column=column)
        for qualifier, column, variable in _EXPLICIT.findall(normalized)
    ]
    implicit = [
        VariableBinding(variable=variable, table=primary, column=column)
        for column, variable in _IMPLICIT.findall(normalized)
    ]
    bound = {binding.variable for binding in explicit + implicit}
    unbound = [
        VariableBinding(variable=variable, table=primary, column=None)
        for variable in extract_variables(normalized)
        if variable not in bound
    ]

    merged: Dict[str, VariableBinding] = {}
    for binding in explicit + implicit + unbound:
        merged.setdefault(binding.variable, binding)
    return list(merged.values())
