"""Relation extraction from query plans and SQL text.

Plan walkers take the decoded ``EXPLAIN`` output of one engine and return
the ``Relation`` values it names. The SQL-text helpers are regex heuristics
used to map aliases back to base tables and as a MySQL fallback.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Sequence

from sqlgate.core.models import Relation
from sqlgate.sql.scanner import strip_comments

_FROM_ALIAS = re.compile(r'\bFROM\s+("?[A-Za-z0-9_]+"?)\s+(?:AS\s+)?("?[A-Za-z0-9_]+"?)', re.IGNORECASE)
_JOIN_ALIAS = re.compile(r'\bJOIN\s+("?[A-Za-z0-9_]+"?)\s+(?:AS\s+)?("?[A-Za-z0-9_]+"?)', re.IGNORECASE)

_IDENT = r'("[^"]+"|[A-Za-z0-9_]+)'
_SQLITE_TABLE_AS = re.compile(rf"\b(?:SCAN|SEARCH)\s+TABLE\s+{_IDENT}\s+AS\s+{_IDENT}")
_SQLITE_TABLE = re.compile(rf"\b(?:SCAN|SEARCH)\s+TABLE\s+{_IDENT}")
_SQLITE_NAME = re.compile(rf"\b(?:SCAN|SEARCH)\s+{_IDENT}")
# Plan steps that are not relations: SCAN CONSTANT ROW, SCAN SUBQUERY 1
_SQLITE_PSEUDO = {"CONSTANT", "SUBQUERY"}

_MYSQL_SQL_TABLE = re.compile(
    r"(?:FROM|JOIN)\s+(?:(`?)([a-zA-Z_][a-zA-Z0-9_]*)\1\.)?(`?)([a-zA-Z_][a-zA-Z0-9_]*)\3"
    r"(?:\s+(?:AS\s+)?[a-zA-Z_][a-zA-Z0-9_]*)?",
    re.IGNORECASE,
)
_MYSQL_SYSTEM_MARKERS = ("information_schema", "performance_schema", "mysql.", "sys.")

_EXPLAIN_TAIL = re.compile(r"\n?query:\s*EXPLAIN[\s\S]*\Z", re.IGNORECASE)


def normalize_identifier(name: str) -> str:
    if name.startswith('"'):
        return name[1:].rstrip('"').replace('""', '"')
    return name


def alias_map(sql: str, engine_id: str | None = None) -> Dict[str, str]:
    """``alias -> base table`` from ``FROM t a``/``JOIN t AS a`` clauses; subquery aliases are ignored."""
    text = strip_comments(sql, engine_id)
    aliases: Dict[str, str] = {}
    for pattern in (_FROM_ALIAS, _JOIN_ALIAS):
        for base, alias in pattern.findall(text):
            aliases[normalize_identifier(alias)] = normalize_identifier(base)
    return aliases


def resolve_alias(name: str, aliases: Dict[str, str]) -> str:
    return aliases.get(name, name)


def sqlite_plan_names(text: str) -> List[str]:
    """Base or alias names from one ``EXPLAIN QUERY PLAN`` detail line."""
    if _SQLITE_TABLE_AS.search(text):
        names = [base for base, _alias in _SQLITE_TABLE_AS.findall(text)]
    elif _SQLITE_TABLE.search(text):
        names = _SQLITE_TABLE.findall(text)
    else:
        names = _SQLITE_NAME.findall(text)
    return [normalize_identifier(name) for name in names if name not in _SQLITE_PSEUDO]


def sqlite_relations(rows: Iterable[Sequence[Any]], sql: str) -> List[Relation]:
    aliases = alias_map(sql, "sqlite")
    seen: Dict[str, None] = {}
    for row in rows:
        line = " ".join(str(item) for item in row)
        for name in sqlite_plan_names(line):
            seen.setdefault(resolve_alias(name, aliases), None)
    return [Relation(schema=None, table=name) for name in seen]


def decode_plan(raw: Any) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def postgres_relations(plan_data: Any) -> List[Relation]:
    """Every plan node carrying both ``Schema`` and ``Relation Name``."""
    if isinstance(plan_data, list):
        plan = plan_data[0]["Plan"] if plan_data else {}
    else:
        plan = plan_data.get("Plan", plan_data)
    found: Dict[Relation, None] = {}

    def walk(node: Dict[str, Any]) -> None:
        schema, name = node.get("Schema"), node.get("Relation Name")
        if isinstance(schema, str) and isinstance(name, str):
            found.setdefault(Relation(schema=schema, table=name), None)
        for child in node.get("Plans") or []:
            walk(child)

    walk(plan)
    return list(found)


def _collect_mysql(data: Any, found: Dict[tuple, None]) -> None:
    if isinstance(data, list):
        for item in data:
            _collect_mysql(item, found)
        return
    if not isinstance(data, dict):
        return
    table = data.get("table")
    if isinstance(table, dict) and isinstance(table.get("table_name"), str):
        name = table["table_name"]
        # <derived2>, <union1,2> and friends are planner temporaries.
        if not name.startswith("<"):
            found.setdefault((table.get("schema"), name), None)
    for value in data.values():
        _collect_mysql(value, found)


def mysql_plan_relations(plan_data: Any, sql: str) -> List[Relation]:
    found: Dict[tuple, None] = {}
    _collect_mysql(plan_data, found)
    aliases = alias_map(sql, "mysql")
    return [Relation(schema=schema, table=resolve_alias(name, aliases)) for schema, name in found]


def mysql_sql_relations(sql: str) -> List[Relation]:
    found: Dict[Relation, None] = {}
    for _q1, schema, _q2, table in _MYSQL_SQL_TABLE.findall(strip_comments(sql, "mysql")):
        found.setdefault(Relation(schema=schema or None, table=table), None)
    return list(found)


def prefer_sql_relations(plan_relations: Sequence[Relation], sql: str) -> bool:
    """MySQL plans can report only aliases; fall back to the SQL text when they look unreliable."""
    if not plan_relations:
        return True
    if all(len(relation.table) <= 4 for relation in plan_relations):
        return True
    return any(marker in sql for marker in _MYSQL_SYSTEM_MARKERS)


def mysql_relations(plan_data: Any, sql: str) -> List[Relation]:
    from_plan = mysql_plan_relations(plan_data, sql)
    if prefer_sql_relations(from_plan, sql):
        return mysql_sql_relations(sql)
    return from_plan


def format_relations(relations: Iterable[Relation]) -> str:
    return ", ".join(str(relation) for relation in relations)


def strip_explain_tail(message: str) -> str:
    """Drop a ``query: EXPLAIN ...`` suffix some drivers append to messages."""
    return _EXPLAIN_TAIL.sub("", message).rstrip()
