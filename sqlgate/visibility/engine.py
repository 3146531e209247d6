"""Schema, table and column visibility checks.

Schema visibility gates table visibility: a denied schema hides every table
in it. At both levels a deny rule (built-in or user) beats any allow rule.

Table allow rules are scoped to the schemas they name. A relation is only
held to the allow list when at least one allow rule could apply to its
schema; relations in schemas the allow rules never mention pass.

Patterns:

* ``"name"`` matches exactly; as a table rule it matches that table in any schema
* a compiled regex matches by ``search``
* ``None`` as a schema pattern matches only a missing or empty schema
* ``("schema", "table")`` pairs combine the above
* ``"*"`` in column rules matches anything
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Sequence

from sqlgate.core.models import Relation
from sqlgate.visibility.policy import ColumnPolicy
from sqlgate.visibility.rules import VisibilityRules


def pattern_match(pattern: Any, value: str | None) -> bool:
    if isinstance(pattern, re.Pattern):
        return value is not None and pattern.search(value) is not None
    if isinstance(pattern, str):
        return value is not None and pattern == value
    if pattern is None:
        return value in (None, "")
    return False


def _column_match(pattern: Any, value: str | None) -> bool:
    if pattern == "*":
        return True
    return pattern_match(pattern, value)


def _schema_rule_hit(rules: Iterable[Any], schema: str | None) -> bool:
    for rule in rules:
        if isinstance(rule, re.Pattern) and pattern_match(rule, schema):
            return True
        if isinstance(rule, str) and rule == schema:
            return True
    return False


def _table_rule_hit(rule: Any, relation: Relation) -> bool:
    if isinstance(rule, tuple):
        schema_pattern, table_pattern = rule
        return pattern_match(schema_pattern, relation.schema) and pattern_match(table_pattern, relation.table)
    return pattern_match(rule, relation.table)


class VisibilityEngine:
    """Evaluate visibility rules for one data repo."""

    def __init__(
        self,
        rules: VisibilityRules | None = None,
        *,
        builtin_table_denies: Sequence[Any] = (),
        builtin_schema_denies: Sequence[Any] = (),
    ) -> None:
        self.rules = rules or VisibilityRules()
        self.builtin_table_denies = tuple(builtin_table_denies)
        self.builtin_schema_denies = tuple(builtin_schema_denies)

    def is_schema_allowed(self, schema: str | None) -> bool:
        allow = self.rules.schemas.allow
        allowed = not allow or _schema_rule_hit(allow, schema)
        denied = _schema_rule_hit(self.builtin_schema_denies, schema) or _schema_rule_hit(
            self.rules.schemas.deny, schema
        )
        return allowed and not denied

    def is_relation_allowed(self, relation: Relation) -> bool:
        if not self.is_schema_allowed(relation.schema):
            return False
        denied = any(_table_rule_hit(rule, relation) for rule in self.builtin_table_denies) or any(
            _table_rule_hit(rule, relation) for rule in self.rules.tables.deny
        )
        return self._table_allow_pass(relation) and not denied

    def _table_allow_pass(self, relation: Relation) -> bool:
        allow = self.rules.tables.allow
        if not allow:
            return True
        scoped = [
            rule
            for rule in allow
            if not isinstance(rule, tuple) or pattern_match(rule[0], relation.schema)
        ]
        if not scoped:
            return True
        return any(_table_rule_hit(rule, relation) for rule in scoped)

    def column_policy(self, relations: Sequence[Relation], column: str) -> ColumnPolicy | None:
        """First matching policy: schema+table+column, then table+column, then column-only."""
        rules = self.rules.columns
        if relations:
            for rule in rules:
                if len(rule) == 4 and any(
                    _column_match(rule[0], rel.schema)
                    and _column_match(rule[1], rel.table)
                    and _column_match(rule[2], column)
                    for rel in relations
                ):
                    return rule[3]
            for rule in rules:
                if len(rule) == 3 and any(
                    _column_match(rule[0], rel.table) and _column_match(rule[1], column) for rel in relations
                ):
                    return rule[2]
        for rule in rules:
            if len(rule) == 2 and _column_match(rule[0], column):
                return rule[1]
        return None

    def filter_schemas(self, schemas: Iterable[str]) -> List[str]:
        return [schema for schema in schemas if self.is_schema_allowed(schema)]

    def filter_relations(self, relations: Iterable[Relation]) -> List[Relation]:
        return [relation for relation in relations if self.is_relation_allowed(relation)]

    def validate_schemas(self, schemas: Iterable[str]) -> List[str]:
        """Return the denied schemas; an empty list means all are visible."""
        return [schema for schema in schemas if not self.is_schema_allowed(schema)]
