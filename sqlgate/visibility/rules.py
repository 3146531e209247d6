"""Visibility rule definitions and the JSON config loader.

Config file layout (``VISIBILITY_CONFIG_PATH``)::

    {
      "schema_visibility": {"default": {"deny": ["legacy"]},
                            "warehouse": {"allow": ["public", {"regex": "^tenant_"}]}},
      "table_visibility":  {"default": {"deny": ["api_keys", {"regex": "^audit_"}]},
                            "warehouse": {"allow": [["public", {"regex": "^dim_"}]]}},
      "column_visibility": {"default": [["ssn", "error"],
                                        ["users", "email", {"mask": "sha256"}],
                                        ["public", "users", "phone", "omit"]]}
    }

Repo sections are merged onto ``default``: lists are concatenated, and a repo
``"allow": "all"`` lifts any schema allow posture.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Tuple, Union

from sqlgate.core.logging import get_logger
from sqlgate.visibility.policy import normalize_column_policy

logger = get_logger(__name__)

Pattern = Union[str, "re.Pattern[str]", None]
TableRule = Union[str, "re.Pattern[str]", Tuple[Pattern, Pattern]]
ColumnRule = Tuple[Any, ...]


@dataclass(frozen=True)
class RuleSet:
    """Allow/deny lists for one level; ``allow=None`` means no allow posture."""

    allow: Tuple[Any, ...] | None = None
    deny: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class VisibilityRules:
    schemas: RuleSet = field(default_factory=RuleSet)
    tables: RuleSet = field(default_factory=RuleSet)
    columns: Tuple[ColumnRule, ...] = ()


def parse_pattern(raw: Any) -> Pattern:
    if raw is None or isinstance(raw, (str, re.Pattern)):
        return raw
    if isinstance(raw, Mapping) and "regex" in raw:
        return re.compile(str(raw["regex"]))
    raise ValueError(f"Invalid visibility pattern: {raw!r}")


def parse_table_rule(raw: Any) -> TableRule:
    if isinstance(raw, (list, tuple)):
        if len(raw) != 2:
            raise ValueError(f"Table rule pairs must be [schema, table]: {raw!r}")
        return (parse_pattern(raw[0]), parse_pattern(raw[1]))
    pattern = parse_pattern(raw)
    if pattern is None:
        raise ValueError("Table rule cannot be null")
    return pattern


def parse_column_rule(raw: Any) -> ColumnRule:
    if not isinstance(raw, (list, tuple)) or len(raw) not in (2, 3, 4):
        raise ValueError(f"Column rules must be [column, policy], [table, column, policy] or [schema, table, column, policy]: {raw!r}")
    *patterns, policy = raw
    parsed: list[Any] = [parse_pattern(item) for item in patterns]
    parsed.append(normalize_column_policy(policy))
    return tuple(parsed)


def _parse_rule_list(raw: Any, parser) -> Tuple[Any, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"Visibility rules must be lists: {raw!r}")
    return tuple(parser(item) for item in raw)


def _merge_rule_sets(sections: list[Mapping[str, Any]], parser) -> RuleSet:
    allow: list[Any] | None = None
    allow_all = False
    deny: list[Any] = []
    for section in sections:
        raw_allow = section.get("allow")
        if raw_allow == "all":
            allow_all = True
        elif raw_allow:
            allow = (allow or []) + list(_parse_rule_list(raw_allow, parser))
        deny.extend(_parse_rule_list(section.get("deny"), parser))
    return RuleSet(allow=None if allow_all or not allow else tuple(allow), deny=tuple(deny))


def _sections(payload: Mapping[str, Any], key: str, repo: str | None) -> list:
    block = payload.get(key) or {}
    names = ["default"] + ([repo] if repo and repo != "default" else [])
    return [block[name] for name in names if name in block]


def rules_from_mapping(payload: Mapping[str, Any], repo: str | None = None) -> VisibilityRules:
    """Build the rules that apply to ``repo`` from a parsed config mapping."""
    schema_sections = _sections(payload, "schema_visibility", repo)
    table_sections = _sections(payload, "table_visibility", repo)
    column_sections = _sections(payload, "column_visibility", repo)
    columns: list[ColumnRule] = []
    for section in column_sections:
        columns.extend(_parse_rule_list(section, parse_column_rule))
    return VisibilityRules(
        schemas=_merge_rule_sets(schema_sections, parse_pattern),
        tables=_merge_rule_sets(table_sections, parse_table_rule),
        columns=tuple(columns),
    )


@lru_cache(maxsize=8)
def _read_config(path: str) -> Mapping[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Visibility config not found at {config_path}")
    logger.info("Loading visibility rules from %s", config_path)
    payload = json.loads(config_path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("Visibility config must be a JSON object.")
    return payload


def load_rules(path: str | Path | None, repo: str | None = None) -> VisibilityRules:
    """Load rules for ``repo`` from a JSON file; no path means no user rules."""
    if not path:
        return VisibilityRules()
    return rules_from_mapping(_read_config(str(path)), repo)

