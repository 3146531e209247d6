"""Engine-specific rewrites applied to template SQL before placeholder substitution."""

from __future__ import annotations

import re

_QUOTED = re.compile(r"'([^']*)'")
_BOTH_WILDCARD = re.compile(r"^%\{\{([A-Za-z_][A-Za-z0-9_]*)\}\}%$")
_LEFT_WILDCARD = re.compile(r"^%\{\{([A-Za-z_][A-Za-z0-9_]*)\}\}$")
_RIGHT_WILDCARD = re.compile(r"^\{\{([A-Za-z_][A-Za-z0-9_]*)\}\}%$")
_BARE_VARIABLE = re.compile(r"^\{\{[A-Za-z_][A-Za-z0-9_]*\}\}$")

_UNITS = "day|hour|minute|second|week|month|year"
_INTERVAL_VAR = re.compile(rf"INTERVAL\s+\{{\{{\s*(\w+)\s*\}}\}}(?!\s+(?:{_UNITS})\b)", re.IGNORECASE)
_INTERVAL_NUM_UNIT_VARS = re.compile(
    r"INTERVAL\s*'\s*\{\{\s*(\w+)\s*\}\}\s+\{\{\s*(\w+)\s*\}\}\s*'", re.IGNORECASE
)
_INTERVAL_QUOTED_VAR = re.compile(r"INTERVAL\s*'\s*\{\{\s*(\w+)\s*\}\}\s*'", re.IGNORECASE)
_INTERVAL_LITERAL_NUM = re.compile(r"INTERVAL\s*'\s*([0-9]+)\s+\{\{\s*(\w+)\s*\}\}\s*'", re.IGNORECASE)
_INTERVAL_VAR_UNIT = re.compile(rf"INTERVAL\s+'\{{\{{(\w+)\}}\}}\s+({_UNITS})s?'", re.IGNORECASE)


def transform(sql: str, engine_id: str) -> str:
    """Rewrite intervals, quoted wildcards and quoted variables for ``engine_id``."""
    sql = _transform_intervals(sql, engine_id)
    sql = _transform_quoted_wildcards(sql, engine_id)
    return _strip_quoted_variables(sql)


def _concat(engine_id: str, parts: list[str]) -> str:
    if engine_id == "mysql":
        return "CONCAT(" + ", ".join(parts) + ")"
    return " || ".join(parts)


def _transform_quoted_wildcards(sql: str, engine_id: str) -> str:
    # '%{{q}}%' -> '%' || {{q}} || '%' so the value binds as a parameter
    def replace(match: re.Match[str]) -> str:
        content = match.group(1)
        both = _BOTH_WILDCARD.match(content)
        if both:
            return _concat(engine_id, ["'%'", "{{" + both.group(1) + "}}", "'%'"])
        left = _LEFT_WILDCARD.match(content)
        if left:
            return _concat(engine_id, ["'%'", "{{" + left.group(1) + "}}"])
        right = _RIGHT_WILDCARD.match(content)
        if right:
            return _concat(engine_id, ["{{" + right.group(1) + "}}", "'%'"])
        return match.group(0)

    return _QUOTED.sub(replace, sql)


def _strip_quoted_variables(sql: str) -> str:
    # '{{email}}' -> {{email}}
    def replace(match: re.Match[str]) -> str:
        content = match.group(1)
        return content if _BARE_VARIABLE.match(content) else match.group(0)

    return _QUOTED.sub(replace, sql)


def _transform_intervals(sql: str, engine_id: str) -> str:
    if engine_id != "postgres" or "interval" not in sql.lower() or "{{" not in sql:
        return sql

    sql = _INTERVAL_VAR.sub(lambda m: "({{" + m.group(1) + "}}::text)::interval", sql)
    sql = _INTERVAL_NUM_UNIT_VARS.sub(
        lambda m: "((CAST({{" + m.group(1) + "}} AS text) || ' ' || {{" + m.group(2) + "}})::interval)",
        sql,
    )
    sql = _INTERVAL_QUOTED_VAR.sub(lambda m: "CAST({{" + m.group(1) + "}} AS interval)", sql)
    sql = _INTERVAL_LITERAL_NUM.sub(lambda m: "(( '" + m.group(1) + " ' || {{" + m.group(2) + "}} )::interval)", sql)
    return _INTERVAL_VAR_UNIT.sub(
        lambda m: f"make_interval({_plural(m.group(2))} => ({{{{{m.group(1)}}}}})::integer)",
        sql,
    )


def _plural(unit: str) -> str:
    unit = unit.lower()
    return unit if unit.endswith("s") else unit + "s"
