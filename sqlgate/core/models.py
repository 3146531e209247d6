"""Value objects shared across the query pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping


@dataclass(frozen=True)
class Relation:
    """A ``(schema, table)`` pair; ``schema`` is ``None`` for schema-less engines."""

    schema: str | None
    table: str

    def __str__(self) -> str:
        return f"{self.schema}.{self.table}" if self.schema else self.table


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    type: str
    nullable: bool = True
    default: Any = None
    primary_key: bool = False


@dataclass(frozen=True)
class SessionContext:
    """Per-execution session settings, scoped to a single transaction."""

    read_only: bool = True
    statement_timeout_ms: int = 5000
    timeout_ms: int = 15000
    search_path: str | None = None

    @property
    def effective_timeout_ms(self) -> int:
        """Smallest positive budget between the statement and overall timeouts."""
        budgets = [value for value in (self.statement_timeout_ms, self.timeout_ms) if value and value > 0]
        return min(budgets) if budgets else 0


@dataclass
class QueryResult:
    columns: List[str]
    rows: List[List[Any]]
    num_rows: int
    duration_ms: int
    command: str = "select"
    meta: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": [list(row) for row in self.rows],
            "num_rows": self.num_rows,
            "duration_ms": self.duration_ms,
            "command": self.command,
            "meta": dict(self.meta),
        }

    @staticmethod
    def from_mapping(payload: Mapping[str, Any]) -> "QueryResult":
        return QueryResult(
            columns=list(payload.get("columns") or []),
            rows=[list(row) for row in payload.get("rows") or []],
            num_rows=int(payload.get("num_rows") or 0),
            duration_ms=int(payload.get("duration_ms") or 0),
            command=str(payload.get("command") or "select"),
            meta=dict(payload.get("meta") or {}),
        )
