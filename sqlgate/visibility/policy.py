"""Column policies: what happens to a result column that matches a rule.

Accepted shorthand, as written in the visibility config::

    "omit"                                  # drop the column from results
    "error"                                 # fail the query if it is selected
    "mask"                                  # mask with NULL
    {"action": "mask", "mask": "sha256"}
    {"action": "mask", "mask": {"fixed": "REDACTED"}}
    {"action": "mask", "mask": {"partial": {"keep_last": 4}}, "show_in_schema": false}

A mapping without ``action`` defaults to masking with NULL.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class ColumnAction(str, Enum):
    ALLOW = "allow"
    OMIT = "omit"
    MASK = "mask"
    ERROR = "error"


@dataclass(frozen=True)
class MaskStrategy:
    kind: str
    value: Any = None
    keep_first: int = 0
    keep_last: int = 4
    replacement: str = "*"

    @staticmethod
    def parse(raw: Any) -> "MaskStrategy":
        if isinstance(raw, MaskStrategy):
            return raw
        if raw is None or raw == "null":
            return MaskStrategy(kind="null")
        if raw == "sha256":
            return MaskStrategy(kind="sha256")
        if isinstance(raw, (list, tuple)) and len(raw) == 2:
            raw = {raw[0]: raw[1]}
        if isinstance(raw, Mapping) and len(raw) == 1:
            kind, options = next(iter(raw.items()))
            if kind == "fixed":
                return MaskStrategy(kind="fixed", value=options)
            if kind == "partial" and isinstance(options, Mapping):
                return MaskStrategy(
                    kind="partial",
                    keep_first=int(options.get("keep_first", 0)),
                    keep_last=int(options.get("keep_last", 4)),
                    replacement=str(options.get("replacement", "*")),
                )
        raise ValueError(
            f"Invalid mask strategy: {raw!r}. Valid strategies: 'null', 'sha256', "
            "{'fixed': value}, {'partial': {'keep_first': n, 'keep_last': n, 'replacement': str}}"
        )

    def apply(self, value: Any) -> Any:
        if self.kind == "fixed":
            return self.value
        if self.kind == "sha256":
            return hashlib.sha256(_to_text(value).encode("utf-8")).hexdigest()
        if self.kind == "partial":
            return self._partial(_to_text(value))
        return None

    def _partial(self, text: str) -> str:
        length = len(text)
        left = min(self.keep_first, length)
        right = min(self.keep_last, max(length - left, 0))
        middle = max(length - left - right, 0)
        tail = text[length - right :] if right > 0 else ""
        return text[:left] + self.replacement * middle + tail


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return value if isinstance(value, str) else str(value)


@dataclass(frozen=True)
class ColumnPolicy:
    action: ColumnAction
    mask: MaskStrategy | None = None
    show_in_schema: bool = True

    @property
    def requires_mask(self) -> bool:
        return self.action is ColumnAction.MASK

    @property
    def causes_error(self) -> bool:
        return self.action is ColumnAction.ERROR

    @property
    def omits_column(self) -> bool:
        return self.action is ColumnAction.OMIT

    def apply(self, value: Any) -> Any:
        if not self.requires_mask:
            return value
        return (self.mask or MaskStrategy(kind="null")).apply(value)


def normalize_column_policy(policy: Any) -> ColumnPolicy:
    """Build a ``ColumnPolicy`` from any of the accepted shorthand forms."""
    if isinstance(policy, ColumnPolicy):
        return policy
    if isinstance(policy, (str, ColumnAction)):
        action = ColumnAction(policy)
        mask = MaskStrategy(kind="null") if action is ColumnAction.MASK else None
        return ColumnPolicy(action=action, mask=mask)
    if isinstance(policy, Mapping):
        action = ColumnAction(policy.get("action", ColumnAction.MASK))
        mask = MaskStrategy.parse(policy.get("mask", "null")) if action is ColumnAction.MASK else None
        return ColumnPolicy(action=action, mask=mask, show_in_schema=bool(policy.get("show_in_schema", True)))
    raise ValueError(f"Invalid column policy: {policy!r}")
