"""Quote and comment aware scanning of SQL text, built on the sqlglot tokenizer."""

from __future__ import annotations

import re
from typing import Callable, Iterator, List, Tuple

from sqlglot import tokenize
from sqlglot.errors import TokenError
from sqlglot.tokens import Token, TokenType

from sqlgate.core.errors import ValidationError

DIALECTS = {"postgres": "postgres", "mysql": "mysql", "sqlite": "sqlite"}

CODE = "code"
QUOTED = "quoted"
COMMENT = "comment"

_QUOTED_TOKENS = {
    TokenType.STRING,
    TokenType.NATIONAL_STRING,
    TokenType.RAW_STRING,
    TokenType.HEREDOC_STRING,
    TokenType.BIT_STRING,
    TokenType.HEX_STRING,
    TokenType.BYTE_STRING,
    TokenType.IDENTIFIER,
}
_CLOSING_QUOTES = ("'", '"', "`", "$", "]")
_COMMENT_OPENERS = ("--", "/*", "#")

# sqlglot's Postgres tokenizer reads `$1,$2` as the start of a dollar-quoted
# body; positional parameters are masked to a same-length token first.
_POSITIONAL = re.compile(r"\$(?=\d)")


def tokenize_sql(sql: str, engine_id: str | None = None) -> List[Token]:
    """Tokenize ``sql`` in the engine's dialect; token offsets index into ``sql``."""
    try:
        return tokenize(_POSITIONAL.sub("?", sql), read=DIALECTS.get(engine_id or ""))
    except TokenError as exc:
        raise ValidationError(f"Unable to tokenize SQL: {exc}") from exc


def _is_quoted(sql: str, token: Token) -> bool:
    # Command tails (SHOW ...) come back as STRING tokens without quotes.
    return token.token_type in _QUOTED_TOKENS and sql[token.start : token.end + 1].endswith(_CLOSING_QUOTES)


def iter_segments(sql: str, engine_id: str | None = None) -> Iterator[Tuple[str, str]]:
    """Yield ``(text, kind)`` chunks where kind is ``code``, ``quoted`` or ``comment``.

    Comments are not tokens in sqlglot; they live in the gaps between token
    offsets, so any gap that opens with a comment marker is a comment.
    """
    spans: List[Tuple[int, int, str]] = []
    position = 0
    for token in tokenize_sql(sql, engine_id):
        if token.start < position:
            continue
        if sql[position : token.start].lstrip().startswith(_COMMENT_OPENERS):
            spans.append((position, token.start, COMMENT))
        if _is_quoted(sql, token):
            spans.append((token.start, token.end + 1, QUOTED))
        position = token.end + 1
    if sql[position:].lstrip().startswith(_COMMENT_OPENERS):
        spans.append((position, len(sql), COMMENT))

    start = 0
    for span_start, span_end, kind in spans:
        if span_start > start:
            yield sql[start:span_start], CODE
        yield sql[span_start:span_end], kind
        start = span_end
    if start < len(sql):
        yield sql[start:], CODE


def strip_comments(sql: str, engine_id: str | None = None) -> str:
    return "".join(" " if kind == COMMENT else text for text, kind in iter_segments(sql, engine_id))


def rewrite_code(
    sql: str,
    code: Callable[[str], str],
    other: Callable[[str], str] | None = None,
    *,
    engine_id: str | None = None,
) -> str:
    """Apply ``code`` to code segments and ``other`` (if given) to quoted text and comments."""
    parts: List[str] = []
    for text, kind in iter_segments(sql, engine_id):
        if kind == CODE:
            parts.append(code(text))
        else:
            parts.append(other(text) if other else text)
    return "".join(parts)
