"""Logging setup and structured events carrying the request and query context."""

from __future__ import annotations

import json
import logging
import os
import re
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Dict, Iterator, Optional


_REQUEST_ID_CTX: ContextVar[str] = ContextVar("request_id", default="n/a")
# repo, engine, search_path and read_only of the query being run
_QUERY_CTX: ContextVar[Dict[str, Any]] = ContextVar("query_context", default={})

_SENSITIVE_KEYS = {"password", "secret", "token", "params", "values"}
# user:password@ inside connection URLs
_URL_CREDENTIALS = re.compile(r"(?<=://)[^/:@\s]+:[^/@\s]+(?=@)")
_REDACTED = "***redacted***"


def configure_logging(level: int | str | None = None) -> None:
    """Install a stream handler on the root logger unless the host already did.

    ``level`` defaults to ``SQLGATE_LOG_LEVEL`` (``INFO`` when unset).
    """
    root = logging.getLogger()
    if root.handlers:
        # uvicorn and pytest bring their own handlers
        return

    if level is None:
        level = os.getenv("SQLGATE_LOG_LEVEL", "INFO").upper()
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
    root.setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


def set_request_id(request_id: str) -> Token:
    return _REQUEST_ID_CTX.set(request_id or "n/a")


def get_request_id() -> str:
    return _REQUEST_ID_CTX.get()


def reset_request_id(token: Token | None) -> None:
    if token is not None:
        _REQUEST_ID_CTX.reset(token)


@contextmanager
def bind_query_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Attach query fields to every ``log_structured`` call made inside the block."""
    merged = {**_QUERY_CTX.get(), **{key: value for key, value in fields.items() if value is not None}}
    token = _QUERY_CTX.set(merged)
    try:
        yield merged
    finally:
        _QUERY_CTX.reset(token)


def get_query_context() -> Dict[str, Any]:
    return dict(_QUERY_CTX.get())


def redact_text(value: str) -> str:
    return _URL_CREDENTIALS.sub(_REDACTED, value)


def _redact_value(key: str, value: Any) -> Any:
    if value is None:
        return value
    lowered = key.lower()
    if any(token in lowered for token in _SENSITIVE_KEYS):
        return _REDACTED
    if isinstance(value, str):
        return redact_text(value)
    return value


def redact_mapping(mapping: Dict[str, Any]) -> Dict[str, Any]:
    """Return a shallowly redacted copy of a mapping."""
    return {key: _redact_value(key, value) for key, value in mapping.items()}


def log_structured(logger: logging.Logger, level: int, message: str, **fields: Any) -> None:
    """Emit ``message | {json}`` with the bound query context and request id merged in."""
    payload = redact_mapping({**_QUERY_CTX.get(), **fields})
    payload.setdefault("request_id", get_request_id())
    logger.log(level, "%s | %s", message, json.dumps(payload, default=str, sort_keys=True))
