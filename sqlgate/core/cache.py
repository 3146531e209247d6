"""Redis cache helpers for memoizing query results."""

from __future__ import annotations

import base64
import hashlib
import json
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Sequence

import redis

from sqlgate.core.config import CacheSettings
from sqlgate.core.logging import get_logger

logger = get_logger(__name__)

HIT = "hit"
MISS = "miss"

_redis_client: redis.Redis | None = None
_namespace = "sqlgate"
_default_ttl_seconds: int | None = None

_TYPE_TAG = "__sqlgate_type__"


def configure_cache(settings: CacheSettings | None) -> redis.Redis | None:
    """Connect the module-level client; leaves the cache disabled on failure."""
    global _redis_client, _namespace, _default_ttl_seconds
    _redis_client = None
    if settings is None or not settings.redis_url:
        logger.info("Redis cache not configured.")
        return None

    _namespace = settings.namespace or "sqlgate"
    _default_ttl_seconds = settings.ttl_seconds or None
    try:
        client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        # Smoke test connection (non fatal)
        client.ping()
    except Exception as exc:  # pragma: no cover - network issues handled at runtime
        logger.warning("Redis disabled due to connection failure: %s", exc)
        return None
    _redis_client = client
    return client


def _encode(value: Any) -> Dict[str, Any] | str:
    """Tag values JSON cannot carry so cached rows decode to the same types."""
    if isinstance(value, Decimal):
        return {_TYPE_TAG: "decimal", "value": str(value)}
    if isinstance(value, datetime):
        return {_TYPE_TAG: "datetime", "value": value.isoformat()}
    if isinstance(value, date):
        return {_TYPE_TAG: "date", "value": value.isoformat()}
    if isinstance(value, time):
        return {_TYPE_TAG: "time", "value": value.isoformat()}
    if isinstance(value, timedelta):
        return {_TYPE_TAG: "timedelta", "value": value.total_seconds()}
    if isinstance(value, uuid.UUID):
        return {_TYPE_TAG: "uuid", "value": str(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {_TYPE_TAG: "bytes", "value": base64.b64encode(bytes(value)).decode("ascii")}
    return str(value)


_DECODERS: Dict[str, Callable[[Any], Any]] = {
    "decimal": Decimal,
    "datetime": datetime.fromisoformat,
    "date": date.fromisoformat,
    "time": time.fromisoformat,
    "timedelta": lambda seconds: timedelta(seconds=seconds),
    "uuid": uuid.UUID,
    "bytes": base64.b64decode,
}


def _decode(obj: Dict[str, Any]) -> Any:
    decoder = _DECODERS.get(obj.get(_TYPE_TAG)) if len(obj) == 2 and "value" in obj else None
    return decoder(obj["value"]) if decoder else obj


def dumps(payload: Any) -> str:
    return json.dumps(payload, default=_encode)


def loads(data: str) -> Any:
    return json.loads(data, object_hook=_decode)


def get_client() -> redis.Redis | None:
    return _redis_client


def namespaced(key: str) -> str:
    return f"{_namespace}:{key}"


def get_json(key: str) -> Any | None:
    """Retrieve JSON payload from cache."""
    client = get_client()
    if not client:
        return None
    try:
        value = client.get(namespaced(key))
    except Exception as exc:  # pragma: no cover
        logger.warning("Redis get failed for key %s: %s", key, exc)
        return None
    return loads(value) if value else None


def set_json(key: str, payload: Any, ttl_ms: int | None = None) -> None:
    """Store JSON payload in cache with optional TTL in milliseconds."""
    client = get_client()
    if not client:
        return
    try:
        data = dumps(payload)
        if ttl_ms:
            client.psetex(namespaced(key), int(ttl_ms), data)
        elif _default_ttl_seconds:
            client.setex(namespaced(key), _default_ttl_seconds, data)
        else:
            client.set(namespaced(key), data)
    except Exception as exc:  # pragma: no cover
        logger.warning("Redis set failed for key %s: %s", key, exc)


def get_or_store(
    key: str,
    ttl_ms: int | None,
    producer: Callable[[], Any],
    *,
    refresh: bool = False,
) -> tuple[Any, str]:
    """Return the cached value for ``key`` or compute, store and return it.

    The second element is ``"hit"`` or ``"miss"``. Without a configured client
    the producer always runs. Exceptions from the producer propagate and
    nothing is stored.
    """
    if not refresh:
        cached = get_json(key)
        if cached is not None:
            return cached, HIT
    value = producer()
    set_json(key, value, ttl_ms=ttl_ms)
    return value, MISS


def result_cache_key(sql: str, params: Sequence[Any], repo: str, search_path: str | None = None) -> str:
    """Digest of the final SQL, bound values, repo and search path."""
    material = json.dumps(
        {"sql": sql, "params": list(params), "repo": repo, "search_path": search_path},
        default=str,
        sort_keys=True,
    )
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()
    return f"result:{repo}:{digest}"


def flush_namespace() -> int:
    """Delete every key under the configured namespace; returns the count removed."""
    client = get_client()
    if not client:
        return 0
    removed = 0
    for key in client.scan_iter(match=f"{_namespace}:*"):
        removed += int(client.delete(key) or 0)
    return removed
