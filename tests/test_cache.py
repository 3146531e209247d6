from __future__ import annotations

import json
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from sqlgate.core import cache
from sqlgate.core.config import CacheSettings
from sqlgate.core.models import QueryResult
from sqlgate.tools import cache_cli


class FakeRedis:
    def __init__(self) -> None:
        self.store = {}
        self.expiry = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value

    def setex(self, key, seconds, value):
        self.store[key] = value
        self.expiry[key] = seconds * 1000

    def psetex(self, key, ms, value):
        self.store[key] = value
        self.expiry[key] = ms

    def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0

    def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        return [key for key in list(self.store) if key.startswith(prefix)]


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    client = FakeRedis()
    monkeypatch.setattr(cache, "_redis_client", client)
    monkeypatch.setattr(cache, "_namespace", "test")
    monkeypatch.setattr(cache, "_default_ttl_seconds", 60)
    return client


def test_get_or_store_without_client_always_produces(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cache, "_redis_client", None)
    calls = []

    def produce():
        calls.append(1)
        return {"rows": []}

    assert cache.get_or_store("k", 1000, produce) == ({"rows": []}, cache.MISS)
    assert cache.get_or_store("k", 1000, produce) == ({"rows": []}, cache.MISS)
    assert len(calls) == 2


def test_get_or_store_hits_after_first_store(fake_redis: FakeRedis) -> None:
    calls = []

    def produce():
        calls.append(1)
        return {"rows": [[1]]}

    assert cache.get_or_store("result:a", 5000, produce) == ({"rows": [[1]]}, "miss")
    assert fake_redis.expiry["test:result:a"] == 5000
    assert cache.get_or_store("result:a", 5000, produce) == ({"rows": [[1]]}, "hit")
    assert cache.get_or_store("result:a", 5000, produce, refresh=True)[1] == "miss"
    assert len(calls) == 2


def test_producer_errors_are_not_cached(fake_redis: FakeRedis) -> None:
    def explode():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        cache.get_or_store("result:b", None, explode)
    assert fake_redis.store == {}


def test_cached_rows_keep_their_python_types(fake_redis: FakeRedis) -> None:
    row = [
        Decimal("1.50"),
        date(2024, 1, 2),
        datetime(2024, 1, 2, 3, 4, 5),
        uuid.UUID("12345678-1234-5678-1234-567812345678"),
        b"\x00\xff",
        timedelta(minutes=90),
        {"nested": [1, "two"]},
        None,
    ]
    result = QueryResult(columns=[f"c{i}" for i in range(len(row))], rows=[row], num_rows=1, duration_ms=2)

    missed, status = cache.get_or_store("result:typed", 5000, result.as_dict)
    assert status == cache.MISS
    hit, status = cache.get_or_store("result:typed", 5000, result.as_dict)
    assert status == cache.HIT

    assert QueryResult.from_mapping(hit).rows == QueryResult.from_mapping(missed).rows == [row]
    assert [type(value) for value in hit["rows"][0]] == [type(value) for value in row]


def test_default_ttl_applies_without_explicit_ttl(fake_redis: FakeRedis) -> None:
    cache.set_json("columns:x", [["users", "id", "integer"]])
    assert json.loads(fake_redis.store["test:columns:x"]) == [["users", "id", "integer"]]
    assert fake_redis.expiry["test:columns:x"] == 60000


def test_result_keys_depend_on_every_input() -> None:
    base = cache.result_cache_key("SELECT $1", [1], "main", None)
    assert base.startswith("result:main:")
    assert base == cache.result_cache_key("SELECT $1", [1], "main", None)
    assert base != cache.result_cache_key("SELECT $1", [2], "main", None)
    assert base != cache.result_cache_key("SELECT $1", [1], "other", None)
    assert base != cache.result_cache_key("SELECT $1", [1], "main", "reporting")


def test_flush_namespace_only_removes_own_keys(fake_redis: FakeRedis) -> None:
    fake_redis.store.update({"test:a": "1", "test:b": "2", "other:c": "3"})
    assert cache.flush_namespace() == 2
    assert fake_redis.store == {"other:c": "3"}


def test_configure_cache_without_url_disables_cache() -> None:
    assert cache.configure_cache(CacheSettings(redis_url=None)) is None
    assert cache.get_client() is None


def test_cache_cli_flush(monkeypatch: pytest.MonkeyPatch, fake_redis: FakeRedis) -> None:
    seen = []
    monkeypatch.setattr(cache_cli, "configure_cache", seen.append)

    fake_redis.store.update({"test:a": "1", "test:b": "2"})
    assert cache_cli.clear_results("test") == 2
    assert seen[0].namespace == "test"

    fake_redis.store.update({"test:c": "3"})
    cache_cli.main(["--flush"])
    assert fake_redis.store == {}
