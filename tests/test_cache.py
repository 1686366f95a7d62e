"""In-memory and Redis cache behaviour."""

from __future__ import annotations

import fnmatch
from typing import Any

import pytest
import redis

from fx_fred.cache import EXCHANGE_RATES_NAMESPACE, InMemoryRateCache, RedisRateCache, redis_cache
from fx_fred.exceptions import CacheError


class _DummyRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.expiries: dict[str, Any] = {}
        self.delete_calls = 0
        self.broken = False

    def _check(self) -> None:
        if self.broken:
            raise redis.ConnectionError("Connection refused")

    def get(self, key: str) -> str | None:
        self._check()
        return self.values.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._check()
        self.values[key] = value
        self.expiries[key] = ex

    def scan_iter(self, match: str, count: int):
        self._check()
        for key in list(self.values):
            if fnmatch.fnmatchcase(key, match):
                yield key

    def delete(self, *keys: str) -> int:
        self._check()
        self.delete_calls += 1
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
        return removed


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_memory_cache_get_set_and_expiry() -> None:
    clock = _Clock()
    cache = InMemoryRateCache(default_ttl=60, clock=clock)

    cache.set(EXCHANGE_RATES_NAMESPACE, "latest:EUR", "payload")
    cache.set(EXCHANGE_RATES_NAMESPACE, "latest:JPY", "forever", ttl=0)
    assert cache.get(EXCHANGE_RATES_NAMESPACE, "latest:EUR") == "payload"
    assert cache.get("other", "latest:EUR") is None

    clock.now += 60
    assert cache.get(EXCHANGE_RATES_NAMESPACE, "latest:EUR") is None
    assert cache.get(EXCHANGE_RATES_NAMESPACE, "latest:JPY") == "forever"


def test_memory_cache_evicts_one_namespace() -> None:
    cache = InMemoryRateCache()
    cache.set(EXCHANGE_RATES_NAMESPACE, "a", "1")
    cache.set(EXCHANGE_RATES_NAMESPACE, "b", "2")
    cache.set("series", "a", "3")

    assert cache.evict_all(EXCHANGE_RATES_NAMESPACE) == 2
    assert cache.get(EXCHANGE_RATES_NAMESPACE, "a") is None
    assert cache.get("series", "a") == "3"
    assert cache.evict_all(EXCHANGE_RATES_NAMESPACE) == 0


def test_redis_cache_prefixes_keys_and_applies_ttl() -> None:
    client = _DummyRedis()
    cache = RedisRateCache(client=client, default_ttl=300)  # type: ignore[arg-type]

    cache.set(EXCHANGE_RATES_NAMESPACE, "latest:EUR", "payload")
    cache.set(EXCHANGE_RATES_NAMESPACE, "latest:JPY", "payload", ttl=10)

    assert client.values == {"exchange_rates::latest:EUR": "payload", "exchange_rates::latest:JPY": "payload"}
    assert client.expiries == {"exchange_rates::latest:EUR": 300, "exchange_rates::latest:JPY": 10}
    assert cache.get(EXCHANGE_RATES_NAMESPACE, "latest:EUR") == "payload"
    assert cache.get(EXCHANGE_RATES_NAMESPACE, "missing") is None


def test_redis_cache_decodes_bytes() -> None:
    client = _DummyRedis()
    client.values["exchange_rates::k"] = b"value"  # type: ignore[assignment]
    cache = RedisRateCache(client=client)  # type: ignore[arg-type]
    assert cache.get(EXCHANGE_RATES_NAMESPACE, "k") == "value"


def test_redis_eviction_scans_namespace_in_batches(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(redis_cache, "EVICT_BATCH_SIZE", 2)
    client = _DummyRedis()
    cache = RedisRateCache(client=client)  # type: ignore[arg-type]
    for index in range(5):
        cache.set(EXCHANGE_RATES_NAMESPACE, f"range:{index}", "x")
    cache.set("series", "keep", "x")

    assert cache.evict_all(EXCHANGE_RATES_NAMESPACE) == 5
    assert client.delete_calls == 3
    assert list(client.values) == ["series::keep"]


def test_redis_errors_become_cache_errors() -> None:
    client = _DummyRedis()
    client.broken = True
    cache = RedisRateCache(client=client)  # type: ignore[arg-type]

    with pytest.raises(CacheError):
        cache.get(EXCHANGE_RATES_NAMESPACE, "k")
    with pytest.raises(CacheError):
        cache.set(EXCHANGE_RATES_NAMESPACE, "k", "v")
    with pytest.raises(CacheError):
        cache.evict_all(EXCHANGE_RATES_NAMESPACE)


def test_redis_cache_requires_url_or_client() -> None:
    with pytest.raises(ValueError):
        RedisRateCache()
