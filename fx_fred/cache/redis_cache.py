"""Redis-backed response cache shared by every instance of the service."""

from __future__ import annotations

import redis

from fx_fred.cache.base import RateCache
from fx_fred.exceptions import CacheError
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)

# Keys are ``{namespace}::{key}``.
KEY_SEPARATOR = "::"
EVICT_BATCH_SIZE = 500


class RedisRateCache(RateCache):
    """Cache entries in Redis with a TTL; eviction scans the namespace prefix."""

    def __init__(
        self,
        url: str | None = None,
        *,
        client: redis.Redis | None = None,
        default_ttl: int | None = 3600,
    ) -> None:
        if client is None and url is None:
            raise ValueError("RedisRateCache needs either a Redis URL or a client")
        self._client = client or redis.Redis.from_url(url, decode_responses=True)
        self.default_ttl = default_ttl

    @staticmethod
    def _key(namespace: str, key: str) -> str:
        return f"{namespace}{KEY_SEPARATOR}{key}"

    def get(self, namespace: str, key: str) -> str | None:
        try:
            value = self._client.get(self._key(namespace, key))
        except redis.RedisError as exc:
            raise CacheError(f"Redis get failed for {namespace}: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, namespace: str, key: str, value: str, ttl: int | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        try:
            self._client.set(self._key(namespace, key), value, ex=ttl or None)
        except redis.RedisError as exc:
            raise CacheError(f"Redis set failed for {namespace}: {exc}") from exc

    def evict_all(self, namespace: str) -> int:
        pattern = f"{namespace}{KEY_SEPARATOR}*"
        removed = 0
        batch: list[str] = []
        try:
            for key in self._client.scan_iter(match=pattern, count=EVICT_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= EVICT_BATCH_SIZE:
                    removed += self._client.delete(*batch)
                    batch = []
            if batch:
                removed += self._client.delete(*batch)
        except redis.RedisError as exc:
            raise CacheError(f"Redis eviction failed for {namespace}: {exc}") from exc
        LOGGER.info("Evicted %s cached entries from %s", removed, namespace)
        return removed

    def close(self) -> None:  # pragma: no cover - trivial
        self._client.close()


__all__ = ["RedisRateCache"]
