"""Cache interface shared by the query service and the import invalidation hook."""

from __future__ import annotations

from abc import ABC, abstractmethod

EXCHANGE_RATES_NAMESPACE = "exchange_rates"


class RateCache(ABC):
    """String key/value cache partitioned into namespaces."""

    @abstractmethod
    def get(self, namespace: str, key: str) -> str | None:
        """Return the cached value or ``None`` on a miss."""

    @abstractmethod
    def set(self, namespace: str, key: str, value: str, ttl: int | None = None) -> None:
        """Store ``value``; ``ttl`` is in seconds, ``None`` uses the cache default."""

    @abstractmethod
    def evict_all(self, namespace: str) -> int:
        """Drop every entry of ``namespace`` and return how many were removed."""


__all__ = ["EXCHANGE_RATES_NAMESPACE", "RateCache"]
