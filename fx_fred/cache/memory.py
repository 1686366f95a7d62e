"""Process-local cache used when no Redis URL is configured."""

from __future__ import annotations

import threading
import time
from typing import Callable

from fx_fred.cache.base import RateCache


class InMemoryRateCache(RateCache):
    """Dictionary-backed cache with per-entry expiry.

    Only suitable for a single instance: evictions are not visible to other
    processes.
    """

    def __init__(self, default_ttl: int | None = 3600, *, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._store: dict[tuple[str, str], tuple[str, float | None]] = {}

    def get(self, namespace: str, key: str) -> str | None:
        with self._lock:
            entry = self._store.get((namespace, key))
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._store[(namespace, key)]
                return None
            return value

    def set(self, namespace: str, key: str, value: str, ttl: int | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._store[(namespace, key)] = (value, expires_at)

    def evict_all(self, namespace: str) -> int:
        with self._lock:
            doomed = [entry for entry in self._store if entry[0] == namespace]
            for entry in doomed:
                del self._store[entry]
        return len(doomed)


__all__ = ["InMemoryRateCache"]
