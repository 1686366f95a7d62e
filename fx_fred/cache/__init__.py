"""Response caching for exchange-rate queries."""

from __future__ import annotations

from fx_fred.cache.base import EXCHANGE_RATES_NAMESPACE, RateCache
from fx_fred.cache.memory import InMemoryRateCache
from fx_fred.cache.redis_cache import RedisRateCache

__all__ = ["EXCHANGE_RATES_NAMESPACE", "InMemoryRateCache", "RateCache", "RedisRateCache"]
