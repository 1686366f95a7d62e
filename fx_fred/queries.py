"""Cache-aside read access to stored exchange rates."""

from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from typing import Any

from fx_fred.cache.base import EXCHANGE_RATES_NAMESPACE, RateCache
from fx_fred.db.base_backend import BackendStrategy
from fx_fred.exceptions import CacheError
from fx_fred.ingestion.models import BASE_CURRENCY, ExchangeRateRecord
from fx_fred.utils.date_range import validate_window
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)


def _record_to_json(record: ExchangeRateRecord) -> dict[str, Any]:
    # Rates travel as strings so the cached value keeps the stored precision.
    return {
        "rate_date": record.rate_date.isoformat(),
        "base_currency": record.base_currency,
        "target_currency": record.target_currency,
        "rate": str(record.rate),
    }


def _record_from_json(payload: dict[str, Any]) -> ExchangeRateRecord:
    return ExchangeRateRecord(
        rate_date=date.fromisoformat(payload["rate_date"]),
        target_currency=payload["target_currency"],
        rate=Decimal(payload["rate"]),
        base_currency=payload.get("base_currency", BASE_CURRENCY),
    )


class ExchangeRateQueryService:
    """Serve rate lookups from the cache, falling back to the backend.

    Entries live in the ``exchange_rates`` namespace, which every successful
    import evicts. A cache that cannot be reached degrades to direct backend
    reads.
    """

    def __init__(self, backend: BackendStrategy, cache: RateCache, *, ttl: int | None = None) -> None:
        self.backend = backend
        self.cache = cache
        self.ttl = ttl

    def get_rates(
        self,
        target_currency: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[ExchangeRateRecord]:
        """Return rates for ``USD/target_currency`` between ``start`` and ``end`` inclusive."""

        validate_window(start, end)
        target = target_currency.upper()
        key = f"range:{target}:{start.isoformat() if start else '*'}:{end.isoformat() if end else '*'}"
        cached = self._read(key)
        if cached is not None:
            return [_record_from_json(item) for item in cached]
        records = self.backend.fetch_range(target, start, end)
        self._write(key, [_record_to_json(record) for record in records])
        return records

    def get_latest_rate(self, target_currency: str) -> ExchangeRateRecord | None:
        """Return the most recent stored rate, or ``None`` when the pair has no data."""

        target = target_currency.upper()
        key = f"latest:{target}"
        cached = self._read(key)
        if cached is not None:
            return _record_from_json(cached) if cached else None
        latest_date = self.backend.find_most_recent_rate_date(BASE_CURRENCY, target)
        record = None
        if latest_date is not None:
            matches = self.backend.fetch_range(target, latest_date, latest_date)
            record = matches[-1] if matches else None
        self._write(key, _record_to_json(record) if record else {})
        return record

    def _read(self, key: str) -> Any:
        try:
            raw = self.cache.get(EXCHANGE_RATES_NAMESPACE, key)
        except CacheError as exc:
            LOGGER.warning("Exchange-rate cache read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def _write(self, key: str, value: Any) -> None:
        try:
            self.cache.set(EXCHANGE_RATES_NAMESPACE, key, json.dumps(value), self.ttl)
        except CacheError as exc:
            LOGGER.warning("Exchange-rate cache write failed for %s: %s", key, exc)


__all__ = ["ExchangeRateQueryService"]
