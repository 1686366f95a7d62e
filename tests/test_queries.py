"""Cache-aside rate queries."""

from __future__ import annotations

import json
import logging
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from fx_fred.cache import EXCHANGE_RATES_NAMESPACE, InMemoryRateCache
from fx_fred.db.relational_backend import RelationalBackend
from fx_fred.exceptions import CacheError
from fx_fred.imports.orchestrator import ExchangeRateImporter
from fx_fred.ingestion.models import CurrencySeries, ExchangeRateRecord
from fx_fred.queries import ExchangeRateQueryService


class _CountingBackend:
    """Delegates to a real backend while counting range reads."""

    def __init__(self, backend: RelationalBackend) -> None:
        self._backend = backend
        self.range_reads = 0

    def fetch_range(self, *args, **kwargs):
        self.range_reads += 1
        return self._backend.fetch_range(*args, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._backend, name)


class _DownCache(InMemoryRateCache):
    def get(self, namespace: str, key: str) -> str | None:
        raise CacheError("redis is down")

    def set(self, namespace: str, key: str, value: str, ttl: int | None = None) -> None:
        raise CacheError("redis is down")


class _StaticProvider:
    def __init__(self, rates: dict[date, Decimal]) -> None:
        self.rates = rates

    def fetch(self, series_code: str, start_date: date | None = None) -> dict[date, Decimal]:
        return {day: rate for day, rate in self.rates.items() if start_date is None or day >= start_date}


@pytest.fixture()
def backend(tmp_path: Path) -> RelationalBackend:
    backend = RelationalBackend(f"sqlite:///{tmp_path / 'queries.db'}")
    backend.ensure_schema()
    with backend.transaction() as store:
        store.save_all_rates(
            [
                ExchangeRateRecord(rate_date=date(2024, 1, 1), target_currency="EUR", rate=Decimal("0.8500")),
                ExchangeRateRecord(rate_date=date(2024, 1, 2), target_currency="EUR", rate=Decimal("0.8512345678")),
                ExchangeRateRecord(rate_date=date(2024, 1, 3), target_currency="EUR", rate=Decimal("0.8600")),
            ]
        )
    yield backend
    backend.close()


def test_range_is_served_from_cache_after_first_read(backend: RelationalBackend) -> None:
    counting = _CountingBackend(backend)
    cache = InMemoryRateCache()
    service = ExchangeRateQueryService(counting, cache)  # type: ignore[arg-type]

    first = service.get_rates("eur", date(2024, 1, 2), date(2024, 1, 3))
    second = service.get_rates("EUR", date(2024, 1, 2), date(2024, 1, 3))

    assert counting.range_reads == 1
    assert [record.rate_date for record in second] == [date(2024, 1, 2), date(2024, 1, 3)]
    assert [record.rate for record in second] == [record.rate for record in first]
    assert second[0].rate == Decimal("0.8512345678")
    assert cache.get(EXCHANGE_RATES_NAMESPACE, "range:EUR:2024-01-02:2024-01-03") is not None


def test_open_ended_windows_use_their_own_key(backend: RelationalBackend) -> None:
    cache = InMemoryRateCache()
    service = ExchangeRateQueryService(backend, cache)

    assert len(service.get_rates("EUR")) == 3
    assert len(service.get_rates("EUR", start=date(2024, 1, 3))) == 1

    cached = json.loads(cache.get(EXCHANGE_RATES_NAMESPACE, "range:EUR:*:*") or "[]")
    assert [item["rate_date"] for item in cached] == ["2024-01-01", "2024-01-02", "2024-01-03"]
    assert cache.get(EXCHANGE_RATES_NAMESPACE, "range:EUR:2024-01-03:*") is not None


def test_inverted_window_is_rejected(backend: RelationalBackend) -> None:
    service = ExchangeRateQueryService(backend, InMemoryRateCache())
    with pytest.raises(ValueError):
        service.get_rates("EUR", date(2024, 1, 3), date(2024, 1, 1))


def test_latest_rate_and_missing_pair(backend: RelationalBackend) -> None:
    counting = _CountingBackend(backend)
    service = ExchangeRateQueryService(counting, InMemoryRateCache())  # type: ignore[arg-type]

    latest = service.get_latest_rate("eur")
    assert latest is not None
    assert (latest.rate_date, latest.rate) == (date(2024, 1, 3), Decimal("0.8600"))

    assert service.get_latest_rate("JPY") is None
    reads = counting.range_reads
    assert service.get_latest_rate("JPY") is None
    cached = service.get_latest_rate("EUR")
    assert cached is not None and (cached.rate_date, cached.rate) == (latest.rate_date, latest.rate)
    assert counting.range_reads == reads


def test_import_evicts_cached_queries(backend: RelationalBackend) -> None:
    cache = InMemoryRateCache()
    service = ExchangeRateQueryService(backend, cache)
    backend.save_series(CurrencySeries(id=None, currency_code="EUR", provider_series_id="DEXUSEU"))
    assert service.get_latest_rate("EUR").rate_date == date(2024, 1, 3)  # type: ignore[union-attr]

    provider = _StaticProvider({date(2024, 1, 4): Decimal("0.8700")})
    ExchangeRateImporter(backend, provider, cache=cache).run_import()

    latest = service.get_latest_rate("EUR")
    assert latest is not None and latest.rate_date == date(2024, 1, 4)


def test_unreachable_cache_falls_back_to_backend(
    backend: RelationalBackend, caplog: pytest.LogCaptureFixture
) -> None:
    counting = _CountingBackend(backend)
    service = ExchangeRateQueryService(counting, _DownCache())  # type: ignore[arg-type]

    with caplog.at_level(logging.WARNING, logger="fx_fred.queries"):
        assert len(service.get_rates("EUR")) == 3
        assert len(service.get_rates("EUR")) == 3

    assert counting.range_reads == 2
    assert "Exchange-rate cache read failed" in caplog.text
    assert "Exchange-rate cache write failed" in caplog.text
