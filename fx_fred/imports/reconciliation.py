"""Classify freshly fetched observations against one series' stored history."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Mapping

from fx_fred.db.base_backend import RateStore
from fx_fred.ingestion.models import BASE_CURRENCY, ExchangeRateRecord, ImportResult, normalise_rate
from fx_fred.utils.context import ImportContext
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)


class ReconciliationEngine:
    """Turn a ``{date: rate}`` mapping into inserts, updates and skips.

    The first import of a currency pair is written with a single bulk insert
    and no per-date lookups. Later imports look up every fetched date: a
    missing row is inserted, an equal rate (compared as decimals, so
    ``0.85 == 0.850``) is skipped and a different rate is corrected in place.
    Fetched rates are first rounded to the stored scale, so a value with more
    decimals than storage keeps is not reported as a correction on every run.
    The earliest/latest dates of the result describe the fetched set only.
    Writes go through ``store``; committing is the caller's business.
    """

    def __init__(self, base_currency: str = BASE_CURRENCY) -> None:
        self.base_currency = base_currency

    def reconcile(
        self,
        store: RateStore,
        target_currency: str,
        fetched: Mapping[date, Decimal],
        context: ImportContext,
    ) -> ImportResult:
        if not fetched:
            return ImportResult()

        fetched = {day: normalise_rate(rate) for day, rate in fetched.items()}
        result = ImportResult(earliest_date=min(fetched), latest_date=max(fetched))
        if not store.has_rates(self.base_currency, target_currency):
            LOGGER.info(
                "Initial import of %s observations for %s/%s (%s)",
                len(fetched),
                self.base_currency,
                target_currency,
                context,
            )
            store.save_all_rates(
                [self._record(target_currency, day, rate) for day, rate in fetched.items()]
            )
            result.new_records = len(fetched)
            return result

        for day, rate in fetched.items():
            existing = store.find_rate(self.base_currency, target_currency, day)
            if existing is None:
                store.save_rate(self._record(target_currency, day, rate))
                result.new_records += 1
            elif existing == rate:
                result.skipped_records += 1
            else:
                LOGGER.warning(
                    "Rate correction for %s/%s on %s: %s -> %s (%s)",
                    self.base_currency,
                    target_currency,
                    day,
                    existing,
                    rate,
                    context,
                )
                store.save_rate(self._record(target_currency, day, rate))
                result.updated_records += 1
        return result

    def _record(self, target_currency: str, day: date, rate: Decimal) -> ExchangeRateRecord:
        return ExchangeRateRecord(
            rate_date=day,
            target_currency=target_currency,
            rate=rate,
            base_currency=self.base_currency,
        )


__all__ = ["ReconciliationEngine"]
