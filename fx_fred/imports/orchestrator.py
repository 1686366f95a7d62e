"""Import every enabled currency series from the provider into storage."""

from __future__ import annotations

from fx_fred.cache.base import EXCHANGE_RATES_NAMESPACE, RateCache
from fx_fred.db.base_backend import BackendStrategy
from fx_fred.exceptions import CacheError, FxFredError, ProviderRejected, SeriesNotFound
from fx_fred.imports.reconciliation import ReconciliationEngine
from fx_fred.ingestion.models import BASE_CURRENCY, CurrencySeries, ImportResult
from fx_fred.ingestion.strategy import ExchangeRateProvider
from fx_fred.utils.context import ImportContext
from fx_fred.utils.date_range import next_import_start
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)


class ExchangeRateImporter:
    """Fetch, reconcile and persist rates one series at a time.

    Series are processed sequentially. Each series is written in its own
    transaction, and the first failing series aborts the run: the error
    propagates and no partial result is returned. The cached query namespace
    is cleared after every successful run.
    """

    def __init__(
        self,
        backend: BackendStrategy,
        provider: ExchangeRateProvider,
        *,
        engine: ReconciliationEngine | None = None,
        cache: RateCache | None = None,
        base_currency: str = BASE_CURRENCY,
    ) -> None:
        self.backend = backend
        self.provider = provider
        self.engine = engine or ReconciliationEngine(base_currency)
        self.cache = cache
        self.base_currency = base_currency

    def run_import(self, context: ImportContext | None = None) -> ImportResult:
        """Import the latest observations of every enabled series."""

        context = context or ImportContext.create()
        enabled = self.backend.find_enabled_series()
        if not enabled:
            LOGGER.warning("No enabled currency series configured; nothing to import (%s)", context)
            return ImportResult()

        LOGGER.info("Importing exchange rates for %s enabled series (%s)", len(enabled), context)
        results = [self._import_series(series, context.for_series(series)) for series in enabled]
        total = ImportResult.combine(results)
        self._evict_cache(context)
        LOGGER.info(
            "Import finished: new=%s updated=%s skipped=%s earliest=%s latest=%s (%s)",
            total.new_records,
            total.updated_records,
            total.skipped_records,
            total.earliest_date,
            total.latest_date,
            context,
        )
        return total

    def import_series(self, series_id: int, context: ImportContext | None = None) -> ImportResult:
        """Import a single series, e.g. right after it has been registered."""

        context = context or ImportContext.create()
        series = self.backend.find_series(series_id)
        if series is None:
            raise SeriesNotFound(f"Currency series {series_id} does not exist")
        if not series.enabled:
            LOGGER.info(
                "Series %s is disabled; importing it because it was requested explicitly",
                series.currency_code,
            )
        result = self._import_series(series, context.for_series(series))
        self._evict_cache(context)
        return result

    def _import_series(self, series: CurrencySeries, context: ImportContext) -> ImportResult:
        try:
            last_stored = self.backend.find_most_recent_rate_date(
                self.base_currency, series.currency_code
            )
            start_date = next_import_start(last_stored)
            fetched = self.provider.fetch(series.provider_series_id, start_date)
            if not fetched:
                LOGGER.info(
                    "No new observations for %s after %s (%s)", series.currency_code, last_stored, context
                )
                return ImportResult()
            with self.backend.transaction() as store:
                result = self.engine.reconcile(store, series.currency_code, fetched, context)
        except ProviderRejected as exc:
            LOGGER.error(
                "Provider rejected series %s for %s: %s (%s)",
                series.provider_series_id,
                series.currency_code,
                exc,
                context,
            )
            raise
        except FxFredError as exc:
            LOGGER.warning("Import of %s failed: %s (%s)", series.currency_code, exc, context)
            raise

        LOGGER.info(
            "Imported %s: new=%s updated=%s skipped=%s (%s)",
            series.currency_code,
            result.new_records,
            result.updated_records,
            result.skipped_records,
            context,
        )
        return result

    def _evict_cache(self, context: ImportContext) -> None:
        if self.cache is None:
            return
        try:
            self.cache.evict_all(EXCHANGE_RATES_NAMESPACE)
        except CacheError as exc:
            LOGGER.warning(
                "Could not evict cached exchange rates; stale entries remain until they expire: %s (%s)",
                exc,
                context,
            )


__all__ = ["ExchangeRateImporter"]
