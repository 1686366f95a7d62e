"""Backend strategy interfaces for fx_fred."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Sequence

from fx_fred.ingestion.models import BASE_CURRENCY, CurrencySeries, ExchangeRateRecord

if TYPE_CHECKING:  # pragma: no cover - import only for static analyzers
    from fx_fred.db.locks import LockProvider


class RateStore(ABC):
    """Exchange-rate reads and writes bound to a single unit of work."""

    @abstractmethod
    def has_rates(self, base_currency: str, target_currency: str) -> bool:
        """Return True when any row exists for the currency pair."""

    @abstractmethod
    def find_rate(self, base_currency: str, target_currency: str, rate_date: date) -> Decimal | None:
        """Return the stored rate for one date, or ``None``."""

    @abstractmethod
    def save_rate(self, record: ExchangeRateRecord) -> None:
        """Insert ``record`` or correct the rate of the existing row in place."""

    @abstractmethod
    def save_all_rates(self, records: Sequence[ExchangeRateRecord]) -> None:
        """Bulk insert rows that are known not to exist yet."""


class BackendStrategy(ABC):
    """Common interface implemented by every database backend."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create required tables/collections and verify connectivity."""

    @abstractmethod
    def find_enabled_series(self) -> list[CurrencySeries]:
        """Return every series flagged for import, ordered by currency code."""

    @abstractmethod
    def find_series(self, series_id: int) -> CurrencySeries | None:
        """Return one series by identifier."""

    @abstractmethod
    def find_series_by_code(self, currency_code: str) -> CurrencySeries | None:
        """Return one series by ISO currency code."""

    @abstractmethod
    def list_series(self) -> list[CurrencySeries]:
        """Return all series, enabled or not."""

    @abstractmethod
    def save_series(self, series: CurrencySeries) -> CurrencySeries:
        """Insert (``id is None``) or update a series and return the stored copy."""

    @abstractmethod
    def find_most_recent_rate_date(self, base_currency: str, target_currency: str) -> date | None:
        """Return the latest stored observation date for the pair."""

    @abstractmethod
    def fetch_range(
        self,
        target_currency: str,
        start: date | None = None,
        end: date | None = None,
        *,
        base_currency: str = BASE_CURRENCY,
    ) -> list[ExchangeRateRecord]:
        """Return stored rates for the pair constrained by the provided dates."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[RateStore]:
        """Open a unit of work; commit on normal exit, roll back on error."""

    @abstractmethod
    def create_lock_provider(self) -> "LockProvider":
        """Return a distributed lock provider backed by the same storage."""

    def close(self) -> None:  # pragma: no cover - optional cleanup hook
        """Backends may override to release connections/resources."""


__all__ = ["BackendStrategy", "RateStore"]
