"""Abstractions for pluggable exchange-rate providers."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol


class ExchangeRateProvider(Protocol):
    """Contract for fetching raw date → rate observations for one series.

    ``start_date=None`` asks for the entire available history. An empty
    mapping means the provider has nothing after ``start_date``; failures are
    reported with the :class:`~fx_fred.exceptions.ProviderError` family.
    """

    def fetch(self, series_code: str, start_date: date | None = None) -> dict[date, Decimal]:
        ...  # pragma: no cover - protocol definition


__all__ = ["ExchangeRateProvider"]
