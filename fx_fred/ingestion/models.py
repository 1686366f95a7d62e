"""Data models shared across ingestion, persistence and import modules."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping

# The base currency is always USD; the column is kept so the schema does not
# need to change if that ever stops being true.
BASE_CURRENCY = "USD"

MAX_PROVIDER_SERIES_ID_LENGTH = 50

# Stored rates keep ten decimal places; FRED publishes at most four.
RATE_SCALE = 10
_RATE_QUANTUM = Decimal(1).scaleb(-RATE_SCALE)

_CURRENCY_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalise_rate(rate: Decimal) -> Decimal:
    """Round ``rate`` to the scale every backend stores."""

    return Decimal(rate).quantize(_RATE_QUANTUM)


@dataclass(slots=True)
class CurrencySeries:
    """One supported currency and the provider series that feeds it."""

    id: int | None
    currency_code: str
    provider_series_id: str
    enabled: bool = True

    def validate(self) -> "CurrencySeries":
        """Raise ``ValueError`` when the series breaks a model invariant."""

        if not _CURRENCY_CODE_PATTERN.match(self.currency_code or ""):
            raise ValueError(
                f"currency_code must be a three-letter ISO 4217 code, got {self.currency_code!r}"
            )
        series_id = (self.provider_series_id or "").strip()
        if not series_id:
            raise ValueError("provider_series_id must not be empty")
        if len(series_id) > MAX_PROVIDER_SERIES_ID_LENGTH:
            raise ValueError(
                f"provider_series_id must not exceed {MAX_PROVIDER_SERIES_ID_LENGTH} characters"
            )
        self.provider_series_id = series_id
        return self


@dataclass(slots=True)
class ExchangeRateRecord:
    """A single stored observation for one (base, target, date) triple."""

    rate_date: date
    target_currency: str
    rate: Decimal
    base_currency: str = BASE_CURRENCY
    created_at: datetime | None = None


@dataclass(slots=True)
class ImportResult:
    """Counts produced by importing one series or a whole scheduled run."""

    new_records: int = 0
    updated_records: int = 0
    skipped_records: int = 0
    earliest_date: date | None = None
    latest_date: date | None = None
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def total_processed(self) -> int:
        """Return the number of observations looked at."""

        return self.new_records + self.updated_records + self.skipped_records

    @classmethod
    def combine(cls, results: Iterable["ImportResult"]) -> "ImportResult":
        """Aggregate per-series results, ignoring series that touched no dates."""

        total = cls()
        for result in results:
            total.new_records += result.new_records
            total.updated_records += result.updated_records
            total.skipped_records += result.skipped_records
            if result.earliest_date is not None and (
                total.earliest_date is None or result.earliest_date < total.earliest_date
            ):
                total.earliest_date = result.earliest_date
            if result.latest_date is not None and (
                total.latest_date is None or result.latest_date > total.latest_date
            ):
                total.latest_date = result.latest_date
        return total


@dataclass(slots=True)
class CurrencyCreatedMessage:
    """Notification published when a new currency series is registered."""

    currency_series_id: int
    currency_code: str
    correlation_id: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CurrencyCreatedMessage":
        """Build a message from a decoded bus payload (camelCase or snake_case)."""

        series_id = payload.get("currencySeriesId", payload.get("currency_series_id"))
        if series_id is None:
            raise ValueError("currency created message is missing the currency series id")
        return cls(
            currency_series_id=int(series_id),
            currency_code=str(payload.get("currencyCode", payload.get("currency_code", ""))),
            correlation_id=payload.get("correlationId", payload.get("correlation_id")),
        )


__all__ = [
    "BASE_CURRENCY",
    "CurrencyCreatedMessage",
    "CurrencySeries",
    "ExchangeRateRecord",
    "ImportResult",
    "MAX_PROVIDER_SERIES_ID_LENGTH",
    "RATE_SCALE",
    "normalise_rate",
]
