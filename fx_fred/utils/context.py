"""Explicit import context threaded through every call of an import run."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace

from fx_fred.ingestion.models import CurrencySeries


def new_correlation_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class ImportContext:
    """Identifies one import run for logs and metric tags.

    The context is passed as a parameter instead of living in thread-local
    logging state, so follow-up attempts scheduled on other threads keep the
    same correlation id.
    """

    correlation_id: str
    trigger: str = "manual"
    attempt: int | None = None
    series_id: int | None = None
    currency_code: str | None = None

    @classmethod
    def create(cls, trigger: str = "manual", correlation_id: str | None = None) -> "ImportContext":
        return cls(correlation_id=correlation_id or new_correlation_id(), trigger=trigger)

    def for_attempt(self, attempt: int) -> "ImportContext":
        return replace(self, attempt=attempt)

    def for_series(self, series: CurrencySeries) -> "ImportContext":
        return replace(self, series_id=series.id, currency_code=series.currency_code)

    def tags(self) -> dict[str, str]:
        """Return the non-empty fields as string tags."""

        tags = {"correlation_id": self.correlation_id, "trigger": self.trigger}
        if self.attempt is not None:
            tags["attempt"] = str(self.attempt)
        if self.series_id is not None:
            tags["series_id"] = str(self.series_id)
        if self.currency_code is not None:
            tags["currency"] = self.currency_code
        return tags

    def __str__(self) -> str:
        return " ".join(f"{key}={value}" for key, value in self.tags().items())


__all__ = ["ImportContext", "new_correlation_id"]
