"""Exception hierarchy shared across the fx_fred package."""

from __future__ import annotations


class FxFredError(Exception):
    """Base class for every error raised by fx_fred."""


class ProviderError(FxFredError):
    """The exchange-rate provider could not deliver observations."""

    def __init__(self, message: str, *, series_code: str | None = None) -> None:
        super().__init__(message)
        self.series_code = series_code


class ProviderUnavailable(ProviderError):
    """Transient failure: network error, timeout, throttling or HTTP 5xx."""


class ProviderRejected(ProviderError):
    """Permanent failure: unknown series id, bad API key or another HTTP 4xx."""

    def __init__(
        self,
        message: str,
        *,
        series_code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, series_code=series_code)
        self.status_code = status_code


class ProviderMalformedResponse(ProviderError):
    """The provider answered but the payload could not be parsed."""


class ReconciliationFailure(FxFredError):
    """Persisting a series' reconciled rates failed and was rolled back."""


class SeriesNotFound(FxFredError):
    """No currency series exists for the requested identifier."""


class DuplicateSeries(FxFredError):
    """A currency series with the same currency code already exists."""


class CacheError(FxFredError):
    """The response cache could not be read, written or evicted."""


__all__ = [
    "CacheError",
    "DuplicateSeries",
    "FxFredError",
    "ProviderError",
    "ProviderMalformedResponse",
    "ProviderRejected",
    "ProviderUnavailable",
    "ReconciliationFailure",
    "SeriesNotFound",
]
