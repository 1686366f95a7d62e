"""Event consumers."""

from fx_fred.messaging.consumer import ExchangeRateImportConsumer

__all__ = ["ExchangeRateImportConsumer"]
