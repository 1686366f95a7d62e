"""Consumer for "currency series created" notifications.

Registering a series publishes a message; consuming it imports the new
series' full history right away instead of waiting for the daily run. The
transport is left to the caller: anything that can hand over a decoded
payload (or a :class:`CurrencyCreatedMessage`) can drive the consumer.
"""

from __future__ import annotations

from typing import Any, Mapping

from fx_fred.imports.orchestrator import ExchangeRateImporter
from fx_fred.ingestion.models import CurrencyCreatedMessage, ImportResult
from fx_fred.utils.context import ImportContext
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)

CURRENCY_CREATED_TRIGGER = "currency_created"


class ExchangeRateImportConsumer:
    def __init__(self, importer: ExchangeRateImporter) -> None:
        self.importer = importer

    def __call__(self, message: CurrencyCreatedMessage | Mapping[str, Any]) -> ImportResult:
        if not isinstance(message, CurrencyCreatedMessage):
            message = CurrencyCreatedMessage.from_payload(message)
        context = ImportContext.create(CURRENCY_CREATED_TRIGGER, message.correlation_id)
        LOGGER.info(
            "Received currency created event for %s (series %s) (%s)",
            message.currency_code or "?",
            message.currency_series_id,
            context,
        )
        try:
            result = self.importer.import_series(message.currency_series_id, context)
        except Exception:
            LOGGER.exception(
                "Import for new currency series %s failed (%s)", message.currency_series_id, context
            )
            raise
        LOGGER.info(
            "Imported new currency series %s: new=%s updated=%s skipped=%s (%s)",
            message.currency_series_id,
            result.new_records,
            result.updated_records,
            result.skipped_records,
            context,
        )
        return result


__all__ = ["CURRENCY_CREATED_TRIGGER", "ExchangeRateImportConsumer"]
