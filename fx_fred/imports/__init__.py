"""Import orchestration and reconciliation."""

from fx_fred.imports.orchestrator import ExchangeRateImporter
from fx_fred.imports.reconciliation import ReconciliationEngine

__all__ = ["ExchangeRateImporter", "ReconciliationEngine"]
