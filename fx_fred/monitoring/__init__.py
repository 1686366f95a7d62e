"""Operational metrics."""

from fx_fred.monitoring.metrics import ImportMetrics

__all__ = ["ImportMetrics"]
