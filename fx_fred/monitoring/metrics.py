"""Prometheus metrics emitted by the import coordinator."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from fx_fred.ingestion.models import ImportResult

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


class ImportMetrics:
    """Counters and timers describing scheduled import attempts."""

    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.executions = Counter(
            "exchange_rate_import_executions",
            "Import attempts grouped by outcome and attempt number.",
            ("status", "attempt"),
            registry=self.registry,
        )
        self.duration_seconds = Histogram(
            "exchange_rate_import_duration_seconds",
            "Wall-clock duration of import attempts.",
            ("status", "attempt"),
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf")),
            registry=self.registry,
        )
        self.retry_scheduled = Counter(
            "exchange_rate_import_retry_scheduled",
            "Follow-up attempts scheduled after a failed import, by attempt number.",
            ("attempt",),
            registry=self.registry,
        )
        self.exhausted = Counter(
            "exchange_rate_import_exhausted",
            "Import runs that failed on every allowed attempt.",
            registry=self.registry,
        )
        self.records = Counter(
            "exchange_rate_import_records",
            "Exchange-rate rows handled by successful imports.",
            ("outcome",),
            registry=self.registry,
        )

    def record_attempt(self, *, success: bool, attempt: int, seconds: float) -> None:
        status = STATUS_SUCCESS if success else STATUS_FAILURE
        labels = {"status": status, "attempt": str(attempt)}
        self.executions.labels(**labels).inc()
        self.duration_seconds.labels(**labels).observe(seconds)

    def record_retry_scheduled(self, attempt: int) -> None:
        self.retry_scheduled.labels(attempt=str(attempt)).inc()

    def record_exhausted(self) -> None:
        self.exhausted.inc()

    def record_result(self, result: ImportResult) -> None:
        """Add the row counts of a successful import to the record counters."""

        self.records.labels(outcome="new").inc(result.new_records)
        self.records.labels(outcome="updated").inc(result.updated_records)
        self.records.labels(outcome="skipped").inc(result.skipped_records)

    def render(self) -> bytes:
        """Render metrics in Prometheus exposition format."""

        return generate_latest(self.registry)


__all__ = ["ImportMetrics", "STATUS_FAILURE", "STATUS_SUCCESS"]
