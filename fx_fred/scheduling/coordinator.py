"""Run the daily import under a distributed lock with bounded retries.

One coordinator exists per process. A run first tries to take the shared
import lock; only the instance that gets it imports, the others return
immediately. Failed attempts are retried with exponential backoff through a
task scheduler, never by sleeping in the triggering thread, and the lock stays
held until the run reaches a terminal state.
"""

from __future__ import annotations

import time
from datetime import timedelta
from enum import Enum
from functools import partial
from typing import Callable, Protocol

from fx_fred.config import ImportSettings
from fx_fred.db.locks import HeldLock, LockProvider
from fx_fred.exceptions import ProviderRejected
from fx_fred.imports.orchestrator import ExchangeRateImporter
from fx_fred.ingestion.models import ImportResult
from fx_fred.monitoring.metrics import ImportMetrics
from fx_fred.utils.context import ImportContext
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)


class ImportRunState(str, Enum):
    IDLE = "idle"
    LOCK_ACQUIRING = "lock_acquiring"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {ImportRunState.SUCCESS, ImportRunState.EXHAUSTED, ImportRunState.FAILED}


class TaskScheduler(Protocol):
    """Runs a callable once after a delay on some worker thread."""

    def schedule(self, func: Callable[[], object], delay: timedelta) -> None:
        ...


class ImportRetryCoordinator:
    """State machine driving one locked import run and its retries."""

    def __init__(
        self,
        importer: ExchangeRateImporter,
        lock_provider: LockProvider,
        metrics: ImportMetrics,
        task_scheduler: TaskScheduler,
        settings: ImportSettings | None = None,
        *,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.importer = importer
        self.lock_provider = lock_provider
        self.metrics = metrics
        self.task_scheduler = task_scheduler
        self.settings = settings or ImportSettings()
        self._clock = clock
        self.state = ImportRunState.IDLE
        self.last_result: ImportResult | None = None

    def retry_delay(self, attempt: int) -> timedelta:
        """Backoff before the attempt following ``attempt``."""

        return self.settings.retry_base_delta * (2 ** (attempt - 1))

    def run(self, context: ImportContext | None = None) -> ImportRunState:
        """Start a run if the import lock is free.

        Returns ``IDLE`` when another instance holds the lock. Otherwise the
        state reached once the first attempt (and any follow-up the scheduler
        ran synchronously) returned: ``RETRYING`` while a follow-up is pending.
        """

        context = context or ImportContext.create("scheduled")
        self.state = ImportRunState.LOCK_ACQUIRING
        lock = self.lock_provider.try_acquire(
            self.settings.lock_name,
            self.settings.lock_min_hold_delta,
            self.settings.lock_max_hold_delta,
        )
        if lock is None:
            LOGGER.info(
                "Import lock %s is held by another instance; skipping this run (%s)",
                self.settings.lock_name,
                context,
            )
            self.state = ImportRunState.IDLE
            return self.state
        return self._run_attempt(1, lock, context)

    def _run_attempt(self, attempt: int, lock: HeldLock, context: ImportContext) -> ImportRunState:
        attempt_context = context.for_attempt(attempt)
        self.state = ImportRunState.RUNNING
        LOGGER.info(
            "Starting exchange-rate import attempt %s/%s (%s)",
            attempt,
            self.settings.max_attempts,
            attempt_context,
        )
        started = self._clock()
        try:
            result = self.importer.run_import(attempt_context)
        except Exception as exc:
            self.metrics.record_attempt(success=False, attempt=attempt, seconds=self._clock() - started)
            return self._handle_failure(attempt, lock, context, exc)

        self.metrics.record_attempt(success=True, attempt=attempt, seconds=self._clock() - started)
        self.metrics.record_result(result)
        self.last_result = result
        LOGGER.info(
            "Exchange-rate import succeeded on attempt %s: new=%s updated=%s skipped=%s (%s)",
            attempt,
            result.new_records,
            result.updated_records,
            result.skipped_records,
            attempt_context,
        )
        return self._finish(ImportRunState.SUCCESS, lock)

    def _handle_failure(
        self, attempt: int, lock: HeldLock, context: ImportContext, exc: Exception
    ) -> ImportRunState:
        attempt_context = context.for_attempt(attempt)
        if isinstance(exc, ProviderRejected):
            LOGGER.error("Provider rejected import attempt %s: %s (%s)", attempt, exc, attempt_context)
            if self.settings.fail_fast_on_rejection:
                LOGGER.error("Not retrying a rejected import (%s)", attempt_context)
                return self._finish(ImportRunState.FAILED, lock)
        else:
            LOGGER.warning(
                "Import attempt %s/%s failed: %s (%s)",
                attempt,
                self.settings.max_attempts,
                exc,
                attempt_context,
                exc_info=exc,
            )

        if attempt >= self.settings.max_attempts:
            LOGGER.error(
                "Exchange-rate import failed after %s attempts; waiting for the next schedule (%s)",
                attempt,
                attempt_context,
            )
            self.metrics.record_exhausted()
            return self._finish(ImportRunState.EXHAUSTED, lock)

        next_attempt = attempt + 1
        delay = self.retry_delay(attempt)
        self.metrics.record_retry_scheduled(next_attempt)
        self.state = ImportRunState.RETRYING
        LOGGER.info(
            "Retrying exchange-rate import in %s (attempt %s/%s) (%s)",
            delay,
            next_attempt,
            self.settings.max_attempts,
            attempt_context,
        )
        try:
            self.task_scheduler.schedule(partial(self._run_attempt, next_attempt, lock, context), delay)
        except Exception:
            LOGGER.exception("Could not schedule import attempt %s (%s)", next_attempt, attempt_context)
            self._finish(ImportRunState.FAILED, lock)
            raise
        return self.state

    def _finish(self, state: ImportRunState, lock: HeldLock) -> ImportRunState:
        self.state = state
        self.lock_provider.release(lock)
        return state


__all__ = ["ImportRetryCoordinator", "ImportRunState", "TaskScheduler"]
