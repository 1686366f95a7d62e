"""APScheduler wiring for the daily import and its delayed retries."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from fx_fred.scheduling.coordinator import ImportRetryCoordinator, ImportRunState
from fx_fred.utils.context import ImportContext
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)

DAILY_IMPORT_JOB_ID = "exchange-rate-import"
RETRY_JOB_PREFIX = "exchange-rate-import-retry-"


class ApschedulerTaskScheduler:
    """Run follow-up attempts as one-shot ``date`` jobs on the scheduler's executor."""

    def __init__(self, scheduler: BaseScheduler) -> None:
        self.scheduler = scheduler

    def schedule(self, func: Callable[[], object], delay: timedelta) -> None:
        run_date = datetime.now(timezone.utc) + delay
        job = self.scheduler.add_job(
            func,
            "date",
            run_date=run_date,
            id=f"{RETRY_JOB_PREFIX}{uuid.uuid4().hex}",
            misfire_grace_time=None,
        )
        LOGGER.debug("Scheduled job %s at %s", job.id, run_date)


class DailyImportScheduler:
    """Trigger the coordinator once a day at a fixed UTC time.

    The scheduler given here should be the same one backing the coordinator's
    :class:`ApschedulerTaskScheduler`, so daily runs and retries share one
    executor pool and one lifecycle.
    """

    def __init__(
        self,
        coordinator: ImportRetryCoordinator,
        scheduler: BaseScheduler | None = None,
        *,
        hour: int = 23,
        minute: int = 0,
    ) -> None:
        self.coordinator = coordinator
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        self.hour = hour
        self.minute = minute
        self.scheduler.add_job(
            self._run_scheduled,
            CronTrigger(hour=hour, minute=minute, timezone=timezone.utc),
            id=DAILY_IMPORT_JOB_ID,
            name="Daily exchange-rate import",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )

    def _run_scheduled(self) -> ImportRunState:
        return self.coordinator.run(ImportContext.create("scheduled"))

    def trigger_now(self) -> ImportRunState:
        """Run the coordinator immediately in the calling thread."""

        return self.coordinator.run(ImportContext.create("manual"))

    def start(self) -> None:
        LOGGER.info("Daily exchange-rate import scheduled at %02d:%02d UTC", self.hour, self.minute)
        self.scheduler.start()

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)


__all__ = [
    "ApschedulerTaskScheduler",
    "DAILY_IMPORT_JOB_ID",
    "DailyImportScheduler",
    "RETRY_JOB_PREFIX",
]
