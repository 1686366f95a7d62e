"""Locked, retried import runs and their timers."""

from fx_fred.scheduling.coordinator import ImportRetryCoordinator, ImportRunState, TaskScheduler
from fx_fred.scheduling.timer import ApschedulerTaskScheduler, DailyImportScheduler

__all__ = [
    "ApschedulerTaskScheduler",
    "DailyImportScheduler",
    "ImportRetryCoordinator",
    "ImportRunState",
    "TaskScheduler",
]
