"""Distributed mutual exclusion for scheduled jobs, backed by shared storage.

A lock is one row per job name holding the identity of the current holder and
the instant the lock expires. Acquisition never blocks: a caller that finds an
unexpired row simply gets ``None`` back. Releasing keeps the row locked until
``locked_at + min_hold`` so overlapping schedules on other instances cannot
re-trigger the job right after it finished. A crashed holder is taken over
once ``lock_until`` (``locked_at + max_hold``) has passed.
"""

from __future__ import annotations

import os
import socket
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import insert, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from fx_fred.db.orm import ShedLockRow, utcnow_naive
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)


def lock_holder_identity() -> str:
    """Return ``hostname:pid:thread`` for the calling thread."""

    return f"{socket.gethostname()}:{os.getpid()}:{threading.current_thread().name}"


@dataclass(frozen=True, slots=True)
class HeldLock:
    """A lock currently held by this process (timestamps are naive UTC)."""

    name: str
    locked_by: str
    locked_at: datetime
    lock_until: datetime
    min_hold: timedelta

    @property
    def earliest_release(self) -> datetime:
        return self.locked_at + self.min_hold


class LockProvider(ABC):
    """Non-blocking named lock shared by every instance of the service."""

    @abstractmethod
    def try_acquire(self, name: str, min_hold: timedelta, max_hold: timedelta) -> HeldLock | None:
        """Take the lock or return ``None`` when another holder owns it."""

    @abstractmethod
    def release(self, lock: HeldLock) -> None:
        """Give the lock back, honouring its minimum hold duration."""


def validate_hold_durations(min_hold: timedelta, max_hold: timedelta) -> None:
    if max_hold <= timedelta(0):
        raise ValueError("max_hold must be positive")
    if min_hold < timedelta(0) or min_hold > max_hold:
        raise ValueError("min_hold must be between zero and max_hold")


class RelationalLockProvider(LockProvider):
    """Lock provider storing one ``shedlock`` row per job name."""

    def __init__(
        self,
        engine: Engine,
        *,
        identity: str | None = None,
        clock: Callable[[], datetime] = utcnow_naive,
    ) -> None:
        self._engine = engine
        self._identity = identity
        self._clock = clock
        self._table = ShedLockRow.__table__

    def try_acquire(self, name: str, min_hold: timedelta, max_hold: timedelta) -> HeldLock | None:
        validate_hold_durations(min_hold, max_hold)
        now = self._clock()
        holder = self._identity or lock_holder_identity()
        values = {"lock_until": now + max_hold, "locked_at": now, "locked_by": holder}
        try:
            with self._engine.begin() as connection:
                connection.execute(insert(self._table).values(name=name, **values))
        except IntegrityError:
            # The row exists; take it over only if the previous holder's lock expired.
            with self._engine.begin() as connection:
                result = connection.execute(
                    update(self._table)
                    .where(self._table.c.name == name)
                    .where(self._table.c.lock_until <= now)
                    .values(**values)
                )
            if result.rowcount != 1:
                LOGGER.debug("Lock %s is held by another instance", name)
                return None
        LOGGER.debug("Lock %s acquired by %s until %s", name, holder, values["lock_until"])
        return HeldLock(
            name=name,
            locked_by=holder,
            locked_at=now,
            lock_until=values["lock_until"],
            min_hold=min_hold,
        )

    def release(self, lock: HeldLock) -> None:
        unlock_at = max(lock.earliest_release, self._clock())
        with self._engine.begin() as connection:
            connection.execute(
                update(self._table)
                .where(self._table.c.name == lock.name)
                .where(self._table.c.locked_by == lock.locked_by)
                .values(lock_until=unlock_at)
            )
        LOGGER.debug("Lock %s released by %s (free from %s)", lock.name, lock.locked_by, unlock_at)


__all__ = [
    "HeldLock",
    "LockProvider",
    "RelationalLockProvider",
    "lock_holder_identity",
    "validate_hold_durations",
]
