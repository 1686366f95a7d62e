"""Date helpers used by the importer, the FRED client and the CLI."""

from __future__ import annotations

from datetime import date, datetime, timedelta


def parse_date(value: str | date) -> date:
    """Parse a date string in ISO format to :class:`date`."""

    if isinstance(value, date):
        return value
    return datetime.strptime(value, "%Y-%m-%d").date()


def next_import_start(last_stored: date | None) -> date | None:
    """Return the first date to request after ``last_stored``.

    ``None`` means nothing is stored yet and the whole history is wanted.
    """

    if last_stored is None:
        return None
    return last_stored + timedelta(days=1)


def validate_window(start: date | None, end: date | None) -> None:
    if start is not None and end is not None and start > end:
        raise ValueError("start date must not be after end date")


__all__ = ["next_import_start", "parse_date", "validate_window"]
