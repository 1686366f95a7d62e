"""Persistence backends for currency series, exchange rates and locks."""

from __future__ import annotations

from pathlib import Path
from typing import Final

__all__ = ["DEFAULT_SQLITE_DB_PATH", "default_sqlite_url"]

# Relative to the working directory so every process started from the same
# deployment directory shares one database file.
DEFAULT_SQLITE_DB_PATH: Final[Path] = Path("fx_fred.db")


def default_sqlite_url(path: str | Path = DEFAULT_SQLITE_DB_PATH) -> str:
    """Return the SQLAlchemy URL of the local SQLite database."""

    return f"sqlite:///{Path(path).expanduser().resolve().as_posix()}"
