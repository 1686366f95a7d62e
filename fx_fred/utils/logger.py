"""Logging utilities for the fx_fred package."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_CONFIGURED = False


def configure_logging(level: int | str = logging.INFO) -> None:
    """Install the package log format once and (re)apply ``level``."""

    global _CONFIGURED
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved
    if not _CONFIGURED:
        logging.basicConfig(level=level, format=LOG_FORMAT)
        _CONFIGURED = True
    logging.getLogger("fx_fred").setLevel(level)


def get_logger(name: str = "fx_fred") -> logging.Logger:
    """Return a logger, installing the default format on first use."""

    if not _CONFIGURED:
        configure_logging()
    return logging.getLogger(name)
