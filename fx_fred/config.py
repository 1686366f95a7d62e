"""Runtime settings for imports, scheduling, caching and logging."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping

from fx_fred.ingestion.fred import FRED_API_URL

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_str(environ: Mapping[str, str], name: str) -> str | None:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


@dataclass(slots=True)
class ImportSettings:
    """Settings shared by the facade, the coordinator and the CLI.

    Durations are plain seconds so the values read the same in the
    environment and in code; the ``*_delta`` properties convert them.
    """

    database_url: str | None = None
    fred_api_key: str | None = None
    fred_base_url: str = FRED_API_URL
    request_timeout: float = 30.0
    redis_url: str | None = None
    cache_ttl_seconds: int = 3600
    max_attempts: int = 3
    retry_base_delay: float = 60.0
    lock_name: str = "exchangeRateImport"
    lock_min_hold: float = 60.0
    lock_max_hold: float = 1800.0
    schedule_hour: int = 23
    schedule_minute: int = 0
    fail_fast_on_rejection: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.retry_base_delay <= 0:
            raise ValueError("retry_base_delay must be positive")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must not be negative")
        if self.lock_max_hold <= 0:
            raise ValueError("lock_max_hold must be positive")
        if self.lock_min_hold < 0 or self.lock_min_hold > self.lock_max_hold:
            raise ValueError("lock_min_hold must be between zero and lock_max_hold")
        if not 0 <= self.schedule_hour <= 23:
            raise ValueError("schedule_hour must be between 0 and 23")
        if not 0 <= self.schedule_minute <= 59:
            raise ValueError("schedule_minute must be between 0 and 59")
        if not self.lock_name:
            raise ValueError("lock_name must not be empty")

    @property
    def retry_base_delta(self) -> timedelta:
        return timedelta(seconds=self.retry_base_delay)

    @property
    def lock_min_hold_delta(self) -> timedelta:
        return timedelta(seconds=self.lock_min_hold)

    @property
    def lock_max_hold_delta(self) -> timedelta:
        return timedelta(seconds=self.lock_max_hold)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ImportSettings":
        """Build settings from ``FX_FRED_*``/``FRED_*`` environment variables."""

        env = os.environ if environ is None else environ
        return cls(
            database_url=_env_str(env, "FX_FRED_DB_URL"),
            fred_api_key=_env_str(env, "FRED_API_KEY"),
            fred_base_url=_env_str(env, "FRED_BASE_URL") or FRED_API_URL,
            request_timeout=_env_float(env, "FRED_TIMEOUT_SECONDS", 30.0),
            redis_url=_env_str(env, "FX_FRED_REDIS_URL"),
            cache_ttl_seconds=_env_int(env, "FX_FRED_CACHE_TTL_SECONDS", 3600),
            max_attempts=_env_int(env, "FX_FRED_IMPORT_MAX_ATTEMPTS", 3),
            retry_base_delay=_env_float(env, "FX_FRED_IMPORT_RETRY_DELAY_SECONDS", 60.0),
            lock_name=_env_str(env, "FX_FRED_IMPORT_LOCK_NAME") or "exchangeRateImport",
            lock_min_hold=_env_float(env, "FX_FRED_IMPORT_LOCK_MIN_SECONDS", 60.0),
            lock_max_hold=_env_float(env, "FX_FRED_IMPORT_LOCK_MAX_SECONDS", 1800.0),
            schedule_hour=_env_int(env, "FX_FRED_IMPORT_HOUR", 23),
            schedule_minute=_env_int(env, "FX_FRED_IMPORT_MINUTE", 0),
            fail_fast_on_rejection=_env_bool(env, "FX_FRED_FAIL_FAST_ON_REJECTION", False),
            log_level=_env_str(env, "FX_FRED_LOG_LEVEL") or "INFO",
        )


__all__ = ["ImportSettings"]
