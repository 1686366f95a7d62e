"""Public interface for the fx_fred package."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, timezone
from enum import Enum
from importlib import metadata as importlib_metadata
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

from fx_fred.cache import InMemoryRateCache, RateCache, RedisRateCache
from fx_fred.config import ImportSettings
from fx_fred.db import DEFAULT_SQLITE_DB_PATH, default_sqlite_url
from fx_fred.db.base_backend import BackendStrategy
from fx_fred.db.mongo_backend import MongoBackend
from fx_fred.db.relational_backend import RelationalBackend
from fx_fred.exceptions import SeriesNotFound
from fx_fred.imports.orchestrator import ExchangeRateImporter
from fx_fred.ingestion.fred import FredClient
from fx_fred.ingestion.models import (
    CurrencyCreatedMessage,
    CurrencySeries,
    ExchangeRateRecord,
    ImportResult,
)
from fx_fred.ingestion.strategy import ExchangeRateProvider
from fx_fred.messaging.consumer import ExchangeRateImportConsumer
from fx_fred.monitoring.metrics import ImportMetrics
from fx_fred.queries import ExchangeRateQueryService
from fx_fred.scheduling.coordinator import ImportRetryCoordinator, TaskScheduler
from fx_fred.scheduling.timer import ApschedulerTaskScheduler, DailyImportScheduler
from fx_fred.utils.context import ImportContext
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)

__all__ = [
    "__version__",
    "CurrencySeries",
    "DatabaseBackend",
    "DatabaseConnectionInfo",
    "ExchangeRateRecord",
    "FxFred",
    "ImportResult",
    "ImportSettings",
]

try:
    __version__ = importlib_metadata.version("fx-fred")
except importlib_metadata.PackageNotFoundError:  # pragma: no cover - fallback for local runs
    __version__ = "0.1.0"


class DatabaseBackend(str, Enum):
    """Supported database engines for FxFred."""

    SQLITE = "sqlite"
    MYSQL = "mysql"
    POSTGRES = "postgres"
    MONGODB = "mongodb"

    @classmethod
    def resolve_backend_and_scheme(cls, scheme: str) -> tuple["DatabaseBackend", str]:
        """Return backend enum + canonical scheme used in connection URLs."""

        if not scheme:
            raise ValueError("DB_URL must include a scheme (e.g. mysql:// or postgres://)")
        scheme_lower = scheme.lower()
        base_scheme, _, driver = scheme_lower.partition("+")
        if base_scheme in {"postgresql", "postgres"}:
            # Keep driver hints such as ``postgresql+psycopg``.
            canonical_scheme = f"postgresql+{driver}" if driver else "postgresql"
            return cls.POSTGRES, canonical_scheme
        if base_scheme == "sqlite":
            return cls.SQLITE, "sqlite"
        if base_scheme == "mysql":
            canonical_scheme = scheme_lower if driver else "mysql"
            return cls.MYSQL, canonical_scheme
        if base_scheme == "mongodb":
            # Keep srv-style schemes intact so pymongo can route via DNS.
            canonical_scheme = scheme_lower if driver else "mongodb"
            return cls.MONGODB, canonical_scheme
        raise ValueError(
            "Unsupported database backend. Supported values are SQLite, MySQL, "
            "Postgres, and MongoDB."
        )

    @property
    def is_relational(self) -> bool:
        return self is not DatabaseBackend.MONGODB


@dataclass(slots=True)
class DatabaseConnectionInfo:
    """Represents how FxFred should talk to the persistence layer."""

    backend: DatabaseBackend
    url: str
    name: str | None
    username: str | None = None
    password: str | None = None
    host: str | None = None
    port: int | None = None

    @classmethod
    def from_url(cls, url: str) -> "DatabaseConnectionInfo":
        """Create a connection object by parsing a database URL/DSN."""

        cleaned_url, query_db_name = cls._normalise_database_name_parameter(url)
        parsed = urlparse(cleaned_url)
        if not parsed.scheme:
            raise ValueError("DB_URL must include a scheme (e.g. mysql:// or postgres://)")
        backend, canonical_scheme = DatabaseBackend.resolve_backend_and_scheme(parsed.scheme)
        if parsed.scheme != canonical_scheme:
            parsed = parsed._replace(scheme=canonical_scheme)
            cleaned_url = urlunparse(parsed)
        resolved_name = parsed.path[1:] if parsed.path and parsed.path != "/" else None
        if not resolved_name:
            resolved_name = query_db_name

        return cls(
            backend=backend,
            url=cleaned_url,
            name=resolved_name,
            username=parsed.username,
            password=parsed.password,
            host=parsed.hostname,
            port=parsed.port,
        )

    @classmethod
    def default_sqlite(cls) -> "DatabaseConnectionInfo":
        return cls(
            backend=DatabaseBackend.SQLITE,
            url=default_sqlite_url(DEFAULT_SQLITE_DB_PATH),
            name=str(DEFAULT_SQLITE_DB_PATH),
        )

    @staticmethod
    def _normalise_database_name_parameter(url: str) -> tuple[str, str | None]:
        """Support a ``DATABASE_NAME`` query parameter in place of a URL path."""

        # Some callers append ``DATABASE_NAME=foo`` without an ``&`` delimiter.
        patched_url = re.sub(r"(?i)(?<![?&])DATABASE_NAME=", "&DATABASE_NAME=", url)
        parsed = urlparse(patched_url)
        remaining_pairs: list[tuple[str, str]] = []
        database_name: str | None = None
        for key, value in parse_qsl(parsed.query, keep_blank_values=True):
            if key.lower() == "database_name":
                if value:
                    database_name = value
                # Strip the custom parameter so PyMongo/SQLAlchemy don't error on it.
                continue
            remaining_pairs.append((key, value))

        new_path = parsed.path
        if (not new_path or new_path == "/") and database_name:
            new_path = f"/{database_name}"

        cleaned = parsed._replace(query=urlencode(remaining_pairs, doseq=True), path=new_path)
        return urlunparse(cleaned), database_name

    @property
    def is_sqlite(self) -> bool:
        return self.backend is DatabaseBackend.SQLITE


class FxFred:
    """Package facade wiring storage, the FRED client, the cache and the importer.

    Every collaborator is built lazily from :class:`ImportSettings`, so
    constructing the facade never opens a connection. Tests and embedding
    applications can inject their own backend, provider or cache.
    """

    __slots__ = (
        "connection_info",
        "settings",
        "metrics",
        "_backend",
        "_provider",
        "_cache",
        "_importer",
        "_queries",
    )

    __version__ = __version__

    def __init__(
        self,
        db_config: DatabaseConnectionInfo | str | None = None,
        *,
        settings: ImportSettings | None = None,
        backend: BackendStrategy | None = None,
        provider: ExchangeRateProvider | None = None,
        cache: RateCache | None = None,
        metrics: ImportMetrics | None = None,
    ) -> None:
        self.settings = settings or ImportSettings()
        self.connection_info = self._build_connection_info(db_config or self.settings.database_url)
        self.metrics = metrics or ImportMetrics()
        self._backend = backend
        self._provider = provider
        self._cache = cache
        self._importer: ExchangeRateImporter | None = None
        self._queries: ExchangeRateQueryService | None = None

    @staticmethod
    def _build_connection_info(db_config: DatabaseConnectionInfo | str | None) -> DatabaseConnectionInfo:
        if isinstance(db_config, DatabaseConnectionInfo):
            return db_config
        if isinstance(db_config, str):
            return DatabaseConnectionInfo.from_url(db_config)
        return DatabaseConnectionInfo.default_sqlite()

    @property
    def backend(self) -> BackendStrategy:
        if self._backend is None:
            info = self.connection_info
            if info.backend is DatabaseBackend.MONGODB:
                self._backend = MongoBackend(info.url, database=info.name)
            else:
                self._backend = RelationalBackend(info.url)
        return self._backend

    @property
    def provider(self) -> ExchangeRateProvider:
        if self._provider is None:
            self._provider = FredClient(
                self.settings.fred_api_key,
                base_url=self.settings.fred_base_url,
                timeout=self.settings.request_timeout,
            )
        return self._provider

    @property
    def cache(self) -> RateCache:
        if self._cache is None:
            ttl = self.settings.cache_ttl_seconds
            if self.settings.redis_url:
                self._cache = RedisRateCache(self.settings.redis_url, default_ttl=ttl)
            else:
                self._cache = InMemoryRateCache(default_ttl=ttl)
        return self._cache

    @property
    def importer(self) -> ExchangeRateImporter:
        if self._importer is None:
            self._importer = ExchangeRateImporter(self.backend, self.provider, cache=self.cache)
        return self._importer

    @property
    def queries(self) -> ExchangeRateQueryService:
        if self._queries is None:
            self._queries = ExchangeRateQueryService(
                self.backend, self.cache, ttl=self.settings.cache_ttl_seconds
            )
        return self._queries

    def init_db(self) -> None:
        """Create the tables/collections used by the configured backend."""

        self.backend.ensure_schema()

    def add_series(
        self,
        currency_code: str,
        provider_series_id: str,
        *,
        enabled: bool = True,
        import_now: bool = False,
    ) -> CurrencySeries:
        """Register a currency series; ``import_now`` imports its history straight away."""

        series = self.backend.save_series(
            CurrencySeries(
                id=None,
                currency_code=currency_code.strip().upper(),
                provider_series_id=provider_series_id,
                enabled=enabled,
            )
        )
        LOGGER.info("Registered currency series %s (%s)", series.currency_code, series.provider_series_id)
        if import_now:
            self.consumer()(
                CurrencyCreatedMessage(
                    currency_series_id=series.id,
                    currency_code=series.currency_code,
                )
            )
        return series

    def set_series_enabled(self, currency_code: str, enabled: bool) -> CurrencySeries:
        series = self.backend.find_series_by_code(currency_code.upper())
        if series is None:
            raise SeriesNotFound(f"No currency series registered for {currency_code.upper()}")
        series.enabled = enabled
        return self.backend.save_series(series)

    def list_series(self) -> list[CurrencySeries]:
        return self.backend.list_series()

    def import_latest(self, context: ImportContext | None = None) -> ImportResult:
        """Run one unlocked import attempt for every enabled series."""

        return self.importer.run_import(context or ImportContext.create("manual"))

    def import_series(self, series_id: int, context: ImportContext | None = None) -> ImportResult:
        return self.importer.import_series(series_id, context or ImportContext.create("manual"))

    def rates(
        self,
        currency_code: str,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[ExchangeRateRecord]:
        """Return USD rates for ``currency_code`` between the given dates (inclusive)."""

        return self.queries.get_rates(currency_code, from_date, to_date)

    def latest_rate(self, currency_code: str) -> ExchangeRateRecord | None:
        return self.queries.get_latest_rate(currency_code)

    def build_coordinator(self, task_scheduler: TaskScheduler) -> ImportRetryCoordinator:
        """Return a coordinator running locked, retried imports on this facade's storage."""

        return ImportRetryCoordinator(
            self.importer,
            self.backend.create_lock_provider(),
            self.metrics,
            task_scheduler,
            self.settings,
        )

    def build_daily_scheduler(self, scheduler: BaseScheduler | None = None) -> DailyImportScheduler:
        """Wire the coordinator and its retries onto one APScheduler instance."""

        scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        coordinator = self.build_coordinator(ApschedulerTaskScheduler(scheduler))
        return DailyImportScheduler(
            coordinator,
            scheduler,
            hour=self.settings.schedule_hour,
            minute=self.settings.schedule_minute,
        )

    def consumer(self) -> ExchangeRateImportConsumer:
        return ExchangeRateImportConsumer(self.importer)

    def close(self) -> None:
        if self._backend is not None:
            self._backend.close()
        closer = getattr(self._provider, "close", None)
        if callable(closer):
            closer()
