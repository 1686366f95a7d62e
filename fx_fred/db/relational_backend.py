"""SQLAlchemy powered backend for SQLite, PostgreSQL and MySQL."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterator, Sequence

from sqlalchemy import create_engine, func, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fx_fred.db.base_backend import BackendStrategy, RateStore
from fx_fred.db.locks import LockProvider, RelationalLockProvider
from fx_fred.db.orm import Base, CurrencySeriesRow, ExchangeRateRow, utcnow_naive
from fx_fred.exceptions import DuplicateSeries, ReconciliationFailure, SeriesNotFound
from fx_fred.ingestion.models import BASE_CURRENCY, CurrencySeries, ExchangeRateRecord
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)


class _SessionRateStore(RateStore):
    """Rate store bound to one SQLAlchemy session (one transaction)."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def has_rates(self, base_currency: str, target_currency: str) -> bool:
        stmt = (
            select(ExchangeRateRow.id)
            .where(ExchangeRateRow.base_currency == base_currency)
            .where(ExchangeRateRow.target_currency == target_currency)
            .limit(1)
        )
        return self.session.scalar(stmt) is not None

    def find_rate(self, base_currency: str, target_currency: str, rate_date: date) -> Decimal | None:
        row = self._find_row(base_currency, target_currency, rate_date)
        return None if row is None else Decimal(row.rate)

    def save_rate(self, record: ExchangeRateRecord) -> None:
        row = self._find_row(record.base_currency, record.target_currency, record.rate_date)
        if row is None:
            self.session.add(_to_row(record))
        else:
            row.rate = record.rate

    def save_all_rates(self, records: Sequence[ExchangeRateRecord]) -> None:
        if not records:
            return
        now = utcnow_naive()
        self.session.execute(
            insert(ExchangeRateRow),
            [
                {
                    "base_currency": record.base_currency,
                    "target_currency": record.target_currency,
                    "rate_date": record.rate_date,
                    "rate": record.rate,
                    "created_at": record.created_at or now,
                }
                for record in records
            ],
        )

    def _find_row(
        self, base_currency: str, target_currency: str, rate_date: date
    ) -> ExchangeRateRow | None:
        stmt = (
            select(ExchangeRateRow)
            .where(ExchangeRateRow.base_currency == base_currency)
            .where(ExchangeRateRow.target_currency == target_currency)
            .where(ExchangeRateRow.rate_date == rate_date)
        )
        return self.session.scalars(stmt).first()


class RelationalBackend(BackendStrategy):
    """Backend strategy that encapsulates SQLAlchemy powered interactions."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._engine_instance: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None

    def _get_engine(self) -> Engine:
        if self._engine_instance is None:
            connect_args: dict[str, object] = {}
            if self.url.startswith("sqlite"):
                # Retry follow-ups run on scheduler worker threads.
                connect_args["check_same_thread"] = False
            self._engine_instance = create_engine(self.url, future=True, connect_args=connect_args)
        return self._engine_instance

    def _sessions(self) -> sessionmaker[Session]:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self._get_engine(), expire_on_commit=False, future=True
            )
        return self._session_factory

    def ensure_schema(self) -> None:
        LOGGER.info("Ensuring currency_series, exchange_rate and shedlock tables exist")
        Base.metadata.create_all(self._get_engine())

    def find_enabled_series(self) -> list[CurrencySeries]:
        stmt = (
            select(CurrencySeriesRow)
            .where(CurrencySeriesRow.enabled.is_(True))
            .order_by(CurrencySeriesRow.currency_code)
        )
        with self._sessions()() as session:
            return [_to_series(row) for row in session.scalars(stmt)]

    def find_series(self, series_id: int) -> CurrencySeries | None:
        with self._sessions()() as session:
            row = session.get(CurrencySeriesRow, series_id)
            return None if row is None else _to_series(row)

    def find_series_by_code(self, currency_code: str) -> CurrencySeries | None:
        stmt = select(CurrencySeriesRow).where(
            CurrencySeriesRow.currency_code == currency_code.upper()
        )
        with self._sessions()() as session:
            row = session.scalars(stmt).first()
            return None if row is None else _to_series(row)

    def list_series(self) -> list[CurrencySeries]:
        stmt = select(CurrencySeriesRow).order_by(CurrencySeriesRow.currency_code)
        with self._sessions()() as session:
            return [_to_series(row) for row in session.scalars(stmt)]

    def save_series(self, series: CurrencySeries) -> CurrencySeries:
        series.validate()
        with self._sessions()() as session:
            if series.id is None:
                row = CurrencySeriesRow(
                    currency_code=series.currency_code,
                    provider_series_id=series.provider_series_id,
                    enabled=series.enabled,
                )
                session.add(row)
            else:
                existing = session.get(CurrencySeriesRow, series.id)
                if existing is None:
                    raise SeriesNotFound(f"Currency series {series.id} does not exist")
                if existing.currency_code != series.currency_code:
                    raise ValueError("currency_code of an existing series is immutable")
                existing.provider_series_id = series.provider_series_id
                existing.enabled = series.enabled
                row = existing
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateSeries(
                    f"A series for currency {series.currency_code} already exists"
                ) from exc
            return _to_series(row)

    def find_most_recent_rate_date(self, base_currency: str, target_currency: str) -> date | None:
        stmt = (
            select(func.max(ExchangeRateRow.rate_date))
            .where(ExchangeRateRow.base_currency == base_currency)
            .where(ExchangeRateRow.target_currency == target_currency)
        )
        with self._sessions()() as session:
            value = session.scalar(stmt)
        return None if value is None else _normalise_rate_date(value)

    def fetch_range(
        self,
        target_currency: str,
        start: date | None = None,
        end: date | None = None,
        *,
        base_currency: str = BASE_CURRENCY,
    ) -> list[ExchangeRateRecord]:
        stmt = (
            select(ExchangeRateRow)
            .where(ExchangeRateRow.base_currency == base_currency)
            .where(ExchangeRateRow.target_currency == target_currency)
            .order_by(ExchangeRateRow.rate_date)
        )
        if start is not None:
            stmt = stmt.where(ExchangeRateRow.rate_date >= start)
        if end is not None:
            stmt = stmt.where(ExchangeRateRow.rate_date <= end)
        with self._sessions()() as session:
            return [
                ExchangeRateRecord(
                    rate_date=_normalise_rate_date(row.rate_date),
                    target_currency=row.target_currency,
                    rate=Decimal(row.rate),
                    base_currency=row.base_currency,
                    created_at=row.created_at,
                )
                for row in session.scalars(stmt)
            ]

    @contextmanager
    def transaction(self) -> Iterator[RateStore]:
        session = self._sessions()()
        try:
            yield _SessionRateStore(session)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise ReconciliationFailure(f"Persisting exchange rates failed: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_lock_provider(self) -> LockProvider:
        return RelationalLockProvider(self._get_engine())

    def close(self) -> None:  # pragma: no cover - trivial resource cleanup
        if self._engine_instance is not None:
            self._engine_instance.dispose()


def _to_series(row: CurrencySeriesRow) -> CurrencySeries:
    return CurrencySeries(
        id=row.id,
        currency_code=row.currency_code,
        provider_series_id=row.provider_series_id,
        enabled=bool(row.enabled),
    )


def _to_row(record: ExchangeRateRecord) -> ExchangeRateRow:
    return ExchangeRateRow(
        base_currency=record.base_currency,
        target_currency=record.target_currency,
        rate_date=record.rate_date,
        rate=record.rate,
        created_at=record.created_at or utcnow_naive(),
    )


def _normalise_rate_date(value: object) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value))


__all__ = ["RelationalBackend"]
