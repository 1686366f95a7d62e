"""SQLAlchemy table mappings shared by the relational backend and lock provider."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase

from fx_fred.ingestion.models import RATE_SCALE

RATE_PRECISION = 20


def utcnow_naive() -> datetime:
    """Naive UTC timestamp, the format every table in this schema stores."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class CurrencySeriesRow(Base):
    __tablename__ = "currency_series"

    id = Column(Integer, primary_key=True, autoincrement=True)
    currency_code = Column(String(3), nullable=False, unique=True)
    provider_series_id = Column(String(50), nullable=False, index=True)
    enabled = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow_naive)
    updated_at = Column(DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)


class ExchangeRateRow(Base):
    __tablename__ = "exchange_rate"
    __table_args__ = (
        UniqueConstraint(
            "base_currency", "target_currency", "rate_date", name="uk_exchange_rate_pair_date"
        ),
        CheckConstraint("rate > 0", name="ck_exchange_rate_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    base_currency = Column(String(3), nullable=False)
    target_currency = Column(String(3), nullable=False)
    rate_date = Column(Date, nullable=False)
    rate = Column(Numeric(RATE_PRECISION, RATE_SCALE, asdecimal=True), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow_naive)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow_naive)


class ShedLockRow(Base):
    """One row per named job; ``lock_until`` in the past means the lock is free."""

    __tablename__ = "shedlock"

    name = Column(String(64), primary_key=True)
    lock_until = Column(DateTime, nullable=False)
    locked_at = Column(DateTime, nullable=False)
    locked_by = Column(String(255), nullable=False)


__all__ = [
    "Base",
    "CurrencySeriesRow",
    "ExchangeRateRow",
    "RATE_PRECISION",
    "RATE_SCALE",
    "ShedLockRow",
    "utcnow_naive",
]
