"""MongoDB backend strategy."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterator, Sequence

from bson.decimal128 import Decimal128
from pymongo import ASCENDING, DESCENDING, InsertOne, MongoClient, ReturnDocument, UpdateOne
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from fx_fred.db.base_backend import BackendStrategy, RateStore
from fx_fred.db.locks import HeldLock, LockProvider, lock_holder_identity, validate_hold_durations
from fx_fred.db.orm import utcnow_naive
from fx_fred.exceptions import DuplicateSeries, ReconciliationFailure, SeriesNotFound
from fx_fred.ingestion.models import BASE_CURRENCY, CurrencySeries, ExchangeRateRecord
from fx_fred.utils.logger import get_logger

LOGGER = get_logger(__name__)

SERIES_COLLECTION = "currency_series"
RATES_COLLECTION = "exchange_rates"
COUNTERS_COLLECTION = "counters"
LOCKS_COLLECTION = "shedlock"


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


def _rate_key(base_currency: str, target_currency: str, rate_date: date) -> dict[str, str]:
    return {
        "base_currency": base_currency,
        "target_currency": target_currency,
        "rate_date": rate_date.isoformat(),
    }


def _pending_key(record: ExchangeRateRecord) -> tuple[str, str, str]:
    return (record.base_currency, record.target_currency, record.rate_date.isoformat())


class _BufferedRateStore(RateStore):
    """Collects writes and flushes them in one ordered bulk write on commit.

    Nothing reaches the collection before :meth:`flush`. The flush runs inside
    a server-side transaction, so a bulk write that fails partway is aborted
    as a whole and none of the series' writes stay behind.
    """

    def __init__(self, collection: Collection) -> None:
        self._collection = collection
        self._pending: dict[tuple[str, str, str], Decimal] = {}
        self._operations: list[InsertOne | UpdateOne] = []

    def has_rates(self, base_currency: str, target_currency: str) -> bool:
        if any(key[:2] == (base_currency, target_currency) for key in self._pending):
            return True
        document = self._collection.find_one(
            {"base_currency": base_currency, "target_currency": target_currency},
            projection={"_id": 1},
        )
        return document is not None

    def find_rate(self, base_currency: str, target_currency: str, rate_date: date) -> Decimal | None:
        pending = self._pending.get((base_currency, target_currency, rate_date.isoformat()))
        if pending is not None:
            return pending
        document = self._collection.find_one(_rate_key(base_currency, target_currency, rate_date))
        return None if document is None else _to_decimal(document["rate"])

    def save_rate(self, record: ExchangeRateRecord) -> None:
        now = utcnow_naive()
        key = _rate_key(record.base_currency, record.target_currency, record.rate_date)
        self._operations.append(
            UpdateOne(
                key,
                {
                    "$set": {"rate": Decimal128(record.rate), "updated_at": now},
                    "$setOnInsert": {"created_at": record.created_at or now},
                },
                upsert=True,
            )
        )
        self._pending[_pending_key(record)] = record.rate

    def save_all_rates(self, records: Sequence[ExchangeRateRecord]) -> None:
        now = utcnow_naive()
        for record in records:
            key = _rate_key(record.base_currency, record.target_currency, record.rate_date)
            document = {**key, "rate": Decimal128(record.rate), "created_at": record.created_at or now}
            self._operations.append(InsertOne(document))
            self._pending[_pending_key(record)] = record.rate

    def flush(self, session: ClientSession) -> None:
        if self._operations:
            self._collection.bulk_write(self._operations, ordered=True, session=session)
        self._operations = []
        self._pending.clear()


class MongoLockProvider(LockProvider):
    """Lock provider storing one document per job name (``_id`` = name)."""

    def __init__(
        self,
        collection: Collection,
        *,
        identity: str | None = None,
        clock: Callable[[], datetime] = utcnow_naive,
    ) -> None:
        self._collection = collection
        self._identity = identity
        self._clock = clock

    def try_acquire(self, name: str, min_hold: timedelta, max_hold: timedelta) -> HeldLock | None:
        validate_hold_durations(min_hold, max_hold)
        now = self._clock()
        holder = self._identity or lock_holder_identity()
        fields = {"lock_until": now + max_hold, "locked_at": now, "locked_by": holder}
        try:
            self._collection.insert_one({"_id": name, **fields})
        except DuplicateKeyError:
            taken_over = self._collection.find_one_and_update(
                {"_id": name, "lock_until": {"$lte": now}},
                {"$set": fields},
            )
            if taken_over is None:
                LOGGER.debug("Lock %s is held by another instance", name)
                return None
        return HeldLock(
            name=name,
            locked_by=holder,
            locked_at=now,
            lock_until=fields["lock_until"],
            min_hold=min_hold,
        )

    def release(self, lock: HeldLock) -> None:
        unlock_at = max(lock.earliest_release, self._clock())
        self._collection.update_one(
            {"_id": lock.name, "locked_by": lock.locked_by},
            {"$set": {"lock_until": unlock_at}},
        )


class MongoBackend(BackendStrategy):
    """Backend strategy that persists series, rates and locks inside MongoDB."""

    def __init__(
        self,
        url: str,
        *,
        database: str | None = None,
        client: MongoClient | None = None,
    ) -> None:
        self.url = url
        self._client = client or MongoClient(url)
        db = self._client.get_default_database() if database is None else self._client[database]
        if db is None:
            raise ValueError("MongoDB connection URI must include a database name")
        self._series: Collection = db[SERIES_COLLECTION]
        self._rates: Collection = db[RATES_COLLECTION]
        self._counters: Collection = db[COUNTERS_COLLECTION]
        self._locks: Collection = db[LOCKS_COLLECTION]

    def ensure_schema(self) -> None:
        try:
            LOGGER.info("Ensuring MongoDB currency series and exchange rate collections exist")
            self._client.admin.command("ping")
            self._series.create_index([("currency_code", ASCENDING)], unique=True)
            self._series.create_index([("enabled", ASCENDING)])
            self._rates.create_index(
                [
                    ("base_currency", ASCENDING),
                    ("target_currency", ASCENDING),
                    ("rate_date", ASCENDING),
                ],
                unique=True,
            )
        except PyMongoError as exc:  # pragma: no cover - error path
            raise RuntimeError(f"Failed to ensure MongoDB schema: {exc}") from exc

    def find_enabled_series(self) -> list[CurrencySeries]:
        documents = self._series.find({"enabled": True}).sort("currency_code", ASCENDING)
        return [_to_series(document) for document in documents]

    def find_series(self, series_id: int) -> CurrencySeries | None:
        document = self._series.find_one({"_id": series_id})
        return None if document is None else _to_series(document)

    def find_series_by_code(self, currency_code: str) -> CurrencySeries | None:
        document = self._series.find_one({"currency_code": currency_code.upper()})
        return None if document is None else _to_series(document)

    def list_series(self) -> list[CurrencySeries]:
        documents = self._series.find({}).sort("currency_code", ASCENDING)
        return [_to_series(document) for document in documents]

    def save_series(self, series: CurrencySeries) -> CurrencySeries:
        series.validate()
        now = utcnow_naive()
        if series.id is None:
            counter = self._counters.find_one_and_update(
                {"_id": SERIES_COLLECTION},
                {"$inc": {"seq": 1}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
            series_id = int(counter["seq"])
            try:
                self._series.insert_one(
                    {
                        "_id": series_id,
                        "currency_code": series.currency_code,
                        "provider_series_id": series.provider_series_id,
                        "enabled": series.enabled,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
            except DuplicateKeyError as exc:
                raise DuplicateSeries(
                    f"A series for currency {series.currency_code} already exists"
                ) from exc
            return CurrencySeries(
                id=series_id,
                currency_code=series.currency_code,
                provider_series_id=series.provider_series_id,
                enabled=series.enabled,
            )

        existing = self._series.find_one({"_id": series.id})
        if existing is None:
            raise SeriesNotFound(f"Currency series {series.id} does not exist")
        if existing["currency_code"] != series.currency_code:
            raise ValueError("currency_code of an existing series is immutable")
        self._series.update_one(
            {"_id": series.id},
            {
                "$set": {
                    "provider_series_id": series.provider_series_id,
                    "enabled": series.enabled,
                    "updated_at": now,
                }
            },
        )
        return series

    def find_most_recent_rate_date(self, base_currency: str, target_currency: str) -> date | None:
        document = self._rates.find_one(
            {"base_currency": base_currency, "target_currency": target_currency},
            sort=[("rate_date", DESCENDING)],
        )
        return None if document is None else date.fromisoformat(document["rate_date"])

    def fetch_range(
        self,
        target_currency: str,
        start: date | None = None,
        end: date | None = None,
        *,
        base_currency: str = BASE_CURRENCY,
    ) -> list[ExchangeRateRecord]:
        query: dict[str, Any] = {"base_currency": base_currency, "target_currency": target_currency}
        if start is not None or end is not None:
            range_query: dict[str, str] = {}
            if start is not None:
                range_query["$gte"] = start.isoformat()
            if end is not None:
                range_query["$lte"] = end.isoformat()
            query["rate_date"] = range_query
        documents = self._rates.find(query).sort("rate_date", ASCENDING)
        return [
            ExchangeRateRecord(
                rate_date=date.fromisoformat(document["rate_date"]),
                target_currency=document["target_currency"],
                rate=_to_decimal(document["rate"]),
                base_currency=document["base_currency"],
                created_at=document.get("created_at"),
            )
            for document in documents
        ]

    @contextmanager
    def transaction(self) -> Iterator[RateStore]:
        store = _BufferedRateStore(self._rates)
        try:
            yield store
            # Multi-document transactions need a replica set or sharded cluster.
            with self._client.start_session() as session, session.start_transaction():
                store.flush(session)
        except PyMongoError as exc:
            raise ReconciliationFailure(f"Persisting exchange rates failed: {exc}") from exc

    def create_lock_provider(self) -> LockProvider:
        return MongoLockProvider(self._locks)

    def close(self) -> None:  # pragma: no cover - trivial cleanup
        self._client.close()


def _to_series(document: dict[str, Any]) -> CurrencySeries:
    return CurrencySeries(
        id=int(document["_id"]),
        currency_code=document["currency_code"],
        provider_series_id=document["provider_series_id"],
        enabled=bool(document.get("enabled", True)),
    )


__all__ = ["MongoBackend", "MongoLockProvider"]
