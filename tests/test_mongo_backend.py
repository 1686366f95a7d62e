"""Mongo backend tests that monkeypatch pymongo primitives."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List

import pytest
from bson.decimal128 import Decimal128
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from fx_fred.db import mongo_backend as mongo_module
from fx_fred.exceptions import DuplicateSeries, ReconciliationFailure, SeriesNotFound
from fx_fred.ingestion.models import CurrencySeries, ExchangeRateRecord


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for field, expected in query.items():
        value = document.get(field)
        if isinstance(expected, dict):
            if "$gte" in expected and not value >= expected["$gte"]:
                return False
            if "$lte" in expected and not value <= expected["$lte"]:
                return False
        elif value != expected:
            return False
    return True


class _DummyCursor:
    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs

    def sort(self, field: str, direction: int) -> List[Dict[str, Any]]:
        return sorted(self._docs, key=lambda doc: doc[field], reverse=direction == -1)


class _DummyInsertOne:
    def __init__(self, document: Dict[str, Any]) -> None:
        self.document = document


class _DummyUpdateOne:
    def __init__(self, filter: Dict[str, Any], update: Dict[str, Dict[str, Any]], *, upsert: bool) -> None:
        self.filter = filter
        self.update = update
        self.upsert = upsert


class _DummyCollection:
    def __init__(self, unique_keys: tuple[tuple[str, ...], ...] = ()) -> None:
        self.docs: List[Dict[str, Any]] = []
        self.indexes: list[tuple[tuple[tuple[str, int], ...], bool]] = []
        self.unique_keys = unique_keys
        self.bulk_calls = 0
        self.fail_bulk = False

    def __bool__(self) -> bool:  # pragma: no cover - behavioural parity with pymongo
        raise NotImplementedError("Collection truthiness is undefined")

    def create_index(self, fields: list[tuple[str, int]], unique: bool = False) -> None:
        self.indexes.append((tuple(fields), unique))

    def insert_one(self, document: Dict[str, Any]) -> None:
        for existing in self.docs:
            if existing.get("_id") == document.get("_id") and "_id" in document:
                raise DuplicateKeyError("duplicate _id")
            for fields in self.unique_keys:
                if all(existing.get(field) == document.get(field) for field in fields):
                    raise DuplicateKeyError(f"duplicate {fields}")
        self.docs.append(dict(document))

    def find_one(self, query: Dict[str, Any], projection: Any = None, sort: Any = None):
        docs = [doc for doc in self.docs if _matches(doc, query)]
        if sort:
            field, direction = sort[0]
            docs = sorted(docs, key=lambda doc: doc[field], reverse=direction == -1)
        return dict(docs[0]) if docs else None

    def find(self, query: Dict[str, Any]) -> _DummyCursor:
        return _DummyCursor([dict(doc) for doc in self.docs if _matches(doc, query)])

    def update_one(self, query: Dict[str, Any], update: Dict[str, Dict[str, Any]], upsert: bool = False) -> None:
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update.get("$set", {}))
                return
        if upsert:
            document = {key: value for key, value in query.items() if not isinstance(value, dict)}
            document.update(update.get("$setOnInsert", {}))
            document.update(update.get("$set", {}))
            self.docs.append(document)

    def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Dict[str, Any]],
        upsert: bool = False,
        return_document: Any = mongo_module.ReturnDocument.BEFORE,
    ):
        for doc in self.docs:
            if _matches(doc, query):
                before = dict(doc)
                doc.update(update.get("$set", {}))
                for field, step in update.get("$inc", {}).items():
                    doc[field] = doc.get(field, 0) + step
                return dict(doc) if return_document == mongo_module.ReturnDocument.AFTER else before
        if not upsert:
            return None
        document = dict(query)
        for field, step in update.get("$inc", {}).items():
            document[field] = step
        self.docs.append(document)
        return dict(document) if return_document == mongo_module.ReturnDocument.AFTER else None

    def bulk_write(self, operations: list[Any], ordered: bool, session: "_DummySession | None" = None) -> None:
        assert ordered is True
        if self.fail_bulk:
            raise PyMongoError("connection reset")
        if session is not None:
            session.track(self)
        self.bulk_calls += 1
        for index, op in enumerate(operations):
            try:
                if isinstance(op, _DummyInsertOne):
                    self.insert_one(op.document)
                else:
                    assert isinstance(op, _DummyUpdateOne)
                    self.update_one(op.filter, op.update, upsert=op.upsert)
            except DuplicateKeyError as exc:
                # Ordered bulk writes keep everything applied before the failing operation.
                raise BulkWriteError(
                    {"writeErrors": [{"index": index, "code": 11000, "errmsg": str(exc)}], "nInserted": index}
                ) from exc


class _DummySession:
    """Restores the touched collections when the transaction aborts."""

    def __init__(self) -> None:
        self.snapshots: Dict[int, tuple[_DummyCollection, List[Dict[str, Any]]]] = {}
        self.committed = False
        self.aborted = False

    def __enter__(self) -> "_DummySession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None

    def track(self, collection: _DummyCollection) -> None:
        self.snapshots.setdefault(id(collection), (collection, [dict(doc) for doc in collection.docs]))

    @contextmanager
    def start_transaction(self) -> Iterator["_DummySession"]:
        try:
            yield self
        except Exception:
            for collection, docs in self.snapshots.values():
                collection.docs = docs
            self.aborted = True
            raise
        self.committed = True


class _DummyDatabase(dict):
    def __getitem__(self, name: str) -> _DummyCollection:  # type: ignore[override]
        if name not in self:
            unique: tuple[tuple[str, ...], ...] = ()
            if name == mongo_module.SERIES_COLLECTION:
                unique = (("currency_code",),)
            elif name == mongo_module.RATES_COLLECTION:
                unique = (("base_currency", "target_currency", "rate_date"),)
            self[name] = _DummyCollection(unique)
        return dict.__getitem__(self, name)


class _DummyClient:
    def __init__(self) -> None:
        self.admin = self
        self.databases: Dict[str, _DummyDatabase] = {}
        self.commands: list[str] = []
        self.sessions: list[_DummySession] = []

    def start_session(self) -> _DummySession:
        session = _DummySession()
        self.sessions.append(session)
        return session

    def __getitem__(self, name: str) -> _DummyDatabase:
        return self.databases.setdefault(name, _DummyDatabase())

    def command(self, name: str) -> Dict[str, int]:
        self.commands.append(name)
        return {"ok": 1}

    def close(self) -> None:
        pass


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch) -> _DummyClient:
    monkeypatch.setattr(mongo_module, "InsertOne", _DummyInsertOne)
    monkeypatch.setattr(mongo_module, "UpdateOne", _DummyUpdateOne)
    return _DummyClient()


def _backend(client: _DummyClient) -> mongo_module.MongoBackend:
    backend = mongo_module.MongoBackend("mongodb://localhost/fx", database="fx", client=client)  # type: ignore[arg-type]
    backend.ensure_schema()
    return backend


def _record(day: int, rate: str, currency: str = "EUR") -> ExchangeRateRecord:
    return ExchangeRateRecord(rate_date=date(2024, 1, day), target_currency=currency, rate=Decimal(rate))


def test_ensure_schema_pings_and_indexes(client: _DummyClient) -> None:
    _backend(client)
    database = client["fx"]
    assert client.commands == ["ping"]
    assert ((("currency_code", 1),), True) in database["currency_series"].indexes
    assert database["exchange_rates"].indexes == [
        ((("base_currency", 1), ("target_currency", 1), ("rate_date", 1)), True)
    ]


def test_series_ids_come_from_counter(client: _DummyClient) -> None:
    backend = _backend(client)

    eur = backend.save_series(CurrencySeries(id=None, currency_code="EUR", provider_series_id="DEXUSEU"))
    jpy = backend.save_series(
        CurrencySeries(id=None, currency_code="JPY", provider_series_id="DEXJPUS", enabled=False)
    )

    assert (eur.id, jpy.id) == (1, 2)
    assert [series.currency_code for series in backend.find_enabled_series()] == ["EUR"]
    assert [series.currency_code for series in backend.list_series()] == ["EUR", "JPY"]
    assert backend.find_series_by_code("jpy") == jpy

    jpy.enabled = True
    backend.save_series(jpy)
    assert backend.find_series(2).enabled is True


def test_series_errors(client: _DummyClient) -> None:
    backend = _backend(client)
    eur = backend.save_series(CurrencySeries(id=None, currency_code="EUR", provider_series_id="DEXUSEU"))

    with pytest.raises(DuplicateSeries):
        backend.save_series(CurrencySeries(id=None, currency_code="EUR", provider_series_id="AGAIN"))
    with pytest.raises(SeriesNotFound):
        backend.save_series(CurrencySeries(id=99, currency_code="GBP", provider_series_id="DEXUSUK"))
    with pytest.raises(ValueError):
        backend.save_series(CurrencySeries(id=eur.id, currency_code="GBP", provider_series_id="DEXUSUK"))


def test_transaction_buffers_until_commit(client: _DummyClient) -> None:
    backend = _backend(client)
    rates = client["fx"]["exchange_rates"]

    with backend.transaction() as store:
        assert store.has_rates("USD", "EUR") is False
        store.save_all_rates([_record(1, "0.85"), _record(2, "0.851")])
        assert rates.docs == []
        assert store.has_rates("USD", "EUR") is True
        assert store.find_rate("USD", "EUR", date(2024, 1, 2)) == Decimal("0.851")

    assert rates.bulk_calls == 1
    assert client.sessions[-1].committed is True
    assert isinstance(rates.docs[0]["rate"], Decimal128)
    assert backend.find_most_recent_rate_date("USD", "EUR") == date(2024, 1, 2)

    with backend.transaction() as store:
        assert store.find_rate("USD", "EUR", date(2024, 1, 1)) == Decimal("0.85")
        store.save_rate(_record(1, "0.86"))
        store.save_rate(_record(3, "0.87"))

    stored = backend.fetch_range("EUR")
    assert [(row.rate_date, row.rate) for row in stored] == [
        (date(2024, 1, 1), Decimal("0.86")),
        (date(2024, 1, 2), Decimal("0.851")),
        (date(2024, 1, 3), Decimal("0.87")),
    ]
    assert all(row.created_at is not None for row in stored)
    window = backend.fetch_range("EUR", date(2024, 1, 2), date(2024, 1, 2))
    assert [row.rate_date for row in window] == [date(2024, 1, 2)]


def test_transaction_discards_buffer_on_error(client: _DummyClient) -> None:
    backend = _backend(client)

    with pytest.raises(RuntimeError):
        with backend.transaction() as store:
            store.save_all_rates([_record(1, "0.85")])
            raise RuntimeError("boom")

    assert client["fx"]["exchange_rates"].docs == []
    assert backend.find_most_recent_rate_date("USD", "EUR") is None


def test_bulk_write_failing_partway_leaves_no_rates_behind(client: _DummyClient) -> None:
    backend = _backend(client)
    rates = client["fx"]["exchange_rates"]

    with pytest.raises(ReconciliationFailure):
        with backend.transaction() as store:
            store.save_all_rates([_record(1, "0.85"), _record(2, "0.851"), _record(3, "0.852")])
            # Another writer stores the second date before this unit of work commits.
            rates.insert_one(
                {"base_currency": "USD", "target_currency": "EUR", "rate_date": "2024-01-02", "rate": Decimal128("0.9")}
            )

    assert [doc["rate_date"] for doc in rates.docs] == ["2024-01-02"]
    assert rates.docs[0]["rate"] == Decimal128("0.9")
    assert client.sessions[-1].aborted is True
    assert backend.find_most_recent_rate_date("USD", "EUR") == date(2024, 1, 2)


def test_driver_errors_become_reconciliation_failures(client: _DummyClient) -> None:
    backend = _backend(client)
    client["fx"]["exchange_rates"].fail_bulk = True

    with pytest.raises(ReconciliationFailure):
        with backend.transaction() as store:
            store.save_all_rates([_record(1, "0.85")])


def test_mongo_lock_provider(client: _DummyClient) -> None:
    backend = _backend(client)
    now = datetime(2024, 1, 1, 23, 0)
    clock_value = {"now": now}
    collection = client["fx"]["shedlock"]
    first = mongo_module.MongoLockProvider(collection, identity="a", clock=lambda: clock_value["now"])  # type: ignore[arg-type]
    second = mongo_module.MongoLockProvider(collection, identity="b", clock=lambda: clock_value["now"])  # type: ignore[arg-type]
    min_hold, max_hold = timedelta(minutes=1), timedelta(minutes=30)

    held = first.try_acquire("exchangeRateImport", min_hold, max_hold)
    assert held is not None
    assert second.try_acquire("exchangeRateImport", min_hold, max_hold) is None

    clock_value["now"] = now + timedelta(seconds=5)
    first.release(held)
    assert collection.docs[0]["lock_until"] == now + min_hold
    assert second.try_acquire("exchangeRateImport", min_hold, max_hold) is None

    clock_value["now"] = now + min_hold
    taken = second.try_acquire("exchangeRateImport", min_hold, max_hold)
    assert taken is not None and taken.locked_by == "b"
    assert collection.docs[0]["locked_by"] == "b"
    assert isinstance(backend.create_lock_provider(), mongo_module.MongoLockProvider)
