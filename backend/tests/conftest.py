"""
Pytest configuration and shared test helpers for backend tests.

InMemoryCreditStore mimics an optimistic document store: a transaction
buffers its writes and commits only if none of the records it read changed
meanwhile, otherwise the callback is run again. Every read yields to the
event loop before the transaction writes, so concurrent transactions really
interleave. Inserting over a record another transaction committed is a
write conflict and retries too. Timestamps come from the store's clock.
"""
import asyncio
import copy
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fastapi.testclient import TestClient

from auth import create_access_token
from middleware import get_credit_service
from server import app
from toolbox.models.apps import AppConfig, DEFAULT_APPS
from toolbox.models.credits import BalanceRecord, LedgerEntry, legacy_names_for
from toolbox.models.identity import CallerIdentity
from toolbox.services.credit_service import CreditService
from toolbox.services.credit_store import CreditStore, CreditTransaction


class WriteConflict(Exception):
    """Another transaction committed a record this one is writing."""


class _MemoryTransaction(CreditTransaction):
    def __init__(self, store: "InMemoryCreditStore"):
        self.store = store
        self.read_versions: Dict[tuple, int] = {}
        self.pending_balances: Dict[tuple, Dict[str, Any]] = {}
        self.pending_ledger: List[Dict[str, Any]] = []

    def _track(self, key):
        self.read_versions.setdefault(key, self.store.versions.get(key, 0))

    def _current(self, key) -> Optional[Dict[str, Any]]:
        if key in self.pending_balances:
            return self.pending_balances[key]
        return copy.deepcopy(self.store.balances.get(key))

    async def get_balance(self, app_id, user_id):
        key = (app_id, user_id)
        self._track(key)
        doc = self._current(key)
        # Yield between read and write so concurrent transactions interleave
        await asyncio.sleep(0)
        if doc is None:
            return None
        return BalanceRecord.from_document(doc, app_id=app_id, user_id=user_id)

    async def get_app_config(self, app_id):
        await asyncio.sleep(0)
        return self.store.apps.get(app_id)

    async def create_balance(self, record: BalanceRecord):
        key = (record.app_id, record.user_id)
        self._track(key)
        if self._current(key) is not None:
            raise WriteConflict(f"duplicate key {key}")

        doc = record.to_document()
        now = self.store.now()
        for field in record.server_timestamp_fields():
            doc[field] = now
        self.pending_balances[key] = doc
        return BalanceRecord.from_document(copy.deepcopy(doc))

    async def update_balance(self, app_id, user_id, changes):
        key = (app_id, user_id)
        self._track(key)
        doc = self._current(key)
        if doc is None:
            raise WriteConflict(f"record {key} vanished")
        doc.update(changes)
        for legacy in legacy_names_for(changes):
            doc.pop(legacy, None)
        self.pending_balances[key] = doc

    async def append_ledger(self, entry: LedgerEntry):
        self.pending_ledger.append(entry.model_dump(exclude={"created_at"}))


class InMemoryCreditStore(CreditStore):
    def __init__(self, apps: List[AppConfig] = None, max_attempts: int = 50):
        self.balances: Dict[tuple, Dict[str, Any]] = {}
        self.versions: Dict[tuple, int] = {}
        self.ledger: List[Dict[str, Any]] = []
        self.apps: Dict[str, AppConfig] = {a.app_id: a for a in (apps or [])}
        self.max_attempts = max_attempts
        self.commits = 0
        self.conflicts = 0
        self.store_calls = 0

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def run_transaction(self, callback):
        self.store_calls += 1
        for _ in range(self.max_attempts):
            tx = _MemoryTransaction(self)
            try:
                result = await callback(tx)
            except WriteConflict:
                self.conflicts += 1
                continue
            # No awaits below: validate-and-apply is atomic on the event loop
            if any(self.versions.get(k, 0) != v for k, v in tx.read_versions.items()):
                self.conflicts += 1
                continue
            for key, doc in tx.pending_balances.items():
                self.balances[key] = doc
                self.versions[key] = self.versions.get(key, 0) + 1
            now = self.now()
            self.ledger.extend({**entry, "created_at": now} for entry in tx.pending_ledger)
            self.commits += 1
            return result
        raise RuntimeError("transaction retries exhausted")

    async def get_balance(self, app_id, user_id):
        self.store_calls += 1
        doc = self.balances.get((app_id, user_id))
        if doc is None:
            return None
        return BalanceRecord.from_document(copy.deepcopy(doc), app_id=app_id, user_id=user_id)

    async def list_balances(self, app_id, limit=100, offset=0):
        self.store_calls += 1
        records = [
            BalanceRecord.from_document(copy.deepcopy(doc), app_id=a, user_id=u)
            for (a, u), doc in self.balances.items()
            if a == app_id
        ]
        records.sort(key=lambda r: r.balance if r.balance is not None else -1, reverse=True)
        return records[offset:offset + limit]

    async def list_user_balances(self, user_id):
        self.store_calls += 1
        records = [
            BalanceRecord.from_document(copy.deepcopy(doc), app_id=a, user_id=u)
            for (a, u), doc in self.balances.items()
            if u == user_id
        ]
        return sorted(records, key=lambda r: r.app_id)

    async def list_ledger(self, app_id, user_id=None, source=None, limit=50, offset=0):
        self.store_calls += 1
        entries = [
            e for e in reversed(self.ledger)
            if e["app_id"] == app_id
            and (user_id is None or e["user_id"] == user_id)
            and (source is None or e["source"] == source.value)
        ]
        return [LedgerEntry.model_validate(e) for e in entries[offset:offset + limit]]

    # Test helpers

    def put_balance(self, app_id: str, user_id: str, **fields):
        """Store a raw document, legacy field names allowed."""
        key = (app_id, user_id)
        self.balances[key] = {"app_id": app_id, "user_id": user_id, **fields}
        self.versions[key] = self.versions.get(key, 0) + 1

    def raw_balance(self, app_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return self.balances.get((app_id, user_id))

    def ledger_for(self, app_id: str, user_id: str) -> List[Dict[str, Any]]:
        return [e for e in self.ledger if e["app_id"] == app_id and e["user_id"] == user_id]


@pytest.fixture
def store():
    return InMemoryCreditStore(apps=DEFAULT_APPS + [AppConfig(app_id="labels", has_credits=False)])


@pytest.fixture
def service(store):
    return CreditService(store)


@pytest.fixture
def user():
    return CallerIdentity(uid="u1", claims={"sub": "u1"})


@pytest.fixture
def supervisor():
    return CallerIdentity(uid="sup1", claims={"sub": "sup1", "supervisor": True})


@pytest.fixture
def client(service):
    """TestClient for server:app with the credit service backed by the in-memory store.

    Lifespan is not entered, so no MongoDB connection is attempted.
    """
    app.dependency_overrides[get_credit_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(uid: str, **claims) -> Dict[str, str]:
    token = create_access_token({"sub": uid, **claims})
    return {"Authorization": f"Bearer {token}"}
