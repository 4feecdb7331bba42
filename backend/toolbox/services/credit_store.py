"""Credit Store

Data access for balance records, the credit ledger and the app registry.

The credit service only sees the abstract CreditStore. Writes happen inside
run_transaction, which runs a callback atomically against a
CreditTransaction handle and retries it when a concurrent writer touched
the same record. Errors raised by the callback abort the transaction and
propagate unchanged.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Callable, Awaitable, TypeVar
import logging

from pymongo import ReturnDocument
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from toolbox.models.apps import AppConfig, DEFAULT_APPS
from toolbox.models.credits import (
    BalanceRecord,
    LedgerEntry,
    LedgerSource,
    legacy_names_for,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BALANCES_COLLECTION = "app_credits"
LEDGER_COLLECTION = "credit_ledger"
APPS_COLLECTION = "apps"


def balance_key(app_id: str, user_id: str) -> Dict[str, str]:
    return {"app_id": app_id, "user_id": user_id}


class CreditTransaction(ABC):
    """Reads and writes visible only inside one store transaction."""

    @abstractmethod
    async def get_balance(self, app_id: str, user_id: str) -> Optional[BalanceRecord]:
        """Read a balance record, normalised, or None."""
        pass

    @abstractmethod
    async def get_app_config(self, app_id: str) -> Optional[AppConfig]:
        """Read the registry entry for an app, or None."""
        pass

    @abstractmethod
    async def create_balance(self, record: BalanceRecord) -> BalanceRecord:
        """Insert a new record and return it as stored.

        The store stamps record.server_timestamp_fields() with its own clock.
        """
        pass

    @abstractmethod
    async def update_balance(self, app_id: str, user_id: str, changes: Dict[str, Any]) -> None:
        """Set canonical fields on an existing record."""
        pass

    @abstractmethod
    async def append_ledger(self, entry: LedgerEntry) -> None:
        """Append an entry; the store stamps created_at."""
        pass


class CreditStore(ABC):
    """Balance, ledger and registry storage."""

    @abstractmethod
    async def run_transaction(self, callback: Callable[[CreditTransaction], Awaitable[T]]) -> T:
        """Run callback atomically, retrying on write conflicts."""
        pass

    @abstractmethod
    async def get_balance(self, app_id: str, user_id: str) -> Optional[BalanceRecord]:
        """Point read outside any transaction."""
        pass

    @abstractmethod
    async def list_balances(self, app_id: str, limit: int = 100, offset: int = 0) -> List[BalanceRecord]:
        """Records of one app, highest balance first."""
        pass

    @abstractmethod
    async def list_user_balances(self, user_id: str) -> List[BalanceRecord]:
        """Records of one user across all apps, ordered by app_id."""
        pass

    @abstractmethod
    async def list_ledger(
        self,
        app_id: str,
        user_id: Optional[str] = None,
        source: Optional[LedgerSource] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[LedgerEntry]:
        """Ledger entries of one app, newest first."""
        pass


class MongoCreditTransaction(CreditTransaction):
    """CreditTransaction bound to a Motor client session."""

    def __init__(self, db, session):
        self.db = db
        self.session = session

    async def get_balance(self, app_id: str, user_id: str) -> Optional[BalanceRecord]:
        doc = await self.db[BALANCES_COLLECTION].find_one(
            balance_key(app_id, user_id),
            {"_id": 0},
            session=self.session,
        )
        if not doc:
            return None
        return BalanceRecord.from_document(doc, app_id=app_id, user_id=user_id)

    async def get_app_config(self, app_id: str) -> Optional[AppConfig]:
        doc = await self.db[APPS_COLLECTION].find_one(
            {"app_id": app_id},
            {"_id": 0},
            session=self.session,
        )
        if not doc:
            return None
        return AppConfig.from_document(doc, app_id=app_id)

    async def create_balance(self, record: BalanceRecord) -> BalanceRecord:
        stamped = record.server_timestamp_fields()
        doc = {
            k: v for k, v in record.to_document().items()
            if k not in stamped and k not in ("app_id", "user_id")
        }

        # Upsert so $currentDate can stamp the insert with the server clock.
        # The caller has already seen no record inside this transaction.
        stored = await self.db[BALANCES_COLLECTION].find_one_and_update(
            balance_key(record.app_id, record.user_id),
            {
                "$setOnInsert": doc,
                "$currentDate": {field: True for field in stamped},
            },
            projection={"_id": 0},
            upsert=True,
            return_document=ReturnDocument.AFTER,
            session=self.session,
        )
        return BalanceRecord.from_document(stored, app_id=record.app_id, user_id=record.user_id)

    async def update_balance(self, app_id: str, user_id: str, changes: Dict[str, Any]) -> None:
        update: Dict[str, Any] = {"$set": changes}
        # Drop superseded legacy spellings so the record converges on one shape
        legacy = legacy_names_for(changes)
        if legacy:
            update["$unset"] = {name: "" for name in legacy}

        await self.db[BALANCES_COLLECTION].update_one(
            balance_key(app_id, user_id),
            update,
            session=self.session,
        )

    async def append_ledger(self, entry: LedgerEntry) -> None:
        doc = entry.model_dump(exclude={"ledger_id", "created_at"})
        await self.db[LEDGER_COLLECTION].update_one(
            {"ledger_id": entry.ledger_id},
            {
                "$setOnInsert": doc,
                "$currentDate": {"created_at": True},
            },
            upsert=True,
            session=self.session,
        )


class MongoCreditStore(CreditStore):
    """
    MongoDB-backed store.
    Transactions use a client session with snapshot reads and majority
    writes; Motor's with_transaction retries on transient conflicts.
    Requires a replica set or sharded cluster.
    """

    def __init__(self, client, db):
        self.client = client
        self.db = db

    async def run_transaction(self, callback: Callable[[CreditTransaction], Awaitable[T]]) -> T:
        async def _in_session(session):
            return await callback(MongoCreditTransaction(self.db, session))

        async with await self.client.start_session() as session:
            return await session.with_transaction(
                _in_session,
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
            )

    async def get_balance(self, app_id: str, user_id: str) -> Optional[BalanceRecord]:
        doc = await self.db[BALANCES_COLLECTION].find_one(balance_key(app_id, user_id), {"_id": 0})
        if not doc:
            return None
        return BalanceRecord.from_document(doc, app_id=app_id, user_id=user_id)

    async def list_balances(self, app_id: str, limit: int = 100, offset: int = 0) -> List[BalanceRecord]:
        # Records not yet migrated still carry their balance as `credits`
        pipeline = [
            {"$match": {"app_id": app_id}},
            {"$addFields": {"_sort_balance": {"$ifNull": ["$balance", "$credits"]}}},
            {"$sort": {"_sort_balance": -1, "user_id": 1}},
            {"$skip": offset},
            {"$limit": limit},
            {"$project": {"_id": 0, "_sort_balance": 0}},
        ]
        docs = await self.db[BALANCES_COLLECTION].aggregate(pipeline).to_list(limit)
        return [BalanceRecord.from_document(doc, app_id=app_id) for doc in docs]

    async def list_user_balances(self, user_id: str) -> List[BalanceRecord]:
        cursor = self.db[BALANCES_COLLECTION].find(
            {"user_id": user_id},
            {"_id": 0},
        ).sort("app_id", 1)

        docs = await cursor.to_list(length=None)
        return [BalanceRecord.from_document(doc, user_id=user_id) for doc in docs]

    async def list_ledger(
        self,
        app_id: str,
        user_id: Optional[str] = None,
        source: Optional[LedgerSource] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[LedgerEntry]:
        query: Dict[str, Any] = {"app_id": app_id}
        if user_id:
            query["user_id"] = user_id
        if source:
            query["source"] = LedgerSource(source).value

        cursor = self.db[LEDGER_COLLECTION].find(
            query,
            {"_id": 0},
        ).sort([("created_at", -1), ("_id", -1)]).skip(offset).limit(limit)

        docs = await cursor.to_list(limit)
        return [LedgerEntry.model_validate(doc) for doc in docs]


async def ensure_credit_indexes(db) -> None:
    """Create indexes for balance, ledger and registry collections."""
    await db[BALANCES_COLLECTION].create_index([("app_id", 1), ("user_id", 1)], unique=True)
    await db[BALANCES_COLLECTION].create_index([("app_id", 1), ("balance", -1)])
    await db[BALANCES_COLLECTION].create_index([("user_id", 1), ("app_id", 1)])
    await db[LEDGER_COLLECTION].create_index("ledger_id", unique=True)
    await db[LEDGER_COLLECTION].create_index([("app_id", 1), ("user_id", 1), ("created_at", -1)])
    await db[LEDGER_COLLECTION].create_index([("app_id", 1), ("created_at", -1)])
    await db[APPS_COLLECTION].create_index("app_id", unique=True)


async def seed_app_registry(db, apps: List[AppConfig] = None) -> int:
    """Insert known apps into the registry without touching existing entries.

    Returns the number of entries inserted.
    """
    inserted = 0
    for app in apps if apps is not None else DEFAULT_APPS:
        result = await db[APPS_COLLECTION].update_one(
            {"app_id": app.app_id},
            {"$setOnInsert": app.model_dump()},
            upsert=True,
        )
        if result.upserted_id is not None:
            inserted += 1
    logger.info(f"App registry seeded: {inserted} inserted")
    return inserted
