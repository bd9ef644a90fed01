"""
Persistent Store for the marketplace.

Four record collections (users, vehicles, temporary vehicles, transactions)
plus a `slots` collection holding scalar values addressed by key (the
current-user pointer and the anonymous session id).

Writes are serialized through one lock and record updates are
compare-and-set: `update(..., expected={...})` only applies while the stored
record still matches `expected`, and bumps the record's `version`.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Optional

from bson import ObjectId
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

USERS = "users"
VEHICLES = "vehicles"
TEMP_VEHICLES = "temp_vehicles"
TRANSACTIONS = "transactions"
SLOTS = "slots"
COLLECTIONS = [USERS, VEHICLES, TEMP_VEHICLES, TRANSACTIONS]

CURRENT_USER_KEY = "current_user"
SESSION_ID_KEY = "session_id"


def to_dict(doc):
    if not doc:
        return doc
    d = dict(doc)
    d.pop("_id", None)
    return d


class LocalStore:
    def __init__(self, database):
        if database is None:
            raise ValueError("Database not configured")
        self.db = database
        self._lock = threading.RLock()

    @contextmanager
    def locked(self):
        """Hold the single-writer lock across a multi-step read-modify-write."""
        with self._lock:
            yield

    def ensure_indexes(self):
        for name in COLLECTIONS:
            self.db[name].create_index([("id", ASCENDING)], unique=True)
        self.db[USERS].create_index([("email", ASCENDING)], unique=True)
        self.db[VEHICLES].create_index([("userId", ASCENDING)])
        self.db[TEMP_VEHICLES].create_index([("sessionId", ASCENDING)])
        self.db[SLOTS].create_index([("key", ASCENDING)], unique=True)

    # ------------------------- whole collections -------------------------

    def get_all(self, collection: str, query: dict = None, sort: Optional[list] = None, limit: Optional[int] = None):
        cursor = self.db[collection].find(query or {})
        cursor = cursor.sort(sort or [("_id", ASCENDING)])
        if limit:
            cursor = cursor.limit(limit)
        return [to_dict(d) for d in cursor]

    def set_all(self, collection: str, docs: list):
        """Replace the whole collection, keeping list order as insertion order."""
        with self._lock:
            self.db[collection].delete_many({})
            if docs:
                self.db[collection].insert_many([{**to_dict(d), "version": d.get("version", 1)} for d in docs])

    def count(self, collection: str, query: dict = None) -> int:
        return self.db[collection].count_documents(query or {})

    # ------------------------- single records -------------------------

    def get_by_id(self, collection: str, id_str: str):
        if not id_str:
            return None
        return to_dict(self.db[collection].find_one({"id": id_str}))

    def find_one(self, collection: str, query: dict):
        return to_dict(self.db[collection].find_one(query))

    def insert_with_id(self, collection: str, doc: dict) -> str:
        oid = ObjectId()
        record = {**doc, "_id": oid, "id": doc.get("id") or str(oid), "version": 1}
        with self._lock:
            self.db[collection].insert_one(record)
        return record["id"]

    def update(self, collection: str, id_str: str, changes: dict, expected: dict = None):
        """Apply `changes` if the record exists and still matches `expected`.

        Returns the updated record, or None when nothing matched.
        """
        query = {"id": id_str, **(expected or {})}
        with self._lock:
            doc = self.db[collection].find_one_and_update(
                query,
                {"$set": changes, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
        return to_dict(doc)

    def delete(self, collection: str, id_str: str, expected: dict = None) -> bool:
        with self._lock:
            res = self.db[collection].delete_one({"id": id_str, **(expected or {})})
        return res.deleted_count > 0

    def delete_many(self, collection: str, query: dict) -> int:
        with self._lock:
            res = self.db[collection].delete_many(query)
        return res.deleted_count

    # ------------------------- scalar slots -------------------------

    def get_value(self, key: str):
        doc = self.db[SLOTS].find_one({"key": key})
        return doc.get("value") if doc else None

    def set_value(self, key: str, value):
        with self._lock:
            self.db[SLOTS].update_one({"key": key}, {"$set": {"value": value}}, upsert=True)

    def clear_value(self, key: str):
        with self._lock:
            self.db[SLOTS].delete_one({"key": key})

    def clear_all(self):
        with self._lock:
            for name in COLLECTIONS + [SLOTS]:
                self.db[name].delete_many({})

    def ping(self) -> bool:
        try:
            self.db.list_collection_names()
            return True
        except PyMongoError as e:
            logger.error("Local store unreachable: %s", e)
            return False
