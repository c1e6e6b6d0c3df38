import logging
from datetime import datetime, timezone

from bson.errors import InvalidDocument
from pymongo import DESCENDING, MongoClient
from pymongo.errors import BulkWriteError, PyMongoError

from telemetry_core.config import (
    CALLS_COLLECTION,
    CONSENT_COLLECTION,
    DB_NAME,
    IP_LOCATIONS_COLLECTION,
    LOCATIONS_COLLECTION,
    MONGO_URI,
    USERS_COLLECTION,
)
from telemetry_core.core.errors import ConfigurationFailure, StoreFailure

logger = logging.getLogger(__name__)

SIGNAL_COLLECTIONS = (CONSENT_COLLECTION, LOCATIONS_COLLECTION, CALLS_COLLECTION, IP_LOCATIONS_COLLECTION)

# _id stays inside the store
PUBLIC = {"_id": 0}

# InvalidDocument and OverflowError come from the BSON encoder, before the write is sent
WRITE_ERRORS = (PyMongoError, InvalidDocument, OverflowError)


def utcnow():
    return datetime.now(timezone.utc)


def get_db(uri=None, db_name=None):
    """Open the long-lived client. A missing URI is a deployment error."""
    uri = uri or MONGO_URI
    if not uri:
        raise ConfigurationFailure("MONGO_URI is not configured")
    client = MongoClient(uri)
    return client[db_name or DB_NAME]


class TelemetryStore:
    """
    Thin query interface over the per-signal collections.

    Every driver error surfaces as StoreFailure carrying the driver's message.
    `clock` is the single source of created_at values.
    """

    def __init__(self, db, clock=utcnow):
        self.db = db
        self.clock = clock

    def now(self):
        return self.clock()

    def collection(self, name):
        return self.db[name]

    # --- writes ---

    def insert(self, name, doc):
        try:
            self.collection(name).insert_one(doc)
        except WRITE_ERRORS as e:
            raise StoreFailure(str(e)) from e
        # insert_one adds _id to the document in place
        doc.pop("_id", None)
        return doc

    def insert_batch(self, name, docs):
        """Insert all rows or none: a partial batch is removed before failing."""
        if not docs:
            return 0
        try:
            result = self.collection(name).insert_many(docs, ordered=True)
        except BulkWriteError as e:
            written = [doc["id"] for doc in docs[: e.details.get("nInserted", 0)]]
            if written:
                self._discard(name, written)
            raise StoreFailure(str(e)) from e
        except WRITE_ERRORS as e:
            raise StoreFailure(str(e)) from e
        for doc in docs:
            doc.pop("_id", None)
        return len(result.inserted_ids)

    def _discard(self, name, ids):
        try:
            self.collection(name).delete_many({"id": {"$in": ids}})
            logger.warning(f"[✗] Rolled back {len(ids)} partial rows in {name}")
        except PyMongoError as e:
            logger.error(f"[✗] Could not roll back partial batch in {name}: {e}")

    def update_user(self, user_id, fields):
        """Returns True when a user with this id exists."""
        try:
            result = self.collection(USERS_COLLECTION).update_one({"id": user_id}, {"$set": fields})
        except PyMongoError as e:
            raise StoreFailure(str(e)) from e
        return result.matched_count > 0

    # --- reads ---

    def find_user(self, user_id):
        try:
            return self.collection(USERS_COLLECTION).find_one({"id": user_id}, PUBLIC)
        except PyMongoError as e:
            raise StoreFailure(str(e)) from e

    def recent_users(self, limit):
        fields = {"_id": 0, "id": 1, "username": 1, "phone": 1, "created_at": 1}
        try:
            cursor = self.collection(USERS_COLLECTION).find({}, fields).sort("created_at", DESCENDING).limit(limit)
            return list(cursor)
        except PyMongoError as e:
            raise StoreFailure(str(e)) from e

    def latest(self, name, user_id, limit, order_by="created_at"):
        # limit(0) means "no limit" to the driver
        if limit <= 0:
            return []
        sort = [(order_by, DESCENDING)]
        if order_by != "created_at":
            sort.append(("created_at", DESCENDING))
        try:
            cursor = self.collection(name).find({"user_id": user_id}, PUBLIC).sort(sort).limit(limit)
            return list(cursor)
        except PyMongoError as e:
            raise StoreFailure(str(e)) from e
