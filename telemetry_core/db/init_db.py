import logging

from pymongo import ASCENDING, DESCENDING

from telemetry_core.config import CALLS_COLLECTION, LOG_LEVEL, USERS_COLLECTION
from telemetry_core.core.logging_config import setup_logging
from telemetry_core.db.mongo import SIGNAL_COLLECTIONS, get_db

logger = logging.getLogger(__name__)


def setup_users_collection(db):
    """Set up the users collection."""
    if USERS_COLLECTION not in db.list_collection_names():
        db.create_collection(USERS_COLLECTION)
    db[USERS_COLLECTION].create_index("id", unique=True)
    db[USERS_COLLECTION].create_index([("created_at", DESCENDING)])
    logger.info(f"[✓] Initialized {USERS_COLLECTION} collection")
    return db[USERS_COLLECTION]


def setup_signal_collection(db, name):
    """Set up one append-only signal collection with its latest-N index."""
    if name not in db.list_collection_names():
        db.create_collection(name)
    collection = db[name]
    collection.create_index("id", unique=True)
    collection.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    if name == CALLS_COLLECTION:
        collection.create_index([("user_id", ASCENDING), ("started_at", DESCENDING)])
    logger.info(f"[✓] Initialized {name} collection")
    return collection


def initialize_database(db):
    """Create every collection and index the telemetry core reads from."""
    try:
        setup_users_collection(db)
        for name in SIGNAL_COLLECTIONS:
            setup_signal_collection(db, name)
        logger.info(f"[✓] Collections initialized successfully in {db.name}")
    except Exception as e:
        logger.error(f"[✗] Error initializing database {db.name}: {e}")
        raise


if __name__ == "__main__":
    setup_logging(LOG_LEVEL)
    initialize_database(get_db())
