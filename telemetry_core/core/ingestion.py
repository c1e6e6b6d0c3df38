import logging
import uuid

from telemetry_core.config import (
    CALLS_COLLECTION,
    CONSENT_COLLECTION,
    IP_LOCATIONS_COLLECTION,
    LOCATIONS_COLLECTION,
    USERS_COLLECTION,
)
from telemetry_core.core.errors import TelemetryError, UnknownUser

logger = logging.getLogger(__name__)


def new_id():
    return str(uuid.uuid4())


def create_user(store, command):
    """Insert a new user and return (user_id, stored user document)."""
    user_doc = {
        "id": new_id(),
        "username": command.username,
        "phone": command.phone,
        "created_at": store.now(),
    }
    try:
        store.insert(USERS_COLLECTION, user_doc)
    except TelemetryError as e:
        logger.error(f"[✗] Error creating user {command.username!r}: {e}")
        raise
    logger.info(f"[✓] Created user {user_doc['id']}")
    return user_doc["id"], user_doc


def update_user(store, command):
    """
    Overwrite the username/phone sent by the client (last write wins).

    Fields absent from the request keep their stored value. An id that
    matches no user raises UnknownUser: no row is created.
    """
    user_id = str(command.id)
    fields = command.model_dump(exclude_unset=True, exclude={"id"})
    if fields:
        exists = store.update_user(user_id, fields)
    else:
        exists = store.find_user(user_id) is not None
    if not exists:
        logger.warning(f"[✗] Update for unknown user {user_id}")
        raise UnknownUser(user_id)
    logger.info(f"[✓] Updated user {user_id}")
    return user_id


def record_consent(store, consent):
    """Append one consent grant and return its id."""
    row = {
        "id": new_id(),
        "user_id": consent.user_id,
        "consent_text": consent.consent_text,
        "given": True,
        "created_at": store.now(),
    }
    store.insert(CONSENT_COLLECTION, row)
    logger.info(f"[✓] Logged consent {row['id']} for user {consent.user_id}")
    return row["id"]


def record_location(store, report, ip=None):
    """Append one GPS ping, tagged with the reporting client's IP."""
    row = {
        "id": new_id(),
        "user_id": report.user_id,
        "latitude": report.latitude,
        "longitude": report.longitude,
        "accuracy": report.accuracy,
        "ip": ip,
        "created_at": store.now(),
    }
    store.insert(LOCATIONS_COLLECTION, row)
    logger.info(f"[✓] Stored location {row['id']} for user {report.user_id}")
    return row["id"]


def build_call_rows(user_id, calls, created_at):
    return [
        {
            "id": new_id(),
            "user_id": user_id,
            "number": call.number,
            "direction": call.direction,
            "started_at": call.started_at,
            "duration_seconds": call.duration_seconds,
            "created_at": created_at,
        }
        for call in calls
    ]


def record_calls(store, report):
    """
    Append a call-log batch in one insert and return the number of rows.

    All rows share the report's user_id and a single ingestion timestamp;
    the call's own started_at is kept separately. An empty batch writes
    nothing and returns 0.
    """
    rows = build_call_rows(report.user_id, report.calls, store.now())
    inserted = store.insert_batch(CALLS_COLLECTION, rows)
    logger.info(f"[✓] Stored {inserted} call log(s) for user {report.user_id}")
    return inserted


def record_ip_location(store, user_id, ip, fields):
    """Append one IP geolocation result. `fields` comes from GeoLookup.to_ip_location."""
    row = {
        "id": new_id(),
        "user_id": user_id,
        "ip": ip,
        **fields,
        "created_at": store.now(),
    }
    store.insert(IP_LOCATIONS_COLLECTION, row)
    logger.info(f"[✓] Stored IP location {row['id']} ({ip}) for user {user_id}")
    return row["id"]
