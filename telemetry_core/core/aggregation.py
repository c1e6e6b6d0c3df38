"""
Latest-known-state reconstruction for the admin view.

Locations, IP lookups and calls arrive as independent append-only streams,
so "most recent" is computed per stream per user: one bounded query per
signal, no join. That is O(users x signals) round-trips, the known scaling
limit of this view. The three queries are not snapshot-isolated, so a
snapshot may mix signals written a moment apart.
"""
import logging

from telemetry_core.config import (
    ADMIN_CALL_LIMIT,
    ADMIN_USER_LIMIT,
    CALLS_COLLECTION,
    IP_LOCATIONS_COLLECTION,
    LOCATIONS_COLLECTION,
)
from telemetry_core.core.errors import UnknownUser

logger = logging.getLogger(__name__)


def _first(rows):
    return rows[0] if rows else None


def build_snapshot(store, user, call_limit=ADMIN_CALL_LIMIT):
    user_id = user["id"]
    last_location = _first(store.latest(LOCATIONS_COLLECTION, user_id, 1))
    last_ip = _first(store.latest(IP_LOCATIONS_COLLECTION, user_id, 1))
    calls = store.latest(CALLS_COLLECTION, user_id, call_limit, order_by="started_at")
    return {
        "user": user,
        "last_location": last_location,
        "last_ip": last_ip,
        "calls": calls,
    }


def list_user_snapshots(store, user_limit=ADMIN_USER_LIMIT, call_limit=ADMIN_CALL_LIMIT):
    """Snapshots for the most recently registered users, newest first."""
    user_limit = max(0, min(int(user_limit), ADMIN_USER_LIMIT))
    call_limit = max(0, min(int(call_limit), ADMIN_CALL_LIMIT))
    if user_limit == 0:
        return []
    users = store.recent_users(user_limit)
    results = [build_snapshot(store, user, call_limit) for user in users]
    logger.info(f"[✓] Aggregated {len(results)} user snapshot(s)")
    return results


def get_user_snapshot(store, user_id, call_limit=ADMIN_CALL_LIMIT):
    user = store.find_user(user_id)
    if user is None:
        raise UnknownUser(user_id)
    call_limit = max(0, min(int(call_limit), ADMIN_CALL_LIMIT))
    return build_snapshot(store, user, call_limit)
