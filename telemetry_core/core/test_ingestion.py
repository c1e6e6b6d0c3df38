import uuid
from unittest.mock import MagicMock

import pytest
from pymongo.errors import BulkWriteError, ServerSelectionTimeoutError

from telemetry_core.core import ingestion
from telemetry_core.core.errors import StoreFailure, UnknownUser
from telemetry_core.db.mongo import TelemetryStore
from telemetry_core.schemas.records import validate_record


def test_create_user_returns_fresh_ids(store, db):
    ids = set()
    for name in ("alice", "bob", "carol"):
        user_id, user = ingestion.create_user(store, validate_record("register", {"username": name}))
        assert user["id"] == user_id
        assert "_id" not in user
        ids.add(user_id)
    assert len(ids) == 3
    assert db["users"].count_documents({}) == 3


def test_update_user_is_last_write_wins(store, db):
    user_id, _ = ingestion.create_user(store, validate_record("register", {"username": "alice"}))
    for phone in ("+331", "+332"):
        ingestion.update_user(store, validate_record("register", {"id": user_id, "username": "alice2", "phone": phone}))
    assert db["users"].count_documents({}) == 1
    stored = db["users"].find_one({"id": user_id})
    assert stored["username"] == "alice2"
    assert stored["phone"] == "+332"


def test_update_unknown_user_creates_nothing(store, db):
    command = validate_record("register", {"id": str(uuid.uuid4()), "username": "ghost"})
    with pytest.raises(UnknownUser):
        ingestion.update_user(store, command)
    assert db["users"].count_documents({}) == 0


def test_consent_is_recorded_as_given(store, db):
    ingestion.record_consent(store, validate_record("consent", {"user_id": "u1", "consent_text": "Location sharing"}))
    row = db["consent_logs"].find_one({"user_id": "u1"})
    assert row["given"] is True
    assert row["consent_text"] == "Location sharing"
    assert row["created_at"] is not None


def test_location_keeps_ip_and_null_accuracy(store, db):
    report = validate_record("location", {"user_id": "u1", "latitude": 48.8, "longitude": 2.3})
    row_id = ingestion.record_location(store, report, ip="1.2.3.4")
    row = db["device_locations"].find_one({"id": row_id})
    assert row["ip"] == "1.2.3.4"
    assert row["accuracy"] is None
    assert (row["latitude"], row["longitude"]) == (48.8, 2.3)


@pytest.mark.parametrize("n", [0, 1, 7])
def test_call_batch_inserts_exactly_n_rows(store, db, n):
    calls = [{"number": f"+3360000000{i}", "duration_seconds": i} for i in range(n)]
    inserted = ingestion.record_calls(store, validate_record("calls", {"user_id": "u1", "calls": calls}))
    assert inserted == n
    rows = list(db["call_logs"].find({}))
    assert len(rows) == n
    assert {row["user_id"] for row in rows} <= {"u1"}
    assert len({row["created_at"] for row in rows}) <= 1


def test_call_rows_keep_started_at_apart_from_created_at(store, db):
    report = validate_record("calls", {"user_id": "u1", "calls": [{"number": "+331", "started_at": "2025-12-31T23:59:00"}]})
    ingestion.record_calls(store, report)
    row = db["call_logs"].find_one({})
    assert row["started_at"].year == 2025
    assert row["created_at"].year == 2026
    assert row["direction"] is None


def test_partial_batch_is_rolled_back():
    collection = MagicMock()
    collection.insert_many.side_effect = BulkWriteError({"nInserted": 2, "writeErrors": [{"errmsg": "duplicate"}]})
    db = MagicMock()
    db.__getitem__.return_value = collection
    store = TelemetryStore(db)

    report = validate_record("calls", {"user_id": "u1", "calls": [{"number": "1"}, {"number": "2"}, {"number": "3"}]})
    with pytest.raises(StoreFailure):
        ingestion.record_calls(store, report)

    discarded = collection.delete_many.call_args[0][0]["id"]["$in"]
    assert len(discarded) == 2


def test_store_errors_surface_as_store_failure():
    collection = MagicMock()
    collection.insert_one.side_effect = ServerSelectionTimeoutError("no servers available")
    db = MagicMock()
    db.__getitem__.return_value = collection
    store = TelemetryStore(db)

    with pytest.raises(StoreFailure, match="no servers available"):
        ingestion.record_consent(store, validate_record("consent", {"user_id": "u1", "consent_text": "ok"}))


def test_ip_location_row(store, db):
    fields = {"city": None, "region": None, "country": "FR", "loc": None, "provider": None}
    ingestion.record_ip_location(store, "u1", "1.2.3.4", fields)
    row = db["ip_locations"].find_one({"user_id": "u1"})
    assert row["ip"] == "1.2.3.4"
    assert row["country"] == "FR"
    assert row["city"] is None


def test_update_keeps_fields_not_sent(store, db):
    user_id, _ = ingestion.create_user(store, validate_record("register", {"username": "alice", "phone": "+331"}))
    ingestion.update_user(store, validate_record("register", {"id": user_id, "username": "alice2"}))
    stored = db["users"].find_one({"id": user_id})
    assert stored["username"] == "alice2"
    assert stored["phone"] == "+331"


def test_update_with_explicit_null_clears_field(store, db):
    user_id, _ = ingestion.create_user(store, validate_record("register", {"username": "alice", "phone": "+331"}))
    ingestion.update_user(store, validate_record("register", {"id": user_id, "phone": None}))
    stored = db["users"].find_one({"id": user_id})
    assert stored["username"] == "alice"
    assert stored["phone"] is None


def test_update_without_fields_still_checks_user(store):
    user_id, _ = ingestion.create_user(store, validate_record("register", {"username": "alice"}))
    assert ingestion.update_user(store, validate_record("update", {"id": user_id})) == user_id
    with pytest.raises(UnknownUser):
        ingestion.update_user(store, validate_record("update", {"id": str(uuid.uuid4())}))


def test_unencodable_call_number_is_a_store_failure():
    collection = MagicMock()
    collection.insert_many.side_effect = OverflowError("MongoDB can only handle up to 8-byte ints")
    db = MagicMock()
    db.__getitem__.return_value = collection
    store = TelemetryStore(db)

    report = validate_record("calls", {"user_id": "u1", "calls": [{"number": 10 ** 20}]})
    with pytest.raises(StoreFailure, match="8-byte ints"):
        ingestion.record_calls(store, report)
