from datetime import datetime, timedelta

import httpx
import mongomock
import pytest
from fastapi.testclient import TestClient

from telemetry_core.api.routes import create_app
from telemetry_core.core.geo_lookup import GeoLookup
from telemetry_core.db.init_db import initialize_database
from telemetry_core.db.mongo import TelemetryStore


class TickingClock:
    """Deterministic store clock: every read is one second after the previous."""

    def __init__(self, start=datetime(2026, 1, 15, 9, 0, 0)):
        self.current = start

    def __call__(self):
        self.current = self.current + timedelta(seconds=1)
        return self.current


IPINFO_PARIS = {
    "ip": "1.2.3.4",
    "city": "Paris",
    "region": "Île-de-France",
    "country": "FR",
    "loc": "48.8534,2.3488",
    "org": "AS3215 Orange S.A.",
}


@pytest.fixture
def db():
    return mongomock.MongoClient()["telemetry_test"]


@pytest.fixture
def store(db):
    initialize_database(db)
    return TelemetryStore(db, clock=TickingClock())


@pytest.fixture
def ipinfo_calls():
    return []


@pytest.fixture
def ipinfo_handler(ipinfo_calls):
    def handler(request):
        ipinfo_calls.append(request)
        return httpx.Response(200, json=IPINFO_PARIS)
    return handler


@pytest.fixture
def geo_lookup(ipinfo_handler):
    http_client = httpx.Client(transport=httpx.MockTransport(ipinfo_handler))
    return GeoLookup(token="test-token", http_client=http_client, base_url="https://ipinfo.test")


@pytest.fixture
def client(store, geo_lookup):
    return TestClient(create_app(store=store, geo_lookup=geo_lookup))
