"""
HTTP surface of the telemetry core.

Every response is `{"ok": true, ...}` or `{"ok": false, "error": ...}`.
Store and provider calls are blocking pymongo/httpx calls and run in the
threadpool, so the event loop only waits on I/O.
"""
import json
import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from telemetry_core.config import ADMIN_USER_LIMIT, API_HOST, API_PORT, LOG_LEVEL, MAX_BODY_BYTES
from telemetry_core.core import aggregation, ingestion
from telemetry_core.core.errors import PayloadTooLarge, TelemetryError, ValidationFailure
from telemetry_core.core.geo_lookup import GeoLookup
from telemetry_core.core.logging_config import setup_logging
from telemetry_core.core.network import resolve_client_ip
from telemetry_core.db.mongo import TelemetryStore, get_db
from telemetry_core.schemas.records import UpdateUser, validate_record

logger = logging.getLogger(__name__)


def failure(status_code, message):
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


async def read_json_body(request: Request):
    """Raw body capped at MAX_BODY_BYTES, then parsed as JSON."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        raise PayloadTooLarge(f"request body exceeds {MAX_BODY_BYTES} bytes")
    raw = await request.body()
    if len(raw) > MAX_BODY_BYTES:
        raise PayloadTooLarge(f"request body exceeds {MAX_BODY_BYTES} bytes")
    if not raw:
        raise ValidationFailure("request body is empty", ["body"])
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ValidationFailure("request body is not valid JSON", ["body"]) from e


def peer_address(request: Request):
    return request.client.host if request.client else None


def create_app(store=None, geo_lookup=None):
    """
    Build the API around an explicit store and geo lookup.

    Missing collaborators are built from configuration; a missing MONGO_URI
    raises ConfigurationFailure here, at startup.
    """
    if store is None:
        store = TelemetryStore(get_db())
    if geo_lookup is None:
        geo_lookup = GeoLookup()

    app = FastAPI(title="Device Telemetry Core")
    app.state.store = store
    app.state.geo_lookup = geo_lookup

    @app.exception_handler(TelemetryError)
    async def telemetry_error_handler(request: Request, exc: TelemetryError):
        endpoint = f"{request.method} {request.url.path}"
        if exc.http_status < 500:
            logger.info(f"{endpoint} rejected: {exc.message}")
        else:
            logger.error(f"[✗] {endpoint} error: {exc.message}")
        return failure(exc.http_status, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
        return failure(400, f"invalid or missing field(s): {', '.join(fields)}")

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"[✗] {request.method} {request.url.path} error: {exc}")
        return failure(500, str(exc) or exc.__class__.__name__)

    @app.post("/users")
    async def register_user(request: Request):
        command = validate_record("register", await read_json_body(request))
        if isinstance(command, UpdateUser):
            user_id = await run_in_threadpool(ingestion.update_user, store, command)
            return {"ok": True, "id": user_id}
        user_id, user = await run_in_threadpool(ingestion.create_user, store, command)
        return {"ok": True, "id": user_id, "user": user}

    @app.put("/users/{user_id}")
    async def update_user(user_id: str, request: Request):
        body = await read_json_body(request)
        if not isinstance(body, dict):
            raise ValidationFailure("request body must be a JSON object", ["body"])
        command = validate_record("update", {**body, "id": user_id})
        user_id = await run_in_threadpool(ingestion.update_user, store, command)
        return {"ok": True, "id": user_id}

    @app.post("/consent")
    async def consent(request: Request):
        record = validate_record("consent", await read_json_body(request))
        await run_in_threadpool(ingestion.record_consent, store, record)
        return {"ok": True}

    @app.post("/report-location")
    async def report_location(request: Request):
        ip = resolve_client_ip(request.headers, peer_address(request))
        report = validate_record("location", await read_json_body(request))
        await run_in_threadpool(ingestion.record_location, store, report, ip)
        return {"ok": True}

    @app.post("/report-calls")
    async def report_calls(request: Request):
        report = validate_record("calls", await read_json_body(request))
        inserted = await run_in_threadpool(ingestion.record_calls, store, report)
        return {"ok": True, "inserted": inserted}

    @app.post("/report-ip")
    async def report_ip(request: Request):
        geo_lookup.require_token()
        report = validate_record("ip", await read_json_body(request))
        ip = resolve_client_ip(request.headers, peer_address(request))
        if ip:
            geo = await run_in_threadpool(geo_lookup.lookup, ip)
        else:
            logger.warning(f"No client IP for user {report.user_id}, storing an empty IP location")
            geo = {}
        fields = geo_lookup.to_ip_location(geo)
        await run_in_threadpool(ingestion.record_ip_location, store, report.user_id, ip, fields)
        return {"ok": True, "geo": geo}

    @app.get("/admin/users")
    async def admin_users(limit: int = Query(ADMIN_USER_LIMIT, ge=1)):
        results = await run_in_threadpool(aggregation.list_user_snapshots, store, limit)
        return {"ok": True, "results": results}

    @app.get("/admin/users/{user_id}")
    async def admin_user(user_id: str):
        result = await run_in_threadpool(aggregation.get_user_snapshot, store, user_id)
        return {"ok": True, "result": result}

    @app.get("/health")
    async def health():
        return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}

    return app


def main():
    setup_logging(LOG_LEVEL)
    app = create_app()
    logger.info(f"Server listening on {API_HOST}:{API_PORT}")
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
