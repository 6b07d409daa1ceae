# oracle_bridge/app.py
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

# Load .env BEFORE any oracle_bridge imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import FastAPI, Request, Path, Query
from fastapi.responses import JSONResponse, Response, PlainTextResponse
from pydantic import BaseModel, Field

from oracle_bridge.consumer import OracleConsumer
from oracle_bridge.errors import OracleError
from oracle_bridge import monitoring
from oracle_bridge import auth as authmod
from oracle_bridge import db as dbmod

HISTORY_ALL_LIMIT = int(os.getenv("HISTORY_ALL_LIMIT", "1000"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # close the gateway client of whichever consumer is live at shutdown
    consumer.transport.close()


app = FastAPI(title="Oracle Bridge API", lifespan=lifespan)

# Initialize DB tables on startup
dbmod.init_db()

# instantiate consumer once
consumer = OracleConsumer()

API_KEY_HEADER = "x-api-key"


def _error(status_code: int, error_code: str, message: str,
           request_id: Optional[str] = None, details: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "request_id": request_id,
            "status": "error",
            "error_code": error_code,
            "message": message,
            "details": details or {},
        },
    )


# ---------------------------------------------------------------------------
# Auth middleware (runs on /api/* paths)
# ---------------------------------------------------------------------------
@app.middleware("http")
async def api_key_middleware(request: Request, call_next):
    path = request.url.path
    if not path.startswith("/api/"):
        return await call_next(request)

    api_key = request.headers.get(API_KEY_HEADER)
    if not authmod.is_key_allowed(api_key):
        return JSONResponse(status_code=401, content={"detail": "Missing or invalid API key"})

    return await call_next(request)


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", endpoint)
        status = str(response.status_code)
        return response
    except Exception:
        monitoring.logger.exception("Unhandled exception in request", extra={"path": request.url.path})
        raise
    finally:
        monitoring.observe_request(start, endpoint, method, status)


@app.exception_handler(OracleError)
async def oracle_error_handler(request: Request, exc: OracleError):
    request_id = exc.details.get("request_id") if isinstance(exc.details, dict) else None
    return _error(exc.http_status, exc.error_code, exc.message, request_id=request_id, details=exc.details)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class SubmitRequest(BaseModel):
    lookup_key: str
    secondary_key: str = ""
    originator: Optional[str] = None


class CallbackRequest(BaseModel):
    request_id: str
    response: str = ""
    err: str = ""


class MaintenanceRequest(BaseModel):
    max_age_seconds: float = Field(..., ge=0)


class ConfigUpdate(BaseModel):
    source: Optional[str] = None
    gas_limit: Optional[int] = None
    don_id: Optional[str] = None
    subscription_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@app.post("/api/oracle/requests")
def submit_request(req: SubmitRequest):
    """
    POST /api/oracle/requests
    Body: { "lookup_key": "2025-01-19", "secondary_key": "", "originator": "..." }
    """
    monitoring.logger.info("Received submit request", extra={"lookup_key": req.lookup_key[:200]})
    originator = req.originator or "anonymous"
    try:
        request_id = consumer.submit(req.lookup_key, req.secondary_key, originator=originator)
    except OracleError:
        raise
    except Exception as e:
        monitoring.logger.exception("Unexpected error in submit handler")
        return _error(500, "E_INTERNAL", "Internal server error", details={"exception": str(e)})
    return JSONResponse(status_code=202, content={"request_id": request_id, "status": "sent"})


@app.post("/api/oracle/callback")
def fulfillment_callback(req: CallbackRequest):
    """
    POST /api/oracle/callback
    Body: { "request_id": "...", "response": "...", "err": "..." }
    Called by the gateway once per request.
    """
    try:
        entry = consumer.fulfill(req.request_id, req.response.encode("utf-8"), req.err.encode("utf-8"))
    except OracleError:
        raise
    except Exception as e:
        monitoring.logger.exception("Unexpected error in callback handler")
        return _error(500, "E_INTERNAL", "Internal server error", request_id=req.request_id,
                      details={"exception": str(e)})
    return {"request_id": req.request_id, "status": "success", "entry": entry.model_dump(mode="json")}


@app.get("/api/oracle/requests/{request_id}")
def get_request_status(request_id: str = Path(..., description="Request ID to fetch")):
    status = consumer.status(request_id)
    if not status.exists:
        return _error(404, "E_UNKNOWN_REQUEST", "Request not found", request_id=request_id)
    return {"request_id": request_id, "status": "success", "record": status.to_api()}


@app.get("/api/oracle/history/all")
def get_history_all(limit: Optional[int] = Query(None, ge=1)):
    """Full history, capped at HISTORY_ALL_LIMIT entries; use /history?start=&end= to page."""
    limit = min(limit or HISTORY_ALL_LIMIT, HISTORY_ALL_LIMIT)
    page = consumer.history_page(limit)
    return {"status": "success", **page.model_dump(mode="json")}


@app.get("/api/oracle/history/key/{lookup_key:path}")
def get_history_by_key(lookup_key: str):
    entry = consumer.entry_by_key(lookup_key)
    return {"status": "success", "entry": entry.model_dump(mode="json")}


@app.get("/api/oracle/history")
def get_history_range(start: int = Query(...), end: int = Query(...)):
    entries = consumer.history(start, end)
    return {"status": "success", "entries": [e.model_dump(mode="json") for e in entries]}


@app.get("/api/oracle/last")
def get_last():
    sent = consumer.last_sent()
    fulfilled = consumer.last_fulfilled()
    return {
        "status": "success",
        "last_sent": sent.model_dump(mode="json") if sent else None,
        "last_fulfilled": fulfilled.model_dump(mode="json") if fulfilled else None,
    }


@app.post("/api/oracle/maintenance/stale")
def mark_stale(req: MaintenanceRequest):
    ids = consumer.mark_stale(req.max_age_seconds)
    return {"status": "success", "stale_request_ids": ids}


@app.post("/api/oracle/maintenance/archive")
def archive_history(req: MaintenanceRequest):
    archived = consumer.archive(req.max_age_seconds)
    return {
        "status": "success",
        "archived": len(archived),
        "through_position": archived[-1].position if archived else None,
    }


@app.get("/api/oracle/config")
def get_config():
    return {"status": "success", "config": consumer.config.public()}


@app.put("/api/oracle/config")
def put_config(req: ConfigUpdate, request: Request):
    if not authmod.is_admin_key(request.headers.get(API_KEY_HEADER)):
        return _error(403, "E_FORBIDDEN", "Admin API key required")
    changes = req.model_dump(exclude_none=True)
    config = consumer.update_config(**changes)
    return {"status": "success", "config": config.public()}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
