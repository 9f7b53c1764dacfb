from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.sales import router as sales_router
from .routers.purchases import router as purchases_router
from .routers.collections import router as collections_router
from .routers.taxes import router as taxes_router
from .config import settings
from .db import get_conn, close_pool
from .logs import _json_log

app = FastAPI(title="Commerce Back-Office API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _failure(status_code: int, error: str, code=None, **extra) -> JSONResponse:
    content = {"success": False, "error": error, "code": code, **extra}
    return JSONResponse(status_code=status_code, content=content)


# Operation failures (guards, not-found, conflicts) share one envelope.
@app.exception_handler(HTTPException)
def _http_exception(_req: Request, exc: HTTPException):
    return _failure(exc.status_code, str(exc.detail), getattr(exc, "code", None))


# Postgres constraint and cast failures surface as 4xx with a stable code.
_PG_ERRORS = {
    pg_errors.InvalidTextRepresentation: (400, "invalid value", "invalid_value"),
    pg_errors.ForeignKeyViolation: (400, "invalid reference", "invalid_reference"),
    pg_errors.UniqueViolation: (409, "conflict", "conflict"),
    pg_errors.CheckViolation: (400, "constraint violation", "constraint_violation"),
}


def _pg_error_handler(status_code: int, error: str, code: str):
    def _handler(_req: Request, exc: Exception):
        extra = {"detail": str(exc)} if settings.env in {"local", "dev"} else {}
        return _failure(status_code, error, code, **extra)

    return _handler


for _exc_type, (_status, _error, _code) in _PG_ERRORS.items():
    app.add_exception_handler(_exc_type, _pg_error_handler(_status, _error, _code))


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    extra = {}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        extra["errors"] = exc.errors()
    return _failure(422, "validation failed", "validation_failed", **extra)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    _json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    extra = {"request_id": rid}
    if settings.env in {"local", "dev"}:
        extra["detail"] = str(exc)
    return _failure(500, "internal error", None, **extra)


# Every response carries X-Request-Id; non-health requests are logged as one JSON line.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)
    organization_id = request.headers.get("X-Organization-Id") or request.headers.get("X-Organization-Slug")

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        _json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            organization_id=organization_id,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path != "/health":
        dur_ms = int((time.time() - started) * 1000)
        _json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            organization_id=organization_id,
            duration_ms=dur_ms,
        )
    return response

# Back-office UI runs on a different origin during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(sales_router)
app.include_router(purchases_router)
app.include_router(collections_router)
app.include_router(taxes_router)


def _db_health():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.on_event("startup")
def _startup():
    ok, err = _db_health()
    if ok:
        _json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    else:
        _json_log("warning", "startup.db_unreachable", env=settings.env, error=err)


@app.on_event("shutdown")
def _shutdown():
    close_pool()


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    content = {
        "ok": ok,
        "status": "ok" if ok else "degraded",
        "env": settings.env,
        "db": "ok" if ok else "down",
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
    if not ok:
        if settings.env in {"local", "dev"}:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return content
