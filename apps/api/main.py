import json
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from core.config import get_settings
from core.contracts import ErrorCode, error_body
from core.db import Base, SessionLocal, engine
from core.failure_modes import FailureClass, failure_policy, record_operation_failure
from core.logging_utils import configure_logging, log_request, monotonic_ms, request_id_from_request
import models  # noqa: F401  registers tables on Base.metadata
from routers.documents import router as documents_router
from routers.health import current_alembic_heads, router as health_router
from routers.registrations import router as registrations_router

settings = get_settings()
configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Registration Consent API",
    description=(
        "Tracks multi-party document signatures for event registrations and keeps each "
        "registration's consent status in sync. Authenticate with `Authorization: Bearer <api_key>`."
    ),
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    openapi_tags=[
        {"name": "documents", "description": "Signature recording."},
        {"name": "registrations", "description": "Registration consent progress."},
        {"name": "health", "description": "Operational liveness and diagnostics."},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Api-Key", "X-Request-Id"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request_id_from_request(request)
    request.state.request_id = request_id
    started = monotonic_ms()
    response = await call_next(request)
    if (
        response.status_code < 400
        and response.headers.get("content-type", "").startswith("application/json")
    ):
        body = b""
        async for chunk in response.body_iterator:
            body += chunk
        try:
            decoded = json.loads(body.decode("utf-8")) if body else None
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, dict) and ("data" in decoded or "error" in decoded):
            wrapped = decoded
        else:
            wrapped = {"data": decoded}
        response = JSONResponse(content=wrapped, status_code=response.status_code)
    response.headers["X-Request-Id"] = request_id
    elapsed = monotonic_ms() - started
    log_request(request_id, request.method, request.url.path, response.status_code, elapsed)
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _map_http_error_code(status_code: int, detail: str) -> ErrorCode:
    lowered = (detail or "").lower()
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 403:
        return ErrorCode.FORBIDDEN
    if status_code == 401 and "missing" in lowered:
        return ErrorCode.AUTH_MISSING
    if status_code == 401:
        return ErrorCode.AUTH_INVALID
    if status_code == 422:
        return ErrorCode.VALIDATION_ERROR
    if status_code == 409:
        return ErrorCode.CONFLICT
    return ErrorCode.INTERNAL_ERROR


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    message = "Request could not be processed"
    if exc.status_code in {401, 403, 404, 409, 422}:
        message = str(exc.detail) if isinstance(exc.detail, str) else message
    code = _map_http_error_code(exc.status_code, str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, message, _request_id(request)),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=error_body(
            ErrorCode.VALIDATION_ERROR,
            "Request validation failed",
            _request_id(request),
        ),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    policy = failure_policy(exc)
    record_operation_failure(
        operation="http.request",
        exc=exc,
        resource_type="request",
        extra_payload={
            "path": request.url.path,
            "request_id": _request_id(request),
        },
    )
    code = ErrorCode.INTERNAL_ERROR
    message = "Internal server error"
    if policy.failure_class == FailureClass.DB_CONSTRAINT_VIOLATION:
        code, message = ErrorCode.CONFLICT, "Conflicting write"
    elif policy.http_status == 503:
        code, message = ErrorCode.SERVICE_UNAVAILABLE, "Service temporarily unavailable"
    return JSONResponse(
        status_code=policy.http_status,
        content=error_body(code, message, _request_id(request)),
    )


app.include_router(health_router)


@app.get("/")
def root():
    return {"status": "Registration Consent API running"}


app.include_router(documents_router)
app.include_router(registrations_router)


@app.on_event("startup")
async def on_startup() -> None:
    migration_heads = current_alembic_heads()
    logger.info(
        "startup env=%s version_hash=%s migration_head=%s",
        settings.env,
        settings.version_hash,
        migration_heads,
    )

    if settings.expected_alembic_head and settings.expected_alembic_head != migration_heads:
        raise RuntimeError(
            f"migration head mismatch: expected {settings.expected_alembic_head}, found {migration_heads}"
        )
    if settings.env == "prod" and not settings.expected_alembic_head:
        logger.warning("EXPECTED_ALEMBIC_HEAD is not set; skipping migration-head enforcement")
    if settings.env == "dev" and settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)

    connectivity_session = SessionLocal()
    try:
        connectivity_session.execute(text("SELECT 1"))
    except Exception as exc:
        raise RuntimeError("database connectivity check failed") from exc
    finally:
        connectivity_session.close()
