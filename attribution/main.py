"""
Application entry point for the attribution service.

Builds the FastAPI app: request correlation middleware, the JSON error
envelope shared by every failure path, health probes and the routers
(``/api/...`` plus the public ``/ref/{code}`` redirect).
"""
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

import attribution.models.db  # noqa: F401  registers every model on Base.metadata
from attribution.api import api_router, redirect_router
from attribution.database import Base, SessionLocal, engine
from attribution.utils import get_logger, setup_logging
from attribution.utils.observability import REQUEST_ID_HEADER, ensure_request_id, request_id_of

setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/attribution.log"),
)
logger = get_logger(__name__)

SERVICE_NAME = "affiliate-attribution"
VERSION = "1.0.0"

API_DESCRIPTION = """
Attributes betting-house conversions to affiliate tracking links and credits
commission exactly once per event.

* `/ref/{code}` records a click and sets the signed attribution cookie
* `/api/postback/{offer_token}/{event}` ingests house postbacks (click, registration, deposit)
* `/api/tracking/...` records first-party events using the cookie
* Offer, link and user management use `Authorization: Bearer <api_key>`
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Attribution service started", version=VERSION)
    yield
    logger.info("Attribution service stopped")


app = FastAPI(
    title="Affiliate Conversion Attribution",
    description=API_DESCRIPTION,
    version=VERSION,
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def correlate_requests(request: Request, call_next):
    """Assign a request id, echo it back and log one line per request."""
    request.state.request_id = request_id = ensure_request_id(request.headers)
    started = time.perf_counter()

    response = await call_next(request)

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Process-Time"] = str(elapsed_ms)
    response.headers["X-Content-Type-Options"] = "nosniff"

    # Path only: postback query strings carry house customer data.
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code}",
        status_code=response.status_code,
        duration_ms=elapsed_ms,
        client=request.client.host if request.client else None,
        request_id=request_id
    )
    return response


def error_envelope(
    request: Request,
    status_code: int,
    message: Any,
    reason: Optional[str] = None,
    retriable: Optional[bool] = None,
    headers: Optional[Dict[str, str]] = None,
    **extra: Any
) -> JSONResponse:
    """``{success: false, message, reason, retriable, request_id}`` as returned by every failing request."""
    body: Dict[str, Any] = {"success": False, "message": message}
    if reason is not None:
        body["reason"] = reason
    if retriable is not None:
        body["retriable"] = retriable
    body.update(extra)
    body["request_id"] = request_id_of(request)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def on_validation_error(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    logger.warning("Rejected request body", path=request.url.path, errors=errors, request_id=request_id_of(request))
    return error_envelope(
        request, 422, "Request validation failed",
        reason="validation_error", retriable=False, details=errors
    )


@app.exception_handler(StarletteHTTPException)
async def on_http_error(request: Request, exc: StarletteHTTPException):
    """Plain string details become the message; dict details also carry reason and retriable."""
    detail = exc.detail if isinstance(exc.detail, dict) else {"message": exc.detail}
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            path=request.url.path,
            status_code=exc.status_code,
            reason=detail.get("reason"),
            request_id=request_id_of(request)
        )
    return error_envelope(
        request,
        exc.status_code,
        detail.get("message"),
        reason=detail.get("reason"),
        retriable=bool(detail["retriable"]) if "retriable" in detail else None,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def on_unhandled_error(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error_type=type(exc).__name__,
        request_id=request_id_of(request),
        exc_info=True
    )
    return error_envelope(request, 500, "Internal server error", reason="internal_error", retriable=True)


def _service_info() -> Dict[str, Any]:
    return {"service": SERVICE_NAME, "version": VERSION, "timestamp": time.time()}


@app.get("/health", tags=["health"])
async def health():
    """Liveness probe."""
    return {"status": "healthy", **_service_info()}


@app.get("/health/detailed", tags=["health"])
def health_detailed():
    """Readiness probe; reports ``degraded`` when the database is unreachable."""
    database = "healthy"
    with SessionLocal() as session:
        try:
            session.execute(text("SELECT 1"))
        except Exception as exc:
            logger.warning("Database health check failed", error=str(exc))
            database = "unhealthy"
    return {
        "status": "healthy" if database == "healthy" else "degraded",
        **_service_info(),
        "checks": {"database": database},
    }


@app.get("/", tags=["root"])
async def root():
    return {"message": "Affiliate Conversion Attribution API", "version": VERSION, "docs": "/docs", "api_base": "/api"}


app.include_router(api_router, prefix="/api")
app.include_router(redirect_router)
