"""
api/main.py -- FastAPI application entry point for Capgate.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan wires the shared auth collaborators onto app.state at startup:
  user_store     -- UserStore (SQLAlchemy) at Settings.database_url
  role_registry  -- RoleRegistry over the store; default roles seeded here
  token_service  -- the process-wide TokenService (process-wide used-token set)
  authenticator  -- Authenticator over the three above
and disposes the store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.authenticator import Authenticator
from auth.errors import AuthError, InfrastructureError
from auth.roles import DEFAULT_ROLES, RoleRegistry
from auth.store import UserStore
from auth.tokens import get_token_service
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("capgate.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def wire_auth(app: FastAPI, user_store: UserStore, token_service) -> None:
    """Attach the auth collaborators to app.state and seed the default roles.

    Shared by the real lifespan and the test lifespan so both build the same
    object graph.
    """
    registry = RoleRegistry(user_store)
    registry.seed(DEFAULT_ROLES)
    app.state.user_store = user_store
    app.state.role_registry = registry
    app.state.token_service = token_service
    app.state.authenticator = Authenticator(user_store, registry, token_service)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build shared resources on startup and release them on shutdown.

    Startup fails fast when configuration is invalid (missing SECRET_KEY in
    production) or the store cannot be opened.
    """
    logger.info("Capgate API starting up")
    settings = get_settings()
    token_service = get_token_service()
    wire_auth(app, UserStore(settings.database_url), token_service)
    logger.info(
        "Auth initialized (token_lifetime=%ss, single_use_tokens=%s)",
        token_service.lifetime,
        token_service.single_use,
    )

    yield

    app.state.user_store.close()
    logger.info("Capgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Capgate API",
    description="Token issuance, verification and capability-gated authorization.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    allow_credentials=True,
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is {"error": {"code", "message", "detail"?}}. Auth failures
# only ever expose their public code; the detailed kind stays in the log.
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True), headers=headers)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map AuthErrors that escaped a route's own handling."""
    if isinstance(exc, InfrastructureError):
        logger.error("Auth infrastructure failure on %s %s: %s", request.method, request.url.path, exc.code)
    else:
        logger.info("Auth failure on %s %s: %s", request.method, request.url.path, exc.code)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return _error_response(exc.status_code, exc.public_code, exc.public_message, headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    client = request.client.host if request.client else "unknown"
    logger.warning("Rate limit hit on %s from %s", request.url.path, client)
    retry_after = str(int(getattr(exc, "retry_after", 60)))
    return _error_response(429, "rate_limited", "Too many requests.", str(exc), {"Retry-After": retry_after})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Input values are left out of the body so a rejected password is never echoed.
    fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
    return _error_response(422, "validation_error", "Request validation failed.", fields or None)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Routes and auth dependencies raise HTTPException with a {"code", "message"} detail."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort. The raw exception goes to the log only, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
