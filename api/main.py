"""
api/main.py -- FastAPI application entry point for the archive auth service.

Exposes registration, login, Google sign-in, invitations and password
lifecycle over HTTP for the thesis archive front end.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- adds CORS headers for the configured browser origins
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan builds the user store and the upstream verifiers on startup and
closes the store on shutdown. Tests replace the lifespan to inject fakes.
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
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.captcha import RecaptchaVerifier
from auth.errors import AuthError
from auth.google import GoogleIdTokenVerifier
from auth.mailer import LoggingMailer
from auth.store import UserStore
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("archive.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the store, verifiers and mailer into app.state.

    Route handlers read every collaborator from app.state, never from module
    globals, so a test lifespan can swap in fakes without monkeypatching.
    """
    logger.info("Archive auth API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.captcha = RecaptchaVerifier(
        _settings.recaptcha_secret_key,
        _settings.recaptcha_verify_url,
        _settings.upstream_timeout_seconds,
    )
    app.state.id_token_verifier = GoogleIdTokenVerifier(
        _settings.google_client_id,
        _settings.google_certs_url,
        _settings.upstream_timeout_seconds,
        cache_seconds=_settings.google_certs_cache_seconds,
    )
    app.state.mailer = LoggingMailer()

    if not _settings.recaptcha_secret_key:
        logger.warning("RECAPTCHA_SECRET_KEY not set -- register, login and complete-registration will fail")
    if not _settings.google_client_id:
        logger.warning("GOOGLE_CLIENT_ID not set -- Google sign-in will fail")
    logger.info("Auth initialized (has_users=%s)", app.state.user_store.has_users())

    yield

    app.state.user_store.close()
    logger.info("Archive auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Archive Auth API",
    description="Institutional identity, sessions and invitations for the BukSU thesis archive.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Logs method, path, status, latency and client address. Never the body or
# the Authorization header.
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
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render the auth error taxonomy: 400 validation/conflict, 401, 403."""
    if exc.status_code >= 401:
        logger.info("%s %s denied (%s)", request.method, request.url.path, exc.code)
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Sync so SlowAPIMiddleware can call it too; the middleware does not await
    handlers and substitutes its own for coroutine ones.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when a body is malformed (wrong types, oversized fields).

    Malformed input is a validation error like a missing field, so it gets the
    same 400 as auth.errors.ValidationError.
    """
    return _error(400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for FastAPI/Starlette HTTP exceptions (404, 405)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is reachable regardless of router
# registration. Not rate limited -- monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and per-component status."""
    database = "ok" if request.app.state.user_store.ping() else "error"
    return HealthResponse(version=API_VERSION, components={"app": "ok", "database": database})
