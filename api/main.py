"""
api/main.py -- FastAPI application entry point for the auth service.

Exposes the credential and token lifecycle (auth/service.py) over HTTP.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. log_requests          -- one INFO line per request with latency

Lifespan builds every component from Settings exactly once and stores it on
app.state: AccountStore -> CredentialHasher / TokenSigner / RefreshTokenStore
-> AuthService. Routes reach the service through request.app.state; nothing
below the lifespan reads configuration on its own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError, ErrorKind, InvalidToken
from auth.hashing import CredentialHasher
from auth.refresh import RefreshTokenStore
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenSigner
from core.config import Settings, get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authservice.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Error kind -> HTTP mapping
#
# The boundary maps on ErrorKind, never on message text. Every kind the auth
# core can raise has an entry; anything missing falls through to 500.
# ---------------------------------------------------------------------------

_ERROR_STATUS: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.ALREADY_EXISTS: (409, "already_exists"),
    ErrorKind.EMAIL_IN_USE: (409, "email_in_use"),
    ErrorKind.INVALID_CREDENTIALS: (401, "invalid_credentials"),
    ErrorKind.INVALID_REFRESH_TOKEN: (401, "invalid_refresh_token"),
    ErrorKind.NOT_AUTHENTICATED: (401, "not_authenticated"),
    ErrorKind.HASHING_ERROR: (500, "internal_error"),
    ErrorKind.STORAGE_ERROR: (500, "internal_error"),
}


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_auth_service(settings: Settings, store: AccountStore) -> AuthService:
    """Assemble the auth core from settings. Used by the lifespan and the CLI."""
    signer = TokenSigner(
        secret_key=settings.secret_key,
        algorithm=settings.jwt_algorithm,
        issuer=settings.token_issuer,
        ttl_seconds=settings.access_token_ttl_seconds,
    )
    refresh_tokens = RefreshTokenStore(store, ttl_seconds=settings.refresh_token_ttl_seconds)
    return AuthService(
        store=store,
        hasher=CredentialHasher(rounds=settings.bcrypt_rounds),
        signer=signer,
        refresh_tokens=refresh_tokens,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(service: AuthService, interval_seconds: int) -> None:
    """Delete expired refresh-token rows every interval_seconds.

    Expired rows never resolve, so this is housekeeping only. The purge runs
    in a worker thread because the store is synchronous. A failed sweep is
    logged and retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(service.purge_expired_refresh_tokens)
        except AuthError:
            logger.warning("Expired refresh token purge failed; will retry", exc_info=True)
        except Exception:
            # Nothing awaits this task; an error that escapes here is never seen.
            logger.exception("Unexpected error in expired refresh token purge; will retry")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("Auth service starting up")
    app.state.account_store = AccountStore(db_url=_settings.database_url)
    app.state.auth_service = build_auth_service(_settings, app.state.account_store)
    logger.info(
        "Auth initialized (algorithm=%s, access_ttl=%ds, refresh_ttl=%ds)",
        _settings.jwt_algorithm,
        _settings.access_token_ttl_seconds,
        _settings.refresh_token_ttl_seconds,
    )
    app.state.purge_task = asyncio.create_task(
        _purge_loop(app.state.auth_service, _settings.purge_interval_seconds)
    )

    yield

    app.state.purge_task.cancel()
    app.state.account_store.close()
    logger.info("Auth service shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Auth Service API",
    description="Account registration, password login and rotating JWT/refresh token issuance.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Only method, path, status and latency are logged -- never bodies,
# which carry passwords and tokens.
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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Translate an auth-core failure into its stable status and code.

    Internal kinds (storage, hashing) get a generic message; the cause is
    logged with its traceback but never sent to the client.
    """
    kind = ErrorKind.NOT_AUTHENTICATED if isinstance(exc, InvalidToken) else exc.kind
    status, code = _ERROR_STATUS.get(kind, (500, "internal_error"))
    message = exc.message
    if status >= 500:
        logger.error("Auth core failure on %s %s: %s", request.method, request.url.path, kind.value, exc_info=exc)
        message = "An unexpected error occurred."
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )
    if status == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and a database probe."""
    try:
        database = "ok" if request.app.state.account_store.ping() else "error"
    except SQLAlchemyError:
        logger.warning("Health check database probe failed", exc_info=True)
        database = "error"
    return HealthResponse(version=__version__, components={"app": "ok", "database": database})
