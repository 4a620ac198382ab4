"""
api/routes/v1/auth.py -- Credential and token REST endpoints.

Routes:
  POST /api/v1/auth/register   -- create an account; 201 with the public profile
  POST /api/v1/auth/login      -- email + password; 200 with access + refresh token
  POST /api/v1/auth/refresh    -- rotate a refresh token; 200 with a new pair
  POST /api/v1/auth/logout     -- revoke a refresh token; 204 (idempotent)

All four are public: they are how a caller obtains or gives up credentials.

Errors are raised by AuthService as AuthError subclasses and translated to
responses by the handler in api/main.py. Routes never build error responses
themselves and never inspect exception messages.

Security:
  [C1] Unknown email and wrong password produce the same 401; timing is
       equalized inside AuthService.login().
  [M5] Cache-Control: no-store on every response that carries a token.

Handlers are plain def so FastAPI runs them on the thread pool -- bcrypt and
the database calls are blocking.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from api.models import LoginRequest, ProfileResponse, RefreshRequest, RegisterRequest, TokenResponse
from auth.models import TokenPair
from auth.service import AuthService

router = APIRouter()


def _token_response(pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=TokenResponse.from_pair(pair).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/register", response_model=ProfileResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> ProfileResponse:
    """Register a new account. The response never includes the password hash."""
    service: AuthService = request.app.state.auth_service
    profile = service.register(body.name, body.email, body.password)
    return ProfileResponse.from_profile(profile)


@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and return a token pair."""
    service: AuthService = request.app.state.auth_service
    return _token_response(service.login(body.email, body.password))


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new access + refresh token pair.

    The presented refresh token is consumed; replaying it returns 401.
    """
    service: AuthService = request.app.state.auth_service
    return _token_response(service.refresh(body.refresh_token))


@router.post("/auth/logout", status_code=204)
def logout(request: Request, body: RefreshRequest) -> Response:
    """Revoke a refresh token. Unknown tokens are accepted silently."""
    service: AuthService = request.app.state.auth_service
    service.logout(body.refresh_token)
    return Response(status_code=204)
