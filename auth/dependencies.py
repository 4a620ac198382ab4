"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>". The dependency hands
the raw token to AuthService.authenticate() and returns the resulting
Identity, which the route then passes explicitly into the use case. Nothing
is stashed on request.state; the identity travels as an argument.

try_get_current_identity() is the soft variant (returns None on failure).
get_current_identity() wraps it and raises NotAuthenticated, which the
exception handler in api/main.py turns into a 401 with WWW-Authenticate.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import NotAuthenticated
from auth.models import Identity
from auth.service import AuthService


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_identity(request: Request) -> Identity | None:
    """Authenticate the request's bearer token. Returns None on any failure."""
    token = _bearer_token(request)
    if token is None:
        return None
    service: AuthService = request.app.state.auth_service
    try:
        return service.authenticate(token)
    except NotAuthenticated:
        return None


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises NotAuthenticated if the request carries no valid token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_current_identity(request)
    if identity is None:
        raise NotAuthenticated()
    return identity
