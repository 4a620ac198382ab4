"""
api/routes/v1/users.py -- Current-account profile endpoints.

Routes:
  GET    /api/v1/users/me  -- profile of the authenticated account
  PUT    /api/v1/users/me  -- change name and email (409 email_in_use on conflict)
  DELETE /api/v1/users/me  -- delete the account and all its refresh tokens; 204

Every route requires a bearer access token. get_current_identity() returns an
Identity value and the route passes it to AuthService explicitly.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import ProfileResponse, ProfileUpdate
from auth.dependencies import get_current_identity
from auth.models import Identity
from auth.service import AuthService

router = APIRouter()


@router.get("/users/me", response_model=ProfileResponse)
def get_me(request: Request, identity: Identity = Depends(get_current_identity)) -> ProfileResponse:
    service: AuthService = request.app.state.auth_service
    return ProfileResponse.from_profile(service.get_profile(identity))


@router.put("/users/me", response_model=ProfileResponse)
def update_me(
    request: Request,
    body: ProfileUpdate,
    identity: Identity = Depends(get_current_identity),
) -> ProfileResponse:
    """Replace name and email. Keeping the current email is always allowed."""
    service: AuthService = request.app.state.auth_service
    return ProfileResponse.from_profile(service.update_profile(identity, body.name, body.email))


@router.delete("/users/me", status_code=204)
def delete_me(request: Request, identity: Identity = Depends(get_current_identity)) -> Response:
    """Delete the account. Outstanding access tokens stop authenticating immediately."""
    service: AuthService = request.app.state.auth_service
    service.delete_account(identity)
    return Response(status_code=204)
