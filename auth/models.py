"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work. HTTP request/response shapes live in
api/models.py and are mapped from these in the route layer.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Account:
    """A registered identity.

    email is stored normalized (stripped, lower-cased) so the UNIQUE index
    enforces case-insensitive uniqueness. password_hash is the bcrypt string
    and must never leave the service -- use AccountProfile for output.

    id is None until the store assigns one. Ids are never reused after a
    delete (SQLite AUTOINCREMENT).
    """

    name: str
    email: str
    password_hash: str
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class AccountProfile:
    """Public projection of an Account. Carries no credential material."""

    id: int
    name: str
    email: str
    created_at: datetime | None
    updated_at: datetime | None

    @classmethod
    def from_account(cls, account: Account) -> "AccountProfile":
        return cls(
            id=account.id,
            name=account.name,
            email=account.email,
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


@dataclass
class RefreshTokenRecord:
    """A persisted refresh token row.

    token is the opaque random value handed to the client and doubles as the
    primary key. A row whose expires_at has passed is logically dead even if
    the purge sweep has not removed it yet.
    """

    token: str
    account_id: int
    expires_at: datetime
    created_at: datetime | None = None


@dataclass(frozen=True)
class TokenPair:
    """Result of a successful login or refresh."""

    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password


@dataclass(frozen=True)
class Identity:
    """An authenticated caller, produced by access-token verification.

    Passed explicitly into every use case that acts on "the current account".
    """

    account_id: int
