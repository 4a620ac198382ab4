"""
auth/refresh.py -- Opaque refresh tokens with server-side state and rotation.

A refresh token is secrets.token_urlsafe(48): 48 random bytes, 64 URL-safe
characters, 384 bits of entropy. It carries no claims; everything about it
lives in the refresh_tokens table.

Lifecycle per token:
  ISSUED --rotate/revoke--> DELETED
  ISSUED --TTL elapses----> EXPIRED (logical; row lingers until purge)
Nothing leaves DELETED or EXPIRED.

Rotation and concurrency:
  rotate() resolves the old token, issues the new one, then deletes the old
  one with a conditional DELETE. The DELETE's rowcount decides the winner:
  of two concurrent rotations of the same token only one removes the row.
  The loser revokes the token it just issued and raises InvalidRefreshToken
  (a failed revoke is logged; the caller still sees InvalidRefreshToken).
  This holds across processes because the arbiter is the database, not an
  in-process lock.

  If the DELETE itself fails (storage error) after the new token was issued,
  the failure is logged and rotation still succeeds. The new token is valid;
  the old row is a bounded leak that expires on its own.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import InvalidRefreshToken, StorageError
from auth.store import AccountStore

logger = logging.getLogger("authservice.auth.refresh")

DEFAULT_TTL_SECONDS = 7 * 24 * 3600
_TOKEN_BYTES = 48


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_refresh_token() -> str:
    """Return a new opaque refresh token string."""
    return secrets.token_urlsafe(_TOKEN_BYTES)


class RefreshTokenStore:
    """Issues, resolves, rotates and revokes refresh tokens.

    Usage:
        tokens = RefreshTokenStore(store, ttl_seconds=7 * 24 * 3600)
        token = tokens.issue(account_id)
        account_id, token = tokens.rotate(token)
    """

    def __init__(
        self,
        store: AccountStore,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock
        self.ttl_seconds = ttl_seconds

    def issue(self, account_id: int) -> str:
        """Create and persist a refresh token for account_id."""
        token = generate_refresh_token()
        expires_at = self._clock() + timedelta(seconds=self.ttl_seconds)
        try:
            self._store.insert_refresh_token(account_id, token, expires_at)
        except SQLAlchemyError as exc:
            raise StorageError("Could not persist refresh token.") from exc
        return token

    def resolve(self, token: str) -> int:
        """Return the account id for a live token.

        Raises InvalidRefreshToken if the token is unknown, consumed or expired.
        """
        try:
            record = self._store.find_active_refresh_token(token, now=self._clock())
        except SQLAlchemyError as exc:
            raise StorageError("Could not look up refresh token.") from exc
        if record is None:
            raise InvalidRefreshToken()
        return record.account_id

    def rotate(self, old_token: str) -> tuple[int, str]:
        """Consume old_token and return (account_id, new_token).

        Raises InvalidRefreshToken if old_token is not live, or if a
        concurrent rotation consumed it first.
        """
        account_id = self.resolve(old_token)
        new_token = self.issue(account_id)

        try:
            consumed = self._store.delete_refresh_token(old_token)
        except SQLAlchemyError:
            logger.error("Failed to delete rotated refresh token for account %d", account_id, exc_info=True)
            return account_id, new_token

        if not consumed:
            # Another rotation removed the row between our resolve and delete.
            logger.info("Refresh token for account %d already consumed by a concurrent rotation", account_id)
            try:
                self.revoke(new_token)
            except StorageError:
                logger.error("Failed to revoke losing rotation token for account %d", account_id, exc_info=True)
            raise InvalidRefreshToken()
        return account_id, new_token

    def revoke(self, token: str) -> None:
        """Delete token. Deleting an absent token is not an error."""
        try:
            self._store.delete_refresh_token(token)
        except SQLAlchemyError as exc:
            raise StorageError("Could not revoke refresh token.") from exc

    def purge_expired(self) -> int:
        """Remove expired rows. Called periodically by the API lifespan and the CLI."""
        try:
            removed = self._store.delete_expired_refresh_tokens(now=self._clock())
        except SQLAlchemyError as exc:
            raise StorageError("Could not purge expired refresh tokens.") from exc
        if removed:
            logger.info("Purged %d expired refresh tokens", removed)
        return removed
