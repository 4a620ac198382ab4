"""
auth/service.py -- Auth orchestrator: register, login, refresh, profile use cases.

AuthService composes the credential hasher, the token signer and the refresh
token store over an AccountStore. Each public method is one externally
observable operation and either returns its result or raises exactly one
AuthError subclass (see auth/errors.py). Raw SQLAlchemy exceptions never
escape: a lost race on the email UNIQUE index becomes AlreadyExists or
EmailInUse, anything else becomes StorageError.

Logging policy:
  Expected user-facing outcomes (duplicate email, bad password, dead refresh
  token) are INFO. They are normal traffic, not defects. Passwords, hashes and
  raw tokens are never logged; accounts are identified by id.

Session policy:
  Multi-session. login() issues a new refresh token without touching any the
  account already holds, so several devices can stay signed in at once.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    AlreadyExists,
    EmailInUse,
    InvalidCredentials,
    InvalidRefreshToken,
    InvalidToken,
    NotAuthenticated,
    StorageError,
)
from auth.hashing import CredentialHasher
from auth.models import Account, AccountProfile, Identity, TokenPair
from auth.refresh import RefreshTokenStore
from auth.store import AccountStore
from auth.tokens import TokenSigner

logger = logging.getLogger("authservice.auth")


def normalize_email(email: str) -> str:
    """Canonical form used for every lookup and write: stripped and lower-cased."""
    return email.strip().lower()


@contextmanager
def _storage(action: str) -> Iterator[None]:
    """Translate SQLAlchemy failures inside the block into StorageError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Storage failure while %s", action, exc_info=True)
        raise StorageError() from exc


class AuthService:
    """Credential and token lifecycle use cases.

    Usage:
        service = AuthService(store, hasher, signer, refresh_tokens)
        profile = service.register("Ana", "ana@x.io", "pw123")
        pair = service.login("ana@x.io", "pw123")
        identity = service.authenticate(pair.access_token)
        service.get_profile(identity)
    """

    def __init__(
        self,
        store: AccountStore,
        hasher: CredentialHasher,
        signer: TokenSigner,
        refresh_tokens: RefreshTokenStore,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._signer = signer
        self._refresh_tokens = refresh_tokens

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str) -> AccountProfile:
        """Create an account and return its public profile.

        Raises AlreadyExists if the email is taken. Nothing is written in
        that case.
        """
        email = normalize_email(email)
        with _storage("checking email availability"):
            existing = self._store.get_by_email(email)
        if existing is not None:
            logger.info("Registration rejected: email already registered (account %d)", existing.id)
            raise AlreadyExists()

        account = Account(name=name, email=email, password_hash=self._hasher.hash(password))
        try:
            account_id = self._store.create_account(account)
        except IntegrityError as exc:
            # A concurrent registration won the UNIQUE index between check and insert.
            logger.info("Registration rejected: email registered concurrently")
            raise AlreadyExists() from exc
        except SQLAlchemyError as exc:
            logger.error("Storage failure while creating account", exc_info=True)
            raise StorageError() from exc

        with _storage("reading new account"):
            created = self._store.get_by_id(account_id)
        if created is None:
            raise StorageError("Account not found after write.")
        logger.info("Account registered: id=%d", account_id)
        return AccountProfile.from_account(created)

    def login(self, email: str, password: str) -> TokenPair:
        """Verify credentials and issue an access/refresh token pair.

        Unknown email and wrong password raise the same InvalidCredentials.
        The unknown-email path still runs one bcrypt verification [C1] so
        response time does not reveal whether the email is registered.
        """
        with _storage("looking up account for login"):
            account = self._store.get_by_email(normalize_email(email))
        if account is None:
            self._hasher.dummy_verify(password)
            logger.info("Failed login: unknown email")
            raise InvalidCredentials()
        if not self._hasher.verify(password, account.password_hash):
            logger.info("Failed login: wrong password for account %d", account.id)
            raise InvalidCredentials()

        pair = self._issue_pair(account.id, self._refresh_tokens.issue(account.id))
        logger.info("Account logged in: id=%d", account.id)
        return pair

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate refresh_token and return a fresh token pair.

        The presented token is consumed; presenting it again raises
        InvalidRefreshToken.
        """
        try:
            account_id, new_refresh = self._refresh_tokens.rotate(refresh_token)
        except InvalidRefreshToken:
            logger.info("Refresh rejected: token unknown, consumed or expired")
            raise
        logger.info("Refresh token rotated for account %d", account_id)
        return self._issue_pair(account_id, new_refresh)

    def logout(self, refresh_token: str) -> None:
        """Revoke refresh_token. Revoking an unknown token is a no-op."""
        self._refresh_tokens.revoke(refresh_token)

    def authenticate(self, access_token: str) -> Identity:
        """Turn a bearer access token into an Identity.

        Raises NotAuthenticated if the token fails verification or its
        account no longer exists (deleted after the token was issued).
        """
        try:
            account_id = self._signer.verify_access_token(access_token)
        except InvalidToken as exc:
            logger.info("Access token rejected: %s", exc.kind.value)
            raise NotAuthenticated() from exc
        with _storage("loading authenticated account"):
            account = self._store.get_by_id(account_id)
        if account is None:
            logger.info("Access token rejected: account %d no longer exists", account_id)
            raise NotAuthenticated()
        return Identity(account_id=account_id)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, identity: Identity) -> AccountProfile:
        with _storage("loading profile"):
            account = self._store.get_by_id(identity.account_id)
        if account is None:
            raise NotAuthenticated()
        return AccountProfile.from_account(account)

    def update_profile(self, identity: Identity, name: str, email: str) -> AccountProfile:
        """Change name and email. Raises EmailInUse if email belongs to another account.

        Keeping the current email is always allowed.
        """
        email = normalize_email(email)
        with _storage("checking email availability"):
            holder = self._store.get_by_email(email)
        if holder is not None and holder.id != identity.account_id:
            logger.info("Profile update rejected for account %d: email in use", identity.account_id)
            raise EmailInUse()

        try:
            updated = self._store.update_account(identity.account_id, name, email)
        except IntegrityError as exc:
            logger.info("Profile update rejected for account %d: email taken concurrently", identity.account_id)
            raise EmailInUse() from exc
        except SQLAlchemyError as exc:
            logger.error("Storage failure while updating account %d", identity.account_id, exc_info=True)
            raise StorageError() from exc
        if updated is None:
            raise NotAuthenticated()
        logger.info("Profile updated: id=%d", identity.account_id)
        return AccountProfile.from_account(updated)

    def delete_account(self, identity: Identity) -> None:
        """Delete the account and every refresh token it holds.

        Access tokens already issued stay cryptographically valid until they
        expire, but authenticate() rejects them because the account is gone.
        """
        with _storage("deleting account"):
            deleted = self._store.delete_account(identity.account_id)
        if not deleted:
            raise NotAuthenticated()
        logger.info("Account deleted: id=%d", identity.account_id)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge_expired_refresh_tokens(self) -> int:
        """Delete expired refresh-token rows. Returns the count removed."""
        return self._refresh_tokens.purge_expired()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_pair(self, account_id: int, refresh_token: str) -> TokenPair:
        return TokenPair(
            access_token=self._signer.issue_access_token(account_id),
            refresh_token=refresh_token,
            expires_in=self._signer.ttl_seconds,
        )
