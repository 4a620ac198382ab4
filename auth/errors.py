"""
auth/errors.py -- Closed error taxonomy for the credential and token lifecycle.

Every failure the auth core surfaces is an AuthError subclass tagged with an
ErrorKind member. The boundary layer maps kinds to responses by looking at
exc.kind -- never at the message text, which is free to change.

Token verification has three sub-kinds (InvalidSignature, Expired,
MalformedToken). They all derive from InvalidToken so callers that do not
care which check failed can catch the parent.

Storage and hashing failures wrap the underlying library exception
(raise StorageError(...) from exc) so the traceback survives for logging
while the caller still sees a stable kind.

Layer rule: stdlib only.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    ALREADY_EXISTS = "already_exists"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    EMAIL_IN_USE = "email_in_use"
    NOT_AUTHENTICATED = "not_authenticated"
    HASHING_ERROR = "hashing_error"
    STORAGE_ERROR = "storage_error"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    MALFORMED_TOKEN = "malformed_token"


class AuthError(Exception):
    """Base class for every failure raised by the auth core."""

    kind: ErrorKind
    default_message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class AlreadyExists(AuthError):
    kind = ErrorKind.ALREADY_EXISTS
    default_message = "An account with that email already exists."


class InvalidCredentials(AuthError):
    # Same message for unknown email and wrong password -- no enumeration.
    kind = ErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid email or password."


class InvalidRefreshToken(AuthError):
    kind = ErrorKind.INVALID_REFRESH_TOKEN
    default_message = "Invalid refresh token."


class EmailInUse(AuthError):
    kind = ErrorKind.EMAIL_IN_USE
    default_message = "Email already in use."


class NotAuthenticated(AuthError):
    kind = ErrorKind.NOT_AUTHENTICATED
    default_message = "Authentication required."


class HashingError(AuthError):
    kind = ErrorKind.HASHING_ERROR
    default_message = "Password hashing failed."


class StorageError(AuthError):
    kind = ErrorKind.STORAGE_ERROR
    default_message = "Storage operation failed."


class InvalidToken(AuthError):
    """Parent of the access-token verification failures."""

    kind = ErrorKind.NOT_AUTHENTICATED
    default_message = "Invalid token."


class InvalidSignature(InvalidToken):
    kind = ErrorKind.INVALID_SIGNATURE
    default_message = "Token signature or algorithm does not match."


class Expired(InvalidToken):
    kind = ErrorKind.EXPIRED
    default_message = "Token has expired."


class MalformedToken(InvalidToken):
    kind = ErrorKind.MALFORMED_TOKEN
    default_message = "Token could not be parsed."
