"""
auth/tokens.py -- Signed access-token issuance and verification.

Security design decisions:
  JWT: python-jose with an HMAC algorithm (HS512 by default). Tokens carry
       sub (account id as a string, per RFC 7519), iss, iat and exp. Nothing
       about an access token is persisted; validity is signature + expiry.

  Algorithm confusion: the header's alg must equal the configured algorithm
       exactly. "none", RS*/ES* and other HMAC sizes are rejected with
       InvalidSignature before any key material is used. jose is also given
       algorithms=[configured] so the check holds even if the pre-check were
       removed.

  Error kinds: verification raises one of InvalidSignature, Expired or
       MalformedToken (all InvalidToken). Signature is checked before expiry
       and before sub/exp are inspected, so a forged token never learns
       anything about how its claims would have been judged.

  Signing key: passed once to the constructor by the application lifespan.
       The signer is immutable afterwards and keeps the key out of repr() so
       it cannot leak into logs via an accidental %r.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import Expired, InvalidSignature, MalformedToken

DEFAULT_ISSUER = "auth-service"
DEFAULT_ALGORITHM = "HS512"
DEFAULT_TTL_SECONDS = 30 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_subject(sub: object) -> int:
    """Return the account id encoded in a sub claim, or raise MalformedToken."""
    if not isinstance(sub, str) or not sub.isascii() or not sub.isdigit():
        raise MalformedToken("Token subject is not an account identifier.")
    account_id = int(sub)
    if account_id <= 0:
        raise MalformedToken("Token subject is not an account identifier.")
    return account_id


class TokenSigner:
    """Issues and verifies short-lived access tokens for one signing key.

    Usage:
        signer = TokenSigner(secret_key=settings.secret_key)
        token = signer.issue_access_token(42)
        signer.verify_access_token(token)  # 42

    clock is injectable so tests can mint tokens that are already expired.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = DEFAULT_ALGORITHM,
        issuer: str = DEFAULT_ISSUER,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not algorithm.startswith("HS"):
            raise ValueError(f"Unsupported signing algorithm {algorithm!r}; only HMAC is allowed.")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._issuer = issuer
        self._clock = clock
        self.ttl_seconds = ttl_seconds

    def __repr__(self) -> str:
        return f"TokenSigner(algorithm={self._algorithm!r}, issuer={self._issuer!r}, ttl_seconds={self.ttl_seconds})"

    def issue_access_token(self, account_id: int) -> str:
        """Return a signed JWT asserting account_id until now + TTL."""
        now = self._clock()
        claims = {
            "sub": str(account_id),
            "iss": self._issuer,
            "iat": now,
            "exp": now + timedelta(seconds=self.ttl_seconds),
        }
        return jwt.encode(claims, self._secret_key, algorithm=self._algorithm)

    def verify_access_token(self, token: str) -> int:
        """Verify token and return the account id it was issued for.

        Raises:
            MalformedToken:   header/claims unparseable, issuer wrong, or sub
                              is not a positive integer id.
            InvalidSignature: alg is not the configured algorithm, or the
                              signature does not match the key.
            Expired:          exp is in the past.
        """
        try:
            header = jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)  # payload must at least be a JSON object
        except JWTError as exc:
            raise MalformedToken() from exc

        if header.get("alg") != self._algorithm:
            raise InvalidSignature()

        try:
            claims = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                issuer=self._issuer,
            )
        except ExpiredSignatureError as exc:
            raise Expired() from exc
        except JWTClaimsError as exc:
            # Signature was valid but a registered claim is wrong (iss, iat type).
            raise MalformedToken(str(exc)) from exc
        except JWTError as exc:
            raise InvalidSignature() from exc

        # Claim content is only inspected once the signature has been verified.
        if "exp" not in claims:
            raise MalformedToken("Token has no expiry.")
        return _parse_subject(claims.get("sub"))
