"""
auth/hashing.py -- One-way password hashing and constant-time verification.

bcrypt is used directly rather than through passlib. passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects
with an explicit error; direct usage has no compatibility shim.

bcrypt embeds the algorithm, cost factor and per-call random salt in the
output string, so hash(p) differs on every call yet each result verifies
against p. Verification is bcrypt.checkpw, which compares in constant time.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

from auth.errors import HashingError

DEFAULT_ROUNDS = 12

# bcrypt only reads the first 72 bytes. Older releases truncate silently,
# newer ones raise; refusing up front gives the same result on both.
MAX_SECRET_BYTES = 72


class CredentialHasher:
    """Hashes and verifies passwords with a fixed bcrypt cost factor.

    Usage:
        hasher = CredentialHasher(rounds=12)
        stored = hasher.hash("s3cret")
        hasher.verify("s3cret", stored)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1]. Computed once at construction
        # so the first failed login is not measurably slower than later ones.
        self._dummy_hash = self.hash("authservice_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt hash of plaintext.

        Raises HashingError if bcrypt refuses the input (e.g. more than 72
        bytes once UTF-8 encoded) or the salt cannot be generated.
        """
        secret = plaintext.encode("utf-8")
        if len(secret) > MAX_SECRET_BYTES:
            raise HashingError(f"Password exceeds {MAX_SECRET_BYTES} bytes.")
        try:
            return bcrypt.hashpw(secret, bcrypt.gensalt(self.rounds)).decode("utf-8")
        except (ValueError, TypeError, OSError) as exc:
            raise HashingError() from exc

    def verify(self, plaintext: str, hashed: str) -> bool:
        """Return True if plaintext matches hashed.

        A stored value that is not a bcrypt hash is a verification failure,
        not a system error, so every bcrypt complaint maps to False.
        """
        secret = plaintext.encode("utf-8")
        if len(secret) > MAX_SECRET_BYTES:
            return False
        try:
            return bcrypt.checkpw(secret, hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def dummy_verify(self, plaintext: str) -> None:
        """Spend one verification's worth of time. Always a mismatch.

        Call this when the account does not exist so the unknown-email path
        costs the same as the wrong-password path.
        """
        self.verify(plaintext, self._dummy_hash)
