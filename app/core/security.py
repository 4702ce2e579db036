"""
Security Module - Credential Hasher

One-way password hashing and verification using passlib with bcrypt.

SECURITY NOTES:
- bcrypt is salted and iterated; the digest embeds its own cost factor
  ("$2b$12$..."), so raising BCRYPT_ROUNDS later needs no schema change:
  old hashes verify as NEEDS_REHASH and are upgraded on next login.
- Verification is constant-time inside passlib.
- Plaintext passwords are never logged or persisted.
"""
import enum
from functools import lru_cache

from passlib.context import CryptContext

from app.config import get_settings


class PasswordVerification(str, enum.Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    NEEDS_REHASH = "needs_rehash"

    @property
    def succeeded(self) -> bool:
        return self is not PasswordVerification.MISMATCH


class PasswordHasher:
    """Thin wrapper around a passlib CryptContext."""

    def __init__(self, rounds: int = 12):
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
            # Hashes below the current cost report needs_update()
            bcrypt__min_rounds=rounds,
        )

    def hash(self, password: str) -> str:
        """
        Hash a password using bcrypt.

        NOTE: This is intentionally slow to prevent brute force attacks.
        """
        return self._context.hash(password)

    def verify(self, password_hash: str, password: str) -> PasswordVerification:
        """Check a plaintext password against a stored digest."""
        if not password_hash:
            return PasswordVerification.MISMATCH

        try:
            matched = self._context.verify(password, password_hash)
        except (ValueError, TypeError):
            # Unrecognized or corrupted digest
            return PasswordVerification.MISMATCH

        if not matched:
            return PasswordVerification.MISMATCH
        if self._context.needs_update(password_hash):
            return PasswordVerification.NEEDS_REHASH
        return PasswordVerification.MATCH

    def dummy_verify(self) -> None:
        """
        Burn one verification worth of time.

        Used when the email is unknown so that response timing does not
        reveal whether the account exists.
        """
        self._context.dummy_verify()


@lru_cache()
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(rounds=get_settings().BCRYPT_ROUNDS)

