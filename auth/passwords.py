"""
auth/passwords.py -- Password hashing and password policy.

bcrypt directly, no passlib wrapper: passlib's wrap-bug detection hashes a
password longer than 72 bytes, which bcrypt 4.x rejects with an explicit error.

The cost factor comes from Settings.bcrypt_rounds (default 12) and is fixed
per process. Error messages never include the plaintext or the digest.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import MalformedDigestError, PasswordHashingError

logger = logging.getLogger("authgate.auth")

MIN_PASSWORD_LENGTH = 8
# bcrypt ignores (4.x) or rejects (5.x) anything past 72 bytes.
MAX_PASSWORD_BYTES = 72


def check_password_policy(password: str) -> str | None:
    """Return the first policy violation as a user-facing reason, or None if the password is acceptable."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"
    if not any(c.isupper() for c in password):
        return "Password must include at least one uppercase letter"
    if not any(c.islower() for c in password):
        return "Password must include at least one lowercase letter"
    if not any(c.isdigit() for c in password):
        return "Password must include at least one number"
    return None


class PasswordHasher:
    """Salted, adaptive one-way hashing for login passwords.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("Secret123")
        hasher.verify("Secret123", digest)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization: login verifies against this when the email is
        # unknown, so response time does not reveal whether an account exists.
        self._dummy_hash = self.hash("authgate_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt digest of plaintext.

        Registration rejects passwords over MAX_PASSWORD_BYTES before this runs.
        """
        try:
            return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (ValueError, TypeError) as exc:
            logger.error("Password hashing failed: %s", type(exc).__name__)
            raise PasswordHashingError() from None

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if plaintext matches digest.

        A mismatch is False. A digest that is not a bcrypt hash at all raises
        MalformedDigestError -- that is a data problem, not a wrong password.
        """
        if len(plaintext.encode("utf-8")) > MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            raise MalformedDigestError() from None

    def burn(self, plaintext: str) -> None:
        """Spend one verify's worth of work against the dummy hash."""
        self.verify(plaintext, self._dummy_hash)
