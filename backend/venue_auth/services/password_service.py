# Overview: Password hashing capability consumed by login and sub-user management.

"""
Password Hashing

WHY: The orchestrator only needs hash/verify. Keeping bcrypt behind this
small class means the cost factor is configured once and verification can
report when a stored hash is weaker than the current policy.

SECURITY NOTES:
- bcrypt with configurable cost (BCRYPT_ROUNDS, 12 in production, 4 in tests)
- Minimum length is the only complexity rule enforced here
- Verification is timing-safe (bcrypt.checkpw)
- A malformed stored hash never verifies
"""

from __future__ import annotations

from enum import Enum

import bcrypt

from ..errors import ValidationError


MIN_PASSWORD_LENGTH = 8
# bcrypt ignores input past 72 bytes
MAX_PASSWORD_BYTES = 72


class PasswordVerificationResult(str, Enum):
    FAILED = "failed"
    SUCCESS = "success"
    SUCCESS_REHASH_NEEDED = "success-needs-rehash"


def validate_password_length(password: str) -> None:
    """Raise ValidationError if the password is empty, too short or too long."""
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")


def _hash_cost(password_hash: str) -> int | None:
    # $2b$12$<salt+hash>
    parts = password_hash.split("$")
    if len(parts) < 4:
        return None
    try:
        return int(parts[2])
    except ValueError:
        return None


class PasswordHasher:
    """
    identity is accepted for interface parity with hashers that salt per
    subject; bcrypt carries its own salt so it is not mixed in.
    """

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, identity, plaintext: str) -> str:
        validate_password_length(plaintext)
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(plaintext.encode("utf-8"), salt).decode("utf-8")

    def verify(self, identity, password_hash: str | None, plaintext: str | None) -> PasswordVerificationResult:
        if not password_hash or not plaintext:
            return PasswordVerificationResult.FAILED
        if len(plaintext.encode("utf-8")) > MAX_PASSWORD_BYTES:
            return PasswordVerificationResult.FAILED
        try:
            matched = bcrypt.checkpw(plaintext.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed or non-bcrypt stored hash
            return PasswordVerificationResult.FAILED
        if not matched:
            return PasswordVerificationResult.FAILED

        cost = _hash_cost(password_hash)
        if cost is not None and cost < self.rounds:
            return PasswordVerificationResult.SUCCESS_REHASH_NEEDED
        return PasswordVerificationResult.SUCCESS

    def dummy_verify(self, plaintext: str | None) -> None:
        """
        Burn one bcrypt check for unknown usernames so response time does not
        reveal whether the account exists.
        """
        candidate = (plaintext or "").encode("utf-8")[:MAX_PASSWORD_BYTES]
        bcrypt.checkpw(candidate, self._dummy_hash())

    def _dummy_hash(self) -> bytes:
        cached = getattr(self, "_dummy", None)
        if cached is None:
            cached = bcrypt.hashpw(b"venue-auth-dummy-password", bcrypt.gensalt(rounds=self.rounds))
            self._dummy = cached
        return cached
