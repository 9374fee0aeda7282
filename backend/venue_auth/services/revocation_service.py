# Overview: TTL-keyed denylist of revoked token ids (jti).

"""
Revocation Store

A signed token stays cryptographically valid until exp. Logout, forced logout
and refresh rotation put its jti here so every later request carrying it is
rejected, even though the signature still checks out.

Entries live exactly as long as the token they block: the TTL is the token's
remaining lifetime, after which the token is expired anyway.

FAILURE POLICY:
- revoke() raises RevocationUnavailableError. Logout still deactivates the
  durable session and reports the degraded outcome.
- is_revoked() falls back to the durable store when the backend fails: the
  caller supplies a check that accepts the jti only if it is still the
  current access-token id of an active session.
"""

from __future__ import annotations

import math
from datetime import datetime

from flask import current_app

from ..errors import RevocationUnavailableError
from ..time_utils import to_epoch_seconds


KEY_PREFIX = "revoked_token:"


class RevocationStore:
    def __init__(self, backend, clock):
        self.backend = backend
        self.clock = clock

    @staticmethod
    def key_for(jti: str) -> str:
        return f"{KEY_PREFIX}{jti}"

    def revoke(self, jti: str | None, expires_at: datetime | None) -> bool:
        """
        Deny `jti` until `expires_at`.

        Returns False when there is nothing to do (no jti, or the token has
        already expired). Raises RevocationUnavailableError if the backend
        could not record the entry.
        """
        if not jti or expires_at is None:
            return False
        remaining = (expires_at - self.clock.now()).total_seconds()
        if remaining <= 0:
            return False
        try:
            self.backend.set(self.key_for(jti), to_epoch_seconds(expires_at), math.ceil(remaining))
        except Exception as exc:
            current_app.logger.error("Revocation backend failed to record jti=%s: %s", jti, exc)
            raise RevocationUnavailableError("Revocation backend unavailable") from exc
        current_app.logger.info("Revoked token jti=%s until %s", jti, expires_at.isoformat())
        return True

    def is_revoked(self, jti: str, durable_check=None) -> bool:
        """
        True if `jti` is on the denylist and its entry has not expired.

        durable_check(jti) -> bool answers "is this jti still legitimately
        live" from the source-of-truth store. It is used only when the backend
        fails; without it the failure is raised.
        """
        try:
            value = self.backend.get(self.key_for(jti))
        except Exception as exc:
            if durable_check is None:
                current_app.logger.error("Revocation lookup failed for jti=%s: %s", jti, exc)
                raise RevocationUnavailableError("Revocation backend unavailable") from exc
            current_app.logger.error(
                "Revocation lookup failed for jti=%s, using session store: %s", jti, exc
            )
            return not durable_check(jti)

        if value is None:
            return False
        try:
            return int(value) > to_epoch_seconds(self.clock.now())
        except (TypeError, ValueError):
            # Unreadable entry: treat as revoked
            return True
