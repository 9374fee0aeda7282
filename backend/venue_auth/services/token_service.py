# Overview: Mints and verifies signed gateway/operational tokens and opaque refresh tokens.

"""
Credential Issuer

Two signed, time-bound bearer tokens (PyJWT, HS256 by default):

- Gateway token (type=venue-gateway): proves venue-owner identity. Carries
  no permissions; it only allows a sub-user login attempt for that venue.
- Operational token (type=venue-operational): proves a sub-user identity.
  Embeds role and the *effective* permission bitmask (string-encoded) so
  request-path checks need no database read.

Every token carries a unique jti so it can be revoked before it expires.

Refresh tokens are opaque random strings, never JWTs. Only their SHA-256
hash is stored on the session row.

SECURITY NOTES:
- exp is checked against the injected clock, not the host clock, so lifetimes
  behave identically in tests and production
- iss/aud are pinned; a token minted for another service never verifies
- Every failure (signature, expiry, type, missing claim) raises the same
  TokenInvalidError
"""

from __future__ import annotations

import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt

from ..errors import TokenInvalidError
from ..permissions import parse_permissions
from ..time_utils import to_epoch_seconds


GATEWAY_TOKEN_TYPE = "venue-gateway"
OPERATIONAL_TOKEN_TYPE = "venue-operational"

_REQUIRED_CLAIMS = {
    GATEWAY_TOKEN_TYPE: ["sub", "jti", "venueId", "type", "iat", "exp"],
    OPERATIONAL_TOKEN_TYPE: [
        "sub", "jti", "venueId", "subUserRole", "permissions", "type", "iat", "exp",
    ],
}


@dataclass(frozen=True)
class IssuedToken:
    token: str
    jti: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshToken:
    """Plaintext goes to the client; only token_hash is persisted."""
    token: str
    token_hash: str
    expires_at: datetime


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    SHA-256 is faster and sufficient for high-entropy inputs.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenIssuer:
    def __init__(
        self,
        *,
        secret_key: str,
        clock,
        algorithm: str = "HS256",
        issuer: str = "venue-auth",
        audience: str = "venue-auth-clients",
        gateway_lifetime: timedelta = timedelta(hours=24),
        operational_lifetime: timedelta = timedelta(hours=4),
        refresh_lifetime: timedelta = timedelta(days=30),
    ):
        self.secret_key = secret_key
        self.clock = clock
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.gateway_lifetime = gateway_lifetime
        self.operational_lifetime = operational_lifetime
        self.refresh_lifetime = refresh_lifetime

    @classmethod
    def from_config(cls, config, clock) -> "TokenIssuer":
        return cls(
            secret_key=config["JWT_SECRET_KEY"],
            clock=clock,
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
            issuer=config.get("JWT_ISSUER", "venue-auth"),
            audience=config.get("JWT_AUDIENCE", "venue-auth-clients"),
            gateway_lifetime=timedelta(hours=config.get("GATEWAY_TOKEN_LIFETIME_HOURS", 24)),
            operational_lifetime=timedelta(hours=config.get("OPERATIONAL_TOKEN_LIFETIME_HOURS", 4)),
            refresh_lifetime=timedelta(days=config.get("REFRESH_TOKEN_LIFETIME_DAYS", 30)),
        )

    # -- issuance --

    def _sign(self, claims: dict, lifetime: timedelta) -> IssuedToken:
        issued_at = self.clock.now().replace(microsecond=0)
        expires_at = issued_at + lifetime
        jti = uuid.uuid4().hex
        payload = dict(claims)
        payload.update({
            "jti": jti,
            "iat": to_epoch_seconds(issued_at),
            "exp": to_epoch_seconds(expires_at),
            "iss": self.issuer,
            "aud": self.audience,
        })
        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        return IssuedToken(token=token, jti=jti, issued_at=issued_at, expires_at=expires_at)

    def issue_gateway_token(self, owner_id: int, venue_id: int) -> IssuedToken:
        return self._sign(
            {
                "sub": str(owner_id),
                "venueId": str(venue_id),
                "type": GATEWAY_TOKEN_TYPE,
            },
            self.gateway_lifetime,
        )

    def issue_operational_token(self, sub_user_id: int, venue_id: int, role: str, permissions) -> IssuedToken:
        return self._sign(
            {
                "sub": str(sub_user_id),
                "venueId": str(venue_id),
                "subUserRole": role,
                "permissions": str(int(parse_permissions(permissions))),
                "type": OPERATIONAL_TOKEN_TYPE,
            },
            self.operational_lifetime,
        )

    def new_refresh_token(self) -> RefreshToken:
        token = secrets.token_urlsafe(48)
        return RefreshToken(
            token=token,
            token_hash=hash_token(token),
            expires_at=self.clock.now() + self.refresh_lifetime,
        )

    # -- verification --

    def decode(self, token: str, expected_type: str) -> dict:
        """
        Verify signature, issuer, audience, required claims, expiry and type.

        Returns the claims dict. Raises TokenInvalidError for any failure.
        Revocation is not checked here (see session_service.verify_operational_token).
        """
        if not token or not isinstance(token, str):
            raise TokenInvalidError()
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={
                    # exp/iat are checked below against the injected clock
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": _REQUIRED_CLAIMS[expected_type],
                },
            )
        except jwt.InvalidTokenError as exc:
            raise TokenInvalidError() from exc

        if claims.get("type") != expected_type:
            raise TokenInvalidError()

        try:
            expires = int(claims["exp"])
        except (TypeError, ValueError) as exc:
            raise TokenInvalidError() from exc
        if expires <= to_epoch_seconds(self.clock.now()):
            raise TokenInvalidError()

        if expected_type == OPERATIONAL_TOKEN_TYPE:
            try:
                parse_permissions(claims["permissions"])
            except ValueError as exc:
                raise TokenInvalidError() from exc
        return claims

    def verify_gateway_token(self, token: str) -> dict:
        return self.decode(token, GATEWAY_TOKEN_TYPE)

    def verify_operational_token(self, token: str) -> dict:
        return self.decode(token, OPERATIONAL_TOKEN_TYPE)
