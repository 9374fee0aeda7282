# Overview: Immutable value objects passed between services.

"""
Domain Values

The authorization engine never touches ORM rows. It reasons about a frozen
SubUserState snapshot, built either from the durable row (management paths)
or from verified token claims (request path). Mapping is explicit in both
directions: from_persisted / from_claims in, sub_user_snapshot out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from .permissions import SubUserRole, VenuePermission, parse_permissions, permission_codes
from .time_utils import to_utc_z


@dataclass(frozen=True)
class SubUserState:
    id: int
    venue_id: int
    role: str
    permissions: VenuePermission
    is_active: bool = True
    is_founder_admin: bool = False
    must_change_password: bool = False
    lockout_end: datetime | None = None
    failed_login_attempts: int = 0
    username: str | None = None

    @classmethod
    def from_persisted(cls, row) -> "SubUserState":
        return cls(
            id=row.id,
            venue_id=row.venue_id,
            role=row.role,
            permissions=parse_permissions(int(row.permissions or 0)),
            is_active=bool(row.is_active),
            is_founder_admin=bool(row.is_founder_admin),
            must_change_password=bool(row.must_change_password),
            lockout_end=row.lockout_end,
            failed_login_attempts=row.failed_login_attempts or 0,
            username=row.username,
        )

    @classmethod
    def from_claims(cls, claims: dict) -> "SubUserState":
        """
        Principal for the request path.

        The token only exists because login passed the active/lockout/password
        checks, and its permissions claim already holds the *effective* set.
        Founder status is not a claim: a founder's effective set is already
        every bit.
        """
        return cls(
            id=int(claims["sub"]),
            venue_id=int(claims["venueId"]),
            role=claims["subUserRole"],
            permissions=parse_permissions(claims.get("permissions", "0")),
        )

    @property
    def is_coworker(self) -> bool:
        return self.role == SubUserRole.COWORKER.value

    def is_locked_out(self, now: datetime) -> bool:
        return self.lockout_end is not None and self.lockout_end > now


@dataclass(frozen=True)
class AuthorizationDecision:
    authorized: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> "AuthorizationDecision":
        return cls(True, "")

    @classmethod
    def deny(cls, reason: str) -> "AuthorizationDecision":
        return cls(False, reason)

    def __bool__(self) -> bool:
        return self.authorized

    def to_dict(self) -> dict:
        return {"authorized": self.authorized, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: dict) -> "AuthorizationDecision":
        return cls(bool(data["authorized"]), data.get("reason") or "")


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: tuple = ()
    warnings: tuple = ()

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ValidationResult":
        return cls(
            bool(data["is_valid"]),
            tuple(data.get("errors") or ()),
            tuple(data.get("warnings") or ()),
        )


@dataclass
class Outcome:
    """
    Result of an operation whose primary effect succeeded but whose
    best-effort side effects (revocation, cache invalidation) may not have.
    """
    degradations: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.degradations)

    def degrade(self, message: str) -> None:
        self.degradations.append(message)


@dataclass
class LogoutResult(Outcome):
    sessions_ended: int = 0
    tokens_revoked: int = 0

    def to_dict(self) -> dict:
        return {
            "sessions_ended": self.sessions_ended,
            "tokens_revoked": self.tokens_revoked,
            "degraded": self.degraded,
            "degradations": list(self.degradations),
        }


@dataclass
class MutationResult(Outcome):
    """A committed sub-user change plus any degraded follow-up."""
    sub_user: dict = field(default_factory=dict)
    sessions_ended: int = 0

    def to_dict(self) -> dict:
        return {
            "sub_user": self.sub_user,
            "sessions_ended": self.sessions_ended,
            "degraded": self.degraded,
            "degradations": list(self.degradations),
        }


@dataclass
class LoginResult(Outcome):
    access_token: str = ""
    refresh_token: str = ""
    access_token_expires_at: datetime | None = None
    refresh_token_expires_at: datetime | None = None
    session_id: int | None = None
    sub_user: dict = field(default_factory=dict)
    must_change_password: bool = False

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": "Bearer",
            "access_token_expires_at": to_utc_z(self.access_token_expires_at),
            "refresh_token_expires_at": to_utc_z(self.refresh_token_expires_at),
            "session_id": self.session_id,
            "sub_user": self.sub_user,
            "must_change_password": self.must_change_password,
        }


def sub_user_summary(row) -> dict:
    """Public view returned with login results."""
    return {
        "id": row.id,
        "venue_id": row.venue_id,
        "username": row.username,
        "role": row.role,
        "is_founder_admin": row.is_founder_admin,
        "permissions": permission_codes(row.permissions or 0),
        "last_login_at": to_utc_z(row.last_login_at),
    }


def sub_user_snapshot(row) -> dict:
    """Before/after snapshot stored in audit entries. Never includes the hash."""
    return {
        "username": row.username,
        "role": row.role,
        "permissions": int(row.permissions or 0),
        "is_active": bool(row.is_active),
        "is_founder_admin": bool(row.is_founder_admin),
        "must_change_password": bool(row.must_change_password),
    }
