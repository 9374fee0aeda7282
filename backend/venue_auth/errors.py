# Overview: Error taxonomy shared by services and routes.

"""
Venue Authorization Errors

Every failure a service can raise belongs to exactly one ErrorKind.
Routes translate the kind to an HTTP status; services never build responses.

SECURITY:
- Authentication failures are coarse (InvalidCredentials never says whether
  the username exists).
- Token problems (bad signature, expired, revoked, wrong type) all collapse
  into TokenInvalidError so callers cannot probe which check failed.
- PermissionDeniedError keeps its specific reason for logs and audit, but the
  HTTP body is the same 403 for every denial.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    PASSWORD_CHANGE_REQUIRED = "PASSWORD_CHANGE_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION = "VALIDATION"
    RATE_LIMITED = "RATE_LIMITED"
    TOKEN_INVALID = "TOKEN_INVALID"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"


HTTP_STATUS_BY_KIND = {
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.ACCOUNT_LOCKED: 423,
    ErrorKind.ACCOUNT_INACTIVE: 403,
    ErrorKind.PASSWORD_CHANGE_REQUIRED: 403,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.VALIDATION: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.TOKEN_INVALID: 401,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
}


class VenueAuthError(Exception):
    """Base class. `public_message` is safe to return to callers."""
    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    public_message = "Service temporarily unavailable"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict:
        return {"error": self.public_message, "code": self.kind.value}


class InvalidCredentialsError(VenueAuthError):
    kind = ErrorKind.INVALID_CREDENTIALS
    public_message = "Invalid username or password"


class AccountLockedError(VenueAuthError):
    kind = ErrorKind.ACCOUNT_LOCKED
    public_message = "Account locked"

    def __init__(self, message: str | None = None, retry_after_seconds: int | None = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.retry_after_seconds is not None:
            data["retry_after_seconds"] = self.retry_after_seconds
        return data


class AccountInactiveError(VenueAuthError):
    kind = ErrorKind.ACCOUNT_INACTIVE
    public_message = "Account deactivated"


class PasswordChangeRequiredError(VenueAuthError):
    kind = ErrorKind.PASSWORD_CHANGE_REQUIRED
    public_message = "Password change required"


class PermissionDeniedError(VenueAuthError):
    """Raised when an authorization decision denies the request."""
    kind = ErrorKind.PERMISSION_DENIED
    public_message = "Permission denied"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NotFoundError(VenueAuthError):
    kind = ErrorKind.NOT_FOUND
    public_message = "Not found"

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.kind.value}


class ConflictError(VenueAuthError):
    """409-level business rule conflict (duplicate username, founder constraints)."""
    kind = ErrorKind.CONFLICT
    public_message = "Conflict"

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.kind.value}


class ValidationError(VenueAuthError):
    """400-level input problem."""
    kind = ErrorKind.VALIDATION
    public_message = "Invalid request"

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.kind.value, "errors": self.errors}


class RateLimitedError(VenueAuthError):
    kind = ErrorKind.RATE_LIMITED
    public_message = "Too many requests"

    def __init__(self, message: str | None = None, retry_after_seconds: int | None = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry_after_seconds"] = self.retry_after_seconds
        return data


class TokenInvalidError(VenueAuthError):
    kind = ErrorKind.TOKEN_INVALID
    public_message = "Invalid or expired token"


class UpstreamUnavailableError(VenueAuthError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class RevocationUnavailableError(UpstreamUnavailableError):
    """The revocation backend could not record or answer for a token id."""
