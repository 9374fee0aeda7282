from __future__ import annotations

from ..extensions import db
from ..permissions import permission_codes
from ..time_utils import to_utc_z, utcnow


class SessionStatus:
    ACTIVE = "active"
    LOGGED_OUT = "logged_out"
    FORCE_REVOKED = "force_revoked"


class SubUser(db.Model):
    """
    Staff identity scoped to exactly one venue.

    MULTI-TENANT: Usernames are unique per venue among *active* sub-users,
    compared case-insensitively via username_normalized. A soft-deleted
    sub-user frees its username for reuse but keeps its audit history.

    FOUNDER ADMIN: At most one row per venue carries is_founder_admin. It is
    created at venue setup and can never be deactivated, demoted or deleted.

    Authority is the permissions bitmask (see venue_auth.permissions); role is
    an advisory label that additionally caps it.
    """
    __tablename__ = "sub_users"
    __table_args__ = (
        db.Index(
            "uq_sub_users_venue_username_active",
            "venue_id",
            "username_normalized",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active = true"),
        ),
        db.Index(
            "uq_sub_users_venue_founder",
            "venue_id",
            unique=True,
            sqlite_where=db.text("is_founder_admin = 1"),
            postgresql_where=db.text("is_founder_admin = true"),
        ),
        db.Index("ix_sub_users_venue_username", "venue_id", "username_normalized"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    venue_id = db.Column(db.Integer, db.ForeignKey("venues.id"), nullable=False, index=True)

    username = db.Column(db.String(64), nullable=False)
    username_normalized = db.Column(db.String(64), nullable=False)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False)
    permissions = db.Column(db.BigInteger, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_founder_admin = db.Column(db.Boolean, nullable=False, default=False)

    # Lockout bookkeeping
    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)
    lockout_end = db.Column(db.DateTime(timezone=True), nullable=True)

    must_change_password = db.Column(db.Boolean, nullable=False, default=True)
    password_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_sub_user_id = db.Column(db.Integer, db.ForeignKey("sub_users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    venue = db.relationship("Venue", backref=db.backref("sub_users", lazy=True))
    created_by = db.relationship("SubUser", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "venue_id": self.venue_id,
            "username": self.username,
            "role": self.role,
            "permissions": int(self.permissions or 0),
            "permission_codes": permission_codes(self.permissions or 0),
            "is_active": self.is_active,
            "is_founder_admin": self.is_founder_admin,
            "failed_login_attempts": self.failed_login_attempts,
            "lockout_end": to_utc_z(self.lockout_end),
            "must_change_password": self.must_change_password,
            "password_changed_at": to_utc_z(self.password_changed_at),
            "last_login_at": to_utc_z(self.last_login_at),
            "created_by_sub_user_id": self.created_by_sub_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }


class SubUserSession(db.Model):
    """
    One outstanding login of a sub-user (one per device).

    SECURITY NOTES:
    - Refresh tokens stored hashed (SHA-256); plaintext only leaves in the login response
    - access_token_jti is the id embedded in the currently valid operational token
    - A deactivated session is terminal: nothing sets is_active back to True

    STATUS: active -> logged_out | force_revoked
    """
    __tablename__ = "sub_user_sessions"
    __table_args__ = (
        db.Index("ix_sub_user_sessions_sub_user_active", "sub_user_id", "is_active"),
        db.Index("ix_sub_user_sessions_venue", "venue_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sub_user_id = db.Column(db.Integer, db.ForeignKey("sub_users.id"), nullable=False, index=True)
    venue_id = db.Column(db.Integer, db.ForeignKey("venues.id"), nullable=False)

    # Token hash (never store plaintext tokens!)
    refresh_token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    refresh_token_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    access_token_jti = db.Column(db.String(64), nullable=True, index=True)
    access_token_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Client information (for security monitoring)
    device_name = db.Column(db.String(128), nullable=True)
    device_type = db.Column(db.String(32), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length
    user_agent = db.Column(db.String(512), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(db.String(16), nullable=False, default=SessionStatus.ACTIVE)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    logged_out_at = db.Column(db.DateTime(timezone=True), nullable=True)
    logout_reason = db.Column(db.String(255), nullable=True)

    sub_user = db.relationship("SubUser", backref=db.backref("sessions", lazy=True))

    def deactivate(self, *, status: str, reason: str, now) -> bool:
        """
        Move an active session to a terminal status.

        Returns False (and changes nothing) if the session already ended.
        """
        if not self.is_active:
            return False
        self.is_active = False
        self.status = status
        self.logged_out_at = now
        self.logout_reason = reason
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sub_user_id": self.sub_user_id,
            "venue_id": self.venue_id,
            "device_name": self.device_name,
            "device_type": self.device_type,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "last_activity_at": to_utc_z(self.last_activity_at),
            "refresh_token_expires_at": to_utc_z(self.refresh_token_expires_at),
            "access_token_expires_at": to_utc_z(self.access_token_expires_at),
            "logged_out_at": to_utc_z(self.logged_out_at),
            "logout_reason": self.logout_reason,
        }
