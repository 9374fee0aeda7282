from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Venue(db.Model):
    """
    Tenant root for sub-users, sessions and audit entries.

    LIFECYCLE: Created at venue registration, never hard-deleted. Deactivating
    a venue invalidates every cached authorization decision tagged with it.

    requires_sub_user_setup stays True until the founder admin exists.
    """
    __tablename__ = "venues"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    requires_sub_user_setup = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "requires_sub_user_setup": self.requires_sub_user_setup,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class VenueOwner(db.Model):
    """
    Venue-owner account behind the gateway login.

    The owner never operates the venue directly: a gateway token only lets the
    holder attempt a sub-user login for this venue.
    """
    __tablename__ = "venue_owners"
    __table_args__ = (
        db.Index("ix_venue_owners_venue_id", "venue_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    venue_id = db.Column(db.Integer, db.ForeignKey("venues.id"), nullable=False)

    # Stored lower-cased
    email = db.Column(db.String(255), nullable=False, unique=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    venue = db.relationship("Venue", backref=db.backref("owners", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "venue_id": self.venue_id,
            "email": self.email,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }
