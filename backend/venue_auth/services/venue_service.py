# Overview: Service-layer operations for venues and the venue-owner gateway login.

"""
Venue Registration & Owner Login

The owner login is the outer tier of the two-tier credential model. It
yields a gateway token: venue scoped, carrying no permissions, only good
for attempting a sub-user login at that venue.

A new venue starts with requires_sub_user_setup=True; the first sub-user
(the founder admin) is created through create_first_admin.
"""

from __future__ import annotations

from flask import current_app

from ..errors import AccountInactiveError, ConflictError, InvalidCredentialsError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Venue, VenueOwner
from ..time_utils import to_utc_z
from .audit_service import AuditAction, EntityType, record
from .concurrency import atomic
from .password_service import PasswordVerificationResult, validate_password_length
from .registry import get_services


def normalize_email(email) -> str:
    return (email or "").strip().lower()


def create_venue(name: str, owner_email: str, owner_password: str) -> dict:
    """
    Register a venue together with its owner account.

    Raises ValidationError for a blank name or malformed email, ConflictError
    when the email is already registered.
    """
    services = get_services()
    now = services.clock.now()
    name = (name or "").strip()
    email = normalize_email(owner_email)
    if not name:
        raise ValidationError("Venue name is required")
    if "@" not in email:
        raise ValidationError("A valid owner email is required")
    validate_password_length(owner_password)

    with atomic():
        if db.session.query(VenueOwner.id).filter(VenueOwner.email == email).first() is not None:
            raise ConflictError("Owner email already registered")

        venue = Venue(name=name, is_active=True, requires_sub_user_setup=True, created_at=now)
        db.session.add(venue)
        db.session.flush()

        owner = VenueOwner(
            venue_id=venue.id,
            email=email,
            password_hash=services.hasher.hash(email, owner_password),
            is_active=True,
            created_at=now,
        )
        db.session.add(owner)
        db.session.flush()

        record(
            venue_id=venue.id,
            action=AuditAction.VENUE_CREATED,
            entity_type=EntityType.VENUE,
            entity_id=venue.id,
            new_values={"name": venue.name, "owner_email": email},
            now=now,
        )

    current_app.logger.info("Venue %s created for owner %s", venue.id, owner.id)
    return {"venue": venue.to_dict(), "owner": owner.to_dict()}


def authenticate_venue_owner(
    email: str,
    password: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> dict:
    """
    Owner login -> gateway token.

    Unknown email and wrong password are both InvalidCredentials.
    """
    services = get_services()
    now = services.clock.now()
    email = normalize_email(email)

    with atomic():
        owner = db.session.query(VenueOwner).filter(VenueOwner.email == email).first()
        if owner is None:
            services.hasher.dummy_verify(password)
            current_app.logger.info("Owner login failed for unknown email")
            raise InvalidCredentialsError()

        verification = services.hasher.verify(email, owner.password_hash, password)
        if verification is PasswordVerificationResult.FAILED:
            current_app.logger.info("Owner login failed for owner %s", owner.id)
            raise InvalidCredentialsError()
        if not owner.is_active:
            raise AccountInactiveError()
        if not owner.venue.is_active:
            raise AccountInactiveError("Venue is deactivated")

        if verification is PasswordVerificationResult.SUCCESS_REHASH_NEEDED:
            owner.password_hash = services.hasher.hash(email, password)
        owner.last_login_at = now

        issued = services.tokens.issue_gateway_token(owner.id, owner.venue_id)
        record(
            venue_id=owner.venue_id,
            action=AuditAction.VENUE_OWNER_LOGIN,
            entity_type=EntityType.VENUE,
            entity_id=owner.venue_id,
            additional_data={"owner_id": owner.id},
            ip_address=ip_address,
            user_agent=user_agent,
            now=now,
        )

    current_app.logger.info("Owner %s logged in to venue %s", owner.id, owner.venue_id)
    venue = owner.venue
    return {
        "gateway_token": issued.token,
        "token_type": "Bearer",
        "expires_at": to_utc_z(issued.expires_at),
        "venue_id": owner.venue_id,
        "requires_sub_user_setup": venue.requires_sub_user_setup,
    }


def set_venue_active(venue_id: int, active: bool) -> dict:
    """
    Activate or deactivate a venue. Every cached decision tagged with the
    venue is invalidated afterwards.
    """
    services = get_services()
    now = services.clock.now()

    with atomic():
        venue = db.session.get(Venue, venue_id)
        if venue is None:
            raise NotFoundError("Venue not found")
        before = {"is_active": venue.is_active}
        changed = venue.is_active != bool(active)
        if changed:
            venue.is_active = bool(active)
            venue.updated_at = now
            record(
                venue_id=venue.id,
                action=AuditAction.VENUE_UPDATED,
                entity_type=EntityType.VENUE,
                entity_id=venue.id,
                old_values=before,
                new_values={"is_active": venue.is_active},
                now=now,
            )

    if changed:
        if not services.authorizer.invalidate_venue(venue.id):
            current_app.logger.error("Cached decisions for venue %s may be stale", venue.id)
        current_app.logger.info("Venue %s active=%s", venue.id, venue.is_active)
    return venue.to_dict()


def get_venue(venue_id: int) -> dict:
    venue = db.session.get(Venue, venue_id)
    if venue is None:
        raise NotFoundError("Venue not found")
    return venue.to_dict()


def list_venues(include_inactive: bool = True) -> list[dict]:
    query = db.session.query(Venue)
    if not include_inactive:
        query = query.filter(Venue.is_active.is_(True))
    return [venue.to_dict() for venue in query.order_by(Venue.id.asc()).all()]
