# Overview: Service-layer operations for sub-user management and permission checks.

"""
Sub-User Management

Every mutation follows the same shape inside one atomic() transaction:

1. Fresh, row-locked read of the acting sub-user and the target
2. Authority check with the *uncached* engine on those fresh snapshots
3. The change itself plus its audit entry (before/after snapshots)
4. Sessions of the target force-revoked when its authority changed

After commit: access tokens of the ended sessions are revoked and the
target's cached authorization entries are invalidated. Those two steps are
best-effort and reported on the returned MutationResult.

FOUNDER ADMIN:
- Created once per venue by create_first_admin
- Cannot be deactivated, demoted or deleted (ConflictError)
- Effective permissions are always every permission

PRIVILEGE ESCALATION: an actor can never grant a bit outside its own
effective permission set.
"""

from __future__ import annotations

import re

from flask import current_app

from ..domain import MutationResult, SubUserState, sub_user_snapshot
from ..errors import (
    AccountInactiveError,
    AccountLockedError,
    ConflictError,
    InvalidCredentialsError,
    NotFoundError,
    PasswordChangeRequiredError,
    PermissionDeniedError,
    RateLimitedError,
    ValidationError,
)
from ..extensions import db
from ..models import SessionStatus, SubUser, Venue
from ..permissions import (
    ADMIN_PERMISSIONS,
    DEFAULT_ROLE_PERMISSIONS,
    SubUserRole,
    VenuePermission,
    parse_permissions,
    permission_codes,
)
from ..time_utils import seconds_until
from .audit_service import AuditAction, EntityType, record
from .authorization_service import DenyReason, ManageOperation
from .concurrency import atomic, lock_for_update
from .password_service import PasswordVerificationResult
from .registry import get_services
from .session_service import (
    LogoutReason,
    active_sessions_for,
    deactivate_sessions,
    invalidate_subject,
    normalize_username,
    revoke_pending,
    verify_operational_token,
)


USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{2,63}$")


def validate_username(username) -> str:
    """Return the trimmed username or raise ValidationError."""
    value = (username or "").strip()
    if not USERNAME_PATTERN.match(value):
        raise ValidationError(
            "Username must be 3-64 characters: letters, digits, dot, dash or underscore"
        )
    return value


def _parse_role(role) -> SubUserRole:
    try:
        return SubUserRole(getattr(role, "value", role))
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {role}") from exc


def _parse_permissions(value):
    try:
        return parse_permissions(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _load_sub_user(venue_id: int, sub_user_id: int, *, lock: bool = False, label: str = "Sub-user") -> SubUser:
    query = db.session.query(SubUser).filter(
        SubUser.id == sub_user_id,
        SubUser.venue_id == venue_id,
        SubUser.deleted_at.is_(None),
    )
    if lock:
        query = lock_for_update(query)
    sub_user = query.first()
    if sub_user is None:
        raise NotFoundError(f"{label} not found")
    return sub_user


def _require(decision, *, actor_id, operation, target_id=None):
    if decision.authorized:
        return
    current_app.logger.warning(
        "Sub-user %s denied %s on %s: %s", actor_id, operation, target_id, decision.reason
    )
    if decision.reason == DenyReason.FOUNDER_SELF_DELETE:
        raise ConflictError(DenyReason.FOUNDER_SELF_DELETE)
    if decision.reason == DenyReason.PASSWORD_CHANGE_REQUIRED:
        raise PasswordChangeRequiredError()
    raise PermissionDeniedError(decision.reason)


def _require_grantable(actor_state: SubUserState, added) -> None:
    """Reject bits the actor does not effectively hold."""
    held = get_services().engine.get_effective_permissions(actor_state)
    excess = int(added) & ~int(held)
    if excess:
        raise PermissionDeniedError(
            "cannot grant permissions you do not hold: " + ", ".join(permission_codes(excess))
        )


def _require_valid_for_role(role: SubUserRole, permissions) -> tuple:
    result = get_services().authorizer.validate_permissions_for_role(role, permissions)
    if not result.is_valid:
        raise ValidationError(result.errors[0], list(result.errors))
    return result.warnings


def _ensure_username_free(venue_id: int, normalized: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(SubUser.id).filter(
        SubUser.venue_id == venue_id,
        SubUser.username_normalized == normalized,
        SubUser.is_active.is_(True),
    )
    if exclude_id is not None:
        query = query.filter(SubUser.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Username already exists for this venue")


def _finish(sub_user: SubUser, pending, result: MutationResult) -> MutationResult:
    """Post-commit follow-up: revoke ended sessions' tokens, invalidate cache."""
    result.sub_user = sub_user.to_dict()
    result.sessions_ended = len(pending)
    revoke_pending(pending, result)
    invalidate_subject(sub_user.id, result)
    return result


# -- creation --

def create_first_admin(
    venue_id: int,
    username: str,
    password: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> MutationResult:
    """
    Create the venue's founder admin.

    Only allowed while the venue still requires setup and has no sub-users.
    """
    services = get_services()
    now = services.clock.now()
    username = validate_username(username)

    with atomic():
        venue = lock_for_update(db.session.query(Venue).filter(Venue.id == venue_id)).first()
        if venue is None:
            raise NotFoundError("Venue not found")
        has_sub_users = db.session.query(SubUser.id).filter(SubUser.venue_id == venue_id).first()
        if not venue.requires_sub_user_setup or has_sub_users is not None:
            raise ConflictError("Venue already has sub-users")

        founder = SubUser(
            venue_id=venue_id,
            username=username,
            username_normalized=normalize_username(username),
            password_hash=services.hasher.hash(None, password),
            role=SubUserRole.ADMIN.value,
            permissions=int(ADMIN_PERMISSIONS),
            is_active=True,
            is_founder_admin=True,
            must_change_password=False,
            failed_login_attempts=0,
            password_changed_at=now,
            created_at=now,
        )
        db.session.add(founder)
        venue.requires_sub_user_setup = False
        venue.updated_at = now
        db.session.flush()

        record(
            venue_id=venue_id,
            sub_user_id=founder.id,
            action=AuditAction.SUB_USER_CREATED,
            entity_type=EntityType.SUB_USER,
            entity_id=founder.id,
            new_values=sub_user_snapshot(founder),
            additional_data={"founder_admin": True},
            ip_address=ip_address,
            user_agent=user_agent,
            now=now,
        )

    current_app.logger.info("Founder admin %s created for venue %s", founder.id, venue_id)
    return _finish(founder, [], MutationResult())


def create_sub_user(
    venue_id: int,
    actor_id: int,
    username: str,
    password: str,
    role,
    permissions=None,
    *,
    must_change_password: bool = True,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> MutationResult:
    """
    Create a sub-user on behalf of `actor_id`.

    Permissions default to the role's defaults. Coworker assignments must pass
    role validation; Admin assignments only collect warnings.
    """
    services = get_services()
    now = services.clock.now()
    username = validate_username(username)
    role = _parse_role(role)
    requested = (
        DEFAULT_ROLE_PERMISSIONS[role] if permissions is None else _parse_permissions(permissions)
    )
    warnings = _require_valid_for_role(role, requested)

    with atomic():
        actor = _load_sub_user(venue_id, actor_id, label="Acting sub-user")
        actor_state = SubUserState.from_persisted(actor)
        prospective = SubUserState(
            id=None, venue_id=venue_id, role=role.value, permissions=requested
        )
        _require(
            services.engine.can_manage_sub_user(actor_state, prospective, ManageOperation.CREATE),
            actor_id=actor_id,
            operation=ManageOperation.CREATE,
        )
        _require_grantable(actor_state, requested)

        normalized = normalize_username(username)
        _ensure_username_free(venue_id, normalized)

        sub_user = SubUser(
            venue_id=venue_id,
            username=username,
            username_normalized=normalized,
            password_hash=services.hasher.hash(None, password),
            role=role.value,
            permissions=int(requested),
            is_active=True,
            is_founder_admin=False,
            must_change_password=must_change_password,
            failed_login_attempts=0,
            created_by_sub_user_id=actor.id,
            created_at=now,
        )
        db.session.add(sub_user)
        db.session.flush()

        record(
            venue_id=venue_id,
            sub_user_id=actor.id,
            action=AuditAction.SUB_USER_CREATED,
            entity_type=EntityType.SUB_USER,
            entity_id=sub_user.id,
            new_values=sub_user_snapshot(sub_user),
            additional_data={"warnings": list(warnings)} if warnings else None,
            ip_address=ip_address,
            user_agent=user_agent,
            now=now,
        )

    current_app.logger.info("Sub-user %s created by %s in venue %s", sub_user.id, actor_id, venue_id)
    return _finish(sub_user, [], MutationResult())


# -- updates --

def update_sub_user(
    venue_id: int,
    actor_id: int,
    sub_user_id: int,
    *,
    role=None,
    permissions=None,
    is_active: bool | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> MutationResult:
    """
    Change role, permissions and/or active status.

    Deactivation is authorized as the "deactivate" operation and audited as
    SubUser.Deactivated; reactivation is audited as SubUser.Activated; role or
    permission changes are audited as SubUser.Updated. Any of these changes
    force-revokes the target's sessions.
    """
    services = get_services()
    engine = services.engine
    now = services.clock.now()
    new_role = _parse_role(role) if role is not None else None
    new_permissions = _parse_permissions(permissions) if permissions is not None else None

    with atomic():
        actor = _load_sub_user(venue_id, actor_id, label="Acting sub-user")
        target = _load_sub_user(venue_id, sub_user_id, lock=True)
        actor_state = SubUserState.from_persisted(actor)
        target_state = SubUserState.from_persisted(target)
        before = sub_user_snapshot(target)

        if target.is_founder_admin:
            if is_active is False:
                raise ConflictError("Founder admin cannot be deactivated")
            if new_role is not None and new_role is not SubUserRole.ADMIN:
                raise ConflictError("Founder admin cannot be demoted")

        deactivating = is_active is False and target.is_active
        activating = is_active is True and not target.is_active
        final_role = new_role or SubUserRole(target.role)
        final_permissions = (
            new_permissions if new_permissions is not None else parse_permissions(int(target.permissions or 0))
        )
        authority_edit = (
            final_role.value != target.role
            or int(final_permissions) != int(target.permissions or 0)
        )

        if deactivating:
            _require(
                engine.can_manage_sub_user(actor_state, target_state, ManageOperation.DEACTIVATE),
                actor_id=actor_id, operation=ManageOperation.DEACTIVATE, target_id=target.id,
            )
        if activating or authority_edit:
            _require(
                engine.can_manage_sub_user(actor_state, target_state, ManageOperation.UPDATE),
                actor_id=actor_id, operation=ManageOperation.UPDATE, target_id=target.id,
            )

        if not (deactivating or activating or authority_edit):
            return _finish(target, [], MutationResult())

        warnings = ()
        if authority_edit:
            # Promotion to Admin is itself an escalation the actor must be able to grant
            if final_role is SubUserRole.ADMIN and target.role != SubUserRole.ADMIN.value and actor_state.is_coworker:
                raise PermissionDeniedError(DenyReason.ROLE_HIERARCHY)
            warnings = _require_valid_for_role(final_role, final_permissions)
            added = int(final_permissions) & ~int(target.permissions or 0)
            _require_grantable(actor_state, VenuePermission(added))
            target.role = final_role.value
            target.permissions = int(final_permissions)

        if activating:
            _ensure_username_free(venue_id, target.username_normalized, exclude_id=target.id)
            target.is_active = True
        if deactivating:
            target.is_active = False

        target.updated_at = now
        pending = deactivate_sessions(
            active_sessions_for(target.id, lock=True),
            status=SessionStatus.FORCE_REVOKED,
            reason=LogoutReason.DEACTIVATED if deactivating else LogoutReason.AUTHORITY_CHANGED,
            now=now,
        )
        after = sub_user_snapshot(target)

        if authority_edit:
            record(
                venue_id=venue_id,
                sub_user_id=actor.id,
                action=AuditAction.SUB_USER_UPDATED,
                entity_type=EntityType.SUB_USER,
                entity_id=target.id,
                old_values=before,
                new_values=after,
                additional_data={"warnings": list(warnings)} if warnings else None,
                ip_address=ip_address,
                user_agent=user_agent,
                now=now,
            )
        if deactivating or activating:
            record(
                venue_id=venue_id,
                sub_user_id=actor.id,
                action=AuditAction.SUB_USER_DEACTIVATED if deactivating else AuditAction.SUB_USER_ACTIVATED,
                entity_type=EntityType.SUB_USER,
                entity_id=target.id,
                old_values=before,
                new_values=after,
                additional_data={"sessions_ended": len(pending)},
                ip_address=ip_address,
                user_agent=user_agent,
                now=now,
            )

    current_app.logger.info(
        "Sub-user %s updated by %s (deactivated=%s activated=%s authority=%s)",
        target.id, actor_id, deactivating, activating, authority_edit,
    )
    return _finish(target, pending, MutationResult())


def delete_sub_user(
    venue_id: int,
    actor_id: int,
    sub_user_id: int,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> MutationResult:
    """Soft delete: deactivate, stamp deleted_at, end every session."""
    services = get_services()
    now = services.clock.now()

    with atomic():
        actor = _load_sub_user(venue_id, actor_id, label="Acting sub-user")
        target = _load_sub_user(venue_id, sub_user_id, lock=True)
        _require(
            services.engine.can_manage_sub_user(
                SubUserState.from_persisted(actor),
                SubUserState.from_persisted(target),
                ManageOperation.DELETE,
            ),
            actor_id=actor_id, operation=ManageOperation.DELETE, target_id=target.id,
        )
        if target.is_founder_admin:
            raise ConflictError("Founder admin cannot be deleted")

        before = sub_user_snapshot(target)
        target.is_active = False
        target.deleted_at = now
        target.updated_at = now
        pending = deactivate_sessions(
            active_sessions_for(target.id, lock=True),
            status=SessionStatus.FORCE_REVOKED,
            reason=LogoutReason.DELETED,
            now=now,
        )
        record(
            venue_id=venue_id,
            sub_user_id=actor.id,
            action=AuditAction.SUB_USER_DELETED,
            entity_type=EntityType.SUB_USER,
            entity_id=target.id,
            old_values=before,
            new_values=sub_user_snapshot(target),
            additional_data={"sessions_ended": len(pending)},
            ip_address=ip_address,
            user_agent=user_agent,
            now=now,
        )

    current_app.logger.info("Sub-user %s deleted by %s", target.id, actor_id)
    return _finish(target, pending, MutationResult())


# -- passwords --

def change_password(
    venue_id: int,
    sub_user_id: int,
    current_password: str,
    new_password: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> MutationResult:
    """
    Self-service password change. Clears must_change_password.

    Allowed while a password change is required (that is its purpose), but
    not for inactive or locked-out accounts.
    """
    services = get_services()
    now = services.clock.now()

    with atomic():
        sub_user = _load_sub_user(venue_id, sub_user_id, lock=True)
        state = SubUserState.from_persisted(sub_user)
        if not state.is_active:
            raise AccountInactiveError()
        if state.is_locked_out(now):
            raise AccountLockedError(
                retry_after_seconds=seconds_until(state.lockout_end, now)
            )

        verification = services.hasher.verify(sub_user.id, sub_user.password_hash, current_password)
        if verification is PasswordVerificationResult.FAILED:
            raise InvalidCredentialsError("Current password is incorrect")
        if current_password == new_password:
            raise ValidationError("New password must differ from the current password")

        before = sub_user_snapshot(sub_user)
        sub_user.password_hash = services.hasher.hash(sub_user.id, new_password)
        sub_user.must_change_password = False
        sub_user.password_changed_at = now
        sub_user.updated_at = now
        record(
            venue_id=venue_id,
            sub_user_id=sub_user.id,
            action=AuditAction.SUB_USER_PASSWORD_CHANGED,
            entity_type=EntityType.SUB_USER,
            entity_id=sub_user.id,
            old_values=before,
            new_values=sub_user_snapshot(sub_user),
            ip_address=ip_address,
            user_agent=user_agent,
            now=now,
        )

    current_app.logger.info("Sub-user %s changed password", sub_user.id)
    return _finish(sub_user, [], MutationResult())


def reset_password(
    venue_id: int,
    actor_id: int,
    sub_user_id: int,
    new_password: str,
    *,
    must_change_password: bool = True,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> MutationResult:
    """
    Manager-initiated reset. Clears any lockout and ends every session.

    One cooldown (PASSWORD_RESET_COOLDOWN_SECONDS) applies per target,
    measured from its last password change of any kind.
    """
    services = get_services()
    now = services.clock.now()

    with atomic():
        actor = _load_sub_user(venue_id, actor_id, label="Acting sub-user")
        target = _load_sub_user(venue_id, sub_user_id, lock=True)
        _require(
            services.engine.can_manage_sub_user(
                SubUserState.from_persisted(actor),
                SubUserState.from_persisted(target),
                ManageOperation.RESET_PASSWORD,
            ),
            actor_id=actor_id, operation=ManageOperation.RESET_PASSWORD, target_id=target.id,
        )

        if target.password_changed_at is not None:
            next_allowed = target.password_changed_at + services.reset_cooldown
            if next_allowed > now:
                raise RateLimitedError(
                    "Password was changed recently, try again later",
                    retry_after_seconds=seconds_until(next_allowed, now),
                )

        before = sub_user_snapshot(target)
        target.password_hash = services.hasher.hash(target.id, new_password)
        target.must_change_password = must_change_password
        target.password_changed_at = now
        target.failed_login_attempts = 0
        target.lockout_end = None
        target.updated_at = now
        pending = deactivate_sessions(
            active_sessions_for(target.id, lock=True),
            status=SessionStatus.FORCE_REVOKED,
            reason=LogoutReason.PASSWORD_RESET,
            now=now,
        )
        record(
            venue_id=venue_id,
            sub_user_id=actor.id,
            action=AuditAction.SUB_USER_PASSWORD_RESET,
            entity_type=EntityType.SUB_USER,
            entity_id=target.id,
            old_values=before,
            new_values=sub_user_snapshot(target),
            additional_data={"sessions_ended": len(pending)},
            ip_address=ip_address,
            user_agent=user_agent,
            now=now,
        )

    current_app.logger.info("Sub-user %s password reset by %s", target.id, actor_id)
    return _finish(target, pending, MutationResult())


# -- reads --

def list_sub_users(venue_id: int, actor_id: int | None = None, *, include_inactive: bool = False) -> list[dict]:
    """
    Sub-users of a venue, oldest first. Soft-deleted rows are only included
    with include_inactive.

    When actor_id is given the actor must hold VIEW_SUB_USERS.
    """
    services = get_services()
    if actor_id is not None:
        actor = _load_sub_user(venue_id, actor_id, label="Acting sub-user")
        _require(
            services.authorizer.check_permission(
                SubUserState.from_persisted(actor), VenuePermission.VIEW_SUB_USERS, "list sub-users"
            ),
            actor_id=actor_id, operation="list",
        )

    query = db.session.query(SubUser).filter(SubUser.venue_id == venue_id)
    if not include_inactive:
        query = query.filter(SubUser.is_active.is_(True))
    return [sub_user.to_dict() for sub_user in query.order_by(SubUser.created_at.asc(), SubUser.id.asc()).all()]


def get_sub_user(venue_id: int, actor_id: int, sub_user_id: int) -> dict:
    services = get_services()
    actor = _load_sub_user(venue_id, actor_id, label="Acting sub-user")
    target = _load_sub_user(venue_id, sub_user_id)
    _require(
        services.authorizer.can_manage_sub_user(
            SubUserState.from_persisted(actor), SubUserState.from_persisted(target), ManageOperation.VIEW
        ),
        actor_id=actor_id, operation=ManageOperation.VIEW, target_id=target.id,
    )
    return target.to_dict()


def get_effective_permissions(sub_user_id: int) -> list[str]:
    sub_user = db.session.get(SubUser, sub_user_id)
    if sub_user is None:
        raise NotFoundError("Sub-user not found")
    effective = get_services().authorizer.get_effective_permissions(SubUserState.from_persisted(sub_user))
    return permission_codes(effective)


def check_permission(sub_user_id: int, permission, action: str = "check") -> bool:
    """
    Durable-state permission check (cached). Unknown sub-users are denied.
    """
    sub_user = db.session.get(SubUser, sub_user_id)
    if sub_user is None:
        return False
    decision = get_services().authorizer.check_permission(
        SubUserState.from_persisted(sub_user), parse_permissions(permission), action
    )
    return decision.authorized


def authorize_request(token: str, permission, action: str = "", *, venue_id=None) -> SubUserState:
    """
    Request-path check on the token's embedded claims.

    Verifies the token (signature, expiry, type, revocation), optionally the
    venue scope, then the permission. Returns the principal.
    """
    authorizer = get_services().authorizer
    _claims, principal = verify_operational_token(token)

    if venue_id is not None:
        _require(
            authorizer.can_access_venue_resource(principal, venue_id),
            actor_id=principal.id, operation="access venue", target_id=venue_id,
        )

    _require(
        authorizer.check_permission(principal, parse_permissions(permission), action),
        actor_id=principal.id, operation=action or "request",
    )
    return principal
