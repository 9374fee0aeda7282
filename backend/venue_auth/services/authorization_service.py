# Overview: Pure venue authorization decisions over SubUserState snapshots.

"""
Authorization Engine

WHY: One place decides whether a sub-user may exercise a permission or manage
another sub-user. No I/O: inputs are immutable SubUserState snapshots and the
injected clock, so the same decision is reached whether the snapshot came
from the database or from token claims.

CHECK ORDER (check_permission):
1. inactive                       -> deny "account inactive"
2. lockout_end in the future      -> deny "account locked"
3. founder admin                  -> allow
4. must_change_password           -> deny "password change required"
5. bitmask lacks a required bit   -> deny "missing permission"
6. role ceiling forbids a bit     -> deny "role forbids" (independent of 5)
7. allow

A locked-out founder admin is denied like anyone else.
"""

from __future__ import annotations

from ..domain import AuthorizationDecision, SubUserState, ValidationResult
from ..permissions import (
    ADMIN_PERMISSIONS,
    NO_PERMISSIONS,
    RECOMMENDED_ADMIN_PERMISSIONS,
    REQUIRED_COWORKER_PERMISSIONS,
    ROLE_FORBIDDEN_PERMISSIONS,
    SubUserRole,
    VenuePermission,
    has_all,
    parse_permissions,
    without,
)


class DenyReason:
    ACCOUNT_INACTIVE = "account inactive"
    ACCOUNT_LOCKED = "account locked"
    PASSWORD_CHANGE_REQUIRED = "password change required"
    MISSING_PERMISSION = "missing permission"
    ROLE_FORBIDS = "role forbids"
    ROLE_HIERARCHY = "role hierarchy"
    FOUNDER_SELF_DELETE = "cannot delete own founder admin"
    FOUNDER_PROTECTED = "cannot manage founder admin"
    SELF_MANAGEMENT = "cannot perform this operation on own account"
    UNKNOWN_OPERATION = "unknown operation"
    WRONG_VENUE = "sub-user does not belong to this venue"


class ManageOperation:
    CREATE = "create"
    UPDATE = "update"
    EDIT = "edit"
    DELETE = "delete"
    DEACTIVATE = "deactivate"
    RESET_PASSWORD = "reset_password"
    VIEW = "view"
    UPDATE_OWN_PASSWORD = "update_own_password"


OPERATION_PERMISSIONS = {
    ManageOperation.CREATE: VenuePermission.CREATE_SUB_USERS,
    ManageOperation.UPDATE: VenuePermission.EDIT_SUB_USERS,
    ManageOperation.EDIT: VenuePermission.EDIT_SUB_USERS,
    ManageOperation.DELETE: VenuePermission.DELETE_SUB_USERS,
    ManageOperation.DEACTIVATE: VenuePermission.DELETE_SUB_USERS,
    ManageOperation.RESET_PASSWORD: VenuePermission.RESET_SUB_USER_PASSWORDS,
    ManageOperation.VIEW: VenuePermission.VIEW_SUB_USERS,
}

SELF_OPERATIONS = frozenset({ManageOperation.VIEW, ManageOperation.UPDATE_OWN_PASSWORD})


def _role_ceiling(role):
    """Forbidden bits for a known role, None for an unknown role."""
    try:
        return ROLE_FORBIDDEN_PERMISSIONS[SubUserRole(role)]
    except ValueError:
        return None


class AuthorizationEngine:
    def __init__(self, clock):
        self.clock = clock

    def check_permission(self, sub_user: SubUserState, required, action: str = "") -> AuthorizationDecision:
        required = parse_permissions(required)

        if not sub_user.is_active:
            return AuthorizationDecision.deny(DenyReason.ACCOUNT_INACTIVE)

        if sub_user.is_locked_out(self.clock.now()):
            return AuthorizationDecision.deny(DenyReason.ACCOUNT_LOCKED)

        if sub_user.is_founder_admin:
            return AuthorizationDecision.allow()

        if sub_user.must_change_password:
            return AuthorizationDecision.deny(DenyReason.PASSWORD_CHANGE_REQUIRED)

        if not has_all(sub_user.permissions, required):
            return AuthorizationDecision.deny(DenyReason.MISSING_PERMISSION)

        # The role ceiling holds even if the bitmask was mis-assigned
        ceiling = _role_ceiling(sub_user.role)
        if ceiling is None or int(required) & int(ceiling):
            return AuthorizationDecision.deny(DenyReason.ROLE_FORBIDS)

        return AuthorizationDecision.allow()

    def can_manage_sub_user(self, manager: SubUserState, target: SubUserState, operation: str) -> AuthorizationDecision:
        """
        target.id is None for a sub-user that does not exist yet (create).
        """
        operation = (operation or "").lower()

        basic = self.check_permission(manager, VenuePermission.VIEW_SUB_USERS, "manage sub-user")
        if not basic.authorized:
            return basic

        is_self = target.id is not None and manager.id == target.id

        if manager.is_founder_admin:
            if operation == ManageOperation.DELETE and is_self:
                return AuthorizationDecision.deny(DenyReason.FOUNDER_SELF_DELETE)
            return AuthorizationDecision.allow()

        if target.is_founder_admin:
            return AuthorizationDecision.deny(DenyReason.FOUNDER_PROTECTED)

        if is_self:
            if operation not in SELF_OPERATIONS:
                return AuthorizationDecision.deny(DenyReason.SELF_MANAGEMENT)
            if operation == ManageOperation.UPDATE_OWN_PASSWORD:
                return AuthorizationDecision.allow()

        if manager.is_coworker and target.role == SubUserRole.ADMIN.value:
            return AuthorizationDecision.deny(DenyReason.ROLE_HIERARCHY)

        required = OPERATION_PERMISSIONS.get(operation)
        if required is None:
            return AuthorizationDecision.deny(DenyReason.UNKNOWN_OPERATION)
        return self.check_permission(manager, required, operation)

    def can_access_venue_resource(self, sub_user: SubUserState, venue_id) -> AuthorizationDecision:
        if not sub_user.is_active:
            return AuthorizationDecision.deny(DenyReason.ACCOUNT_INACTIVE)
        if sub_user.is_locked_out(self.clock.now()):
            return AuthorizationDecision.deny(DenyReason.ACCOUNT_LOCKED)
        if str(sub_user.venue_id) != str(venue_id):
            return AuthorizationDecision.deny(DenyReason.WRONG_VENUE)
        return AuthorizationDecision.allow()

    def get_effective_permissions(self, sub_user: SubUserState) -> VenuePermission:
        if sub_user.is_founder_admin:
            return ADMIN_PERMISSIONS
        if not sub_user.is_active or sub_user.is_locked_out(self.clock.now()):
            return NO_PERMISSIONS
        if sub_user.must_change_password:
            return NO_PERMISSIONS

        ceiling = _role_ceiling(sub_user.role)
        if ceiling is None:
            return NO_PERMISSIONS
        return without(sub_user.permissions, ceiling)

    def validate_permissions_for_role(self, role, permissions) -> ValidationResult:
        """
        Advisory check used when permissions are assigned.

        Admin missing recommended capabilities -> valid, with a warning.
        Coworker holding a forbidden bit, or missing the baseline view bits -> invalid.
        """
        permissions = parse_permissions(permissions)
        errors = []
        warnings = []

        try:
            role = SubUserRole(role)
        except ValueError:
            return ValidationResult(False, (f"Unknown role: {role}",), ())

        if role is SubUserRole.ADMIN:
            if not has_all(permissions, RECOMMENDED_ADMIN_PERMISSIONS):
                warnings.append("Admin role should have comprehensive management permissions")
        elif role is SubUserRole.COWORKER:
            if int(permissions) & int(ROLE_FORBIDDEN_PERMISSIONS[role]):
                errors.append("Coworker role should not have delete, financial, or refund permissions")
            if not has_all(permissions, REQUIRED_COWORKER_PERMISSIONS):
                errors.append("Coworker role must have basic viewing permissions")

        return ValidationResult(not errors, tuple(errors), tuple(warnings))
