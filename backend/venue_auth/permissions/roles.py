# Overview: Role ceilings and default role permission mappings.
#
# ROLE_FORBIDDEN_PERMISSIONS is derived from PERMISSION_DEFINITIONS and checked
# when this module is imported: a flag without exactly one definition, or a role
# without a ceiling entry, makes the import fail.

from functools import reduce
from operator import or_

from .definitions import (
    NO_PERMISSIONS,
    PERMISSION_DEFINITIONS,
    SubUserRole,
    VenuePermission,
)


class PermissionTableError(RuntimeError):
    """The permission definition table is inconsistent with VenuePermission."""


def _union(flags):
    return reduce(or_, flags, NO_PERMISSIONS)


def _build_role_ceilings(definitions):
    seen = {}
    for row in definitions:
        flag = row[0]
        if flag in seen:
            raise PermissionTableError(f"Duplicate definition for {flag.name}")
        seen[flag] = row

    missing = [member.name for member in VenuePermission if member not in seen]
    if missing:
        raise PermissionTableError(f"Missing definitions for: {', '.join(missing)}")

    ceilings = {role: NO_PERMISSIONS for role in SubUserRole}
    for flag, _name, _description, _category, forbidden_roles in definitions:
        for role in forbidden_roles:
            if role not in ceilings:
                raise PermissionTableError(f"Unknown role {role!r} on {flag.name}")
            ceilings[role] |= flag

    for role in SubUserRole:
        if role not in ceilings:
            raise PermissionTableError(f"No ceiling entry for role {role.value}")
    return ceilings


# Bits each role can never exercise, whatever its stored bitmask says.
ROLE_FORBIDDEN_PERMISSIONS = _build_role_ceilings(PERMISSION_DEFINITIONS)

ALL_PERMISSIONS_MASK = int(_union(VenuePermission))

ADMIN_PERMISSIONS = VenuePermission(ALL_PERMISSIONS_MASK)

COWORKER_PERMISSIONS = (
    VenuePermission.VIEW_VENUE_DETAILS
    | VenuePermission.VIEW_BOOKINGS
    | VenuePermission.CREATE_BOOKINGS
    | VenuePermission.EDIT_BOOKINGS
    | VenuePermission.VIEW_CUSTOMERS
    | VenuePermission.VIEW_REPORTS
)

if int(COWORKER_PERMISSIONS) & int(ROLE_FORBIDDEN_PERMISSIONS[SubUserRole.COWORKER]):
    raise PermissionTableError("COWORKER_PERMISSIONS includes a bit forbidden for Coworker")

# Used when a sub-user is created without an explicit permission set.
DEFAULT_ROLE_PERMISSIONS = {
    SubUserRole.ADMIN: ADMIN_PERMISSIONS,
    SubUserRole.COWORKER: COWORKER_PERMISSIONS,
}

# Advisory: an Admin without these is flagged with a warning, never rejected.
RECOMMENDED_ADMIN_PERMISSIONS = (
    VenuePermission.VIEW_VENUE_DETAILS
    | VenuePermission.EDIT_VENUE_DETAILS
    | VenuePermission.MANAGE_PRICING
    | VenuePermission.MANAGE_WORKING_HOURS
    | VenuePermission.VIEW_SUB_USERS
    | VenuePermission.CREATE_SUB_USERS
    | VenuePermission.EDIT_SUB_USERS
    | VenuePermission.VIEW_BOOKINGS
    | VenuePermission.MANAGE_CUSTOMERS
    | VenuePermission.VIEW_REPORTS
)

# Baseline a Coworker assignment must include.
REQUIRED_COWORKER_PERMISSIONS = (
    VenuePermission.VIEW_VENUE_DETAILS | VenuePermission.VIEW_BOOKINGS
)


def forbidden_for_role(role):
    """Bits the role can never exercise. Unknown roles forbid nothing."""
    try:
        return ROLE_FORBIDDEN_PERMISSIONS[SubUserRole(role)]
    except ValueError:
        return NO_PERMISSIONS
