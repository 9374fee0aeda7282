# Overview: Utility functions for permission lookups, parsing and validation.

from .definitions import PERMISSION_DEFINITIONS, VenuePermission
from .roles import ALL_PERMISSIONS_MASK


def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0].name for perm in PERMISSION_DEFINITIONS]


def get_permissions_by_category(category):
    """Get all permissions in a category."""
    return [perm for perm in PERMISSION_DEFINITIONS if perm[3] == category]


def get_permission_definition(code):
    """Get full definition for a permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0].name == code:
            return {
                "code": perm[0].name,
                "bit": int(perm[0]),
                "name": perm[1],
                "description": perm[2],
                "category": perm[3],
                "forbidden_roles": [role.value for role in perm[4]],
            }
    return None


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()


def parse_permissions(value):
    """
    Coerce a stored or submitted permission value into a VenuePermission.

    Accepts an int bitmask, a decimal string (token claim encoding), a single
    code, a list of codes, or a VenuePermission. Unknown bits are dropped;
    unknown codes raise ValueError.
    """
    if value is None:
        return VenuePermission(0)
    if isinstance(value, VenuePermission):
        return VenuePermission(int(value) & ALL_PERMISSIONS_MASK)
    if isinstance(value, bool):
        raise ValueError("Permissions must be a bitmask or a list of codes")
    if isinstance(value, int):
        return VenuePermission(value & ALL_PERMISSIONS_MASK)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return VenuePermission(int(stripped) & ALL_PERMISSIONS_MASK)
        value = [stripped] if stripped else []
    if isinstance(value, (list, tuple, set, frozenset)):
        result = VenuePermission(0)
        for code in value:
            if not isinstance(code, str) or not validate_permission_code(code):
                raise ValueError(f"Unknown permission code: {code}")
            result |= VenuePermission[code]
        return result
    raise ValueError("Permissions must be a bitmask or a list of codes")


def permission_codes(permissions):
    """Flag (or int) -> sorted list of member codes."""
    mask = int(permissions) & ALL_PERMISSIONS_MASK
    return sorted(member.name for member in VenuePermission if mask & int(member))


def has_all(permissions, required):
    """True when every bit of `required` is present in `permissions`."""
    return (int(permissions) & int(required)) == int(required)


def without(permissions, removed):
    """Bits of `permissions` not in `removed`, clamped to defined bits."""
    return VenuePermission(int(permissions) & ~int(removed) & ALL_PERMISSIONS_MASK)
