# Overview: Permission system package.
# Re-exports all public APIs so callers import from venue_auth.permissions.

from .categories import PermissionCategory
from .definitions import (
    NO_PERMISSIONS,
    PERMISSION_DEFINITIONS,
    VENUE_PERMISSIONS,
    SUB_USER_PERMISSIONS,
    BOOKING_PERMISSIONS,
    CUSTOMER_PERMISSIONS,
    FINANCIAL_PERMISSIONS,
    REPORTING_PERMISSIONS,
    TRACKING_PERMISSIONS,
    SubUserRole,
    VenuePermission,
)
from .roles import (
    ADMIN_PERMISSIONS,
    ALL_PERMISSIONS_MASK,
    COWORKER_PERMISSIONS,
    DEFAULT_ROLE_PERMISSIONS,
    RECOMMENDED_ADMIN_PERMISSIONS,
    REQUIRED_COWORKER_PERMISSIONS,
    ROLE_FORBIDDEN_PERMISSIONS,
    PermissionTableError,
    forbidden_for_role,
)
from .helpers import (
    get_all_permission_codes,
    get_permissions_by_category,
    get_permission_definition,
    has_all,
    parse_permissions,
    permission_codes,
    validate_permission_code,
    without,
)

__all__ = [
    "PermissionCategory",
    "NO_PERMISSIONS",
    "PERMISSION_DEFINITIONS",
    "VENUE_PERMISSIONS",
    "SUB_USER_PERMISSIONS",
    "BOOKING_PERMISSIONS",
    "CUSTOMER_PERMISSIONS",
    "FINANCIAL_PERMISSIONS",
    "REPORTING_PERMISSIONS",
    "TRACKING_PERMISSIONS",
    "SubUserRole",
    "VenuePermission",
    "ADMIN_PERMISSIONS",
    "ALL_PERMISSIONS_MASK",
    "COWORKER_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "RECOMMENDED_ADMIN_PERMISSIONS",
    "REQUIRED_COWORKER_PERMISSIONS",
    "ROLE_FORBIDDEN_PERMISSIONS",
    "PermissionTableError",
    "forbidden_for_role",
    "get_all_permission_codes",
    "get_permissions_by_category",
    "get_permission_definition",
    "has_all",
    "parse_permissions",
    "permission_codes",
    "validate_permission_code",
    "without",
]
