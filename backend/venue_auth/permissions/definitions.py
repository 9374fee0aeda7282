# Overview: Venue capability flags, sub-user roles, and per-permission definitions.
# Each permission is defined as: (flag, name, description, category, forbidden_roles)
# The permission code is the flag member name (e.g. "VIEW_BOOKINGS").

from enum import Enum, IntFlag

from .categories import PermissionCategory


class VenuePermission(IntFlag):
    """
    Atomic venue capabilities.

    Persisted as an integer bitmask (SubUser.permissions) and embedded in
    operational tokens as a string-encoded integer. Bit positions are part
    of the wire format: never renumber an existing member.
    """
    VIEW_VENUE_DETAILS = 1 << 0
    EDIT_VENUE_DETAILS = 1 << 1
    MANAGE_PRICING = 1 << 2
    MANAGE_WORKING_HOURS = 1 << 3
    MANAGE_VENUE_IMAGES = 1 << 4

    VIEW_SUB_USERS = 1 << 5
    CREATE_SUB_USERS = 1 << 6
    EDIT_SUB_USERS = 1 << 7
    DELETE_SUB_USERS = 1 << 8
    RESET_SUB_USER_PASSWORDS = 1 << 9

    VIEW_BOOKINGS = 1 << 10
    CREATE_BOOKINGS = 1 << 11
    EDIT_BOOKINGS = 1 << 12
    CANCEL_BOOKINGS = 1 << 13

    VIEW_CUSTOMERS = 1 << 14
    MANAGE_CUSTOMERS = 1 << 15

    VIEW_FINANCIALS = 1 << 16
    MANAGE_FINANCIALS = 1 << 17
    PROCESS_REFUNDS = 1 << 18

    VIEW_REPORTS = 1 << 19
    EXPORT_REPORTS = 1 << 20

    VIEW_AUDIT_LOGS = 1 << 21
    VIEW_COWORKER_ACTIVITY = 1 << 22


class SubUserRole(str, Enum):
    """
    Advisory role label. Authority comes from the bitmask; the role only
    caps it (see roles.ROLE_FORBIDDEN_PERMISSIONS).
    """
    ADMIN = "Admin"
    COWORKER = "Coworker"


NO_PERMISSIONS = VenuePermission(0)

_COWORKER = (SubUserRole.COWORKER,)


# -- VENUE --

VENUE_PERMISSIONS = [
    (
        VenuePermission.VIEW_VENUE_DETAILS,
        "View Venue Details",
        "View venue profile, location and settings",
        PermissionCategory.VENUE,
        (),
    ),
    (
        VenuePermission.EDIT_VENUE_DETAILS,
        "Edit Venue Details",
        "Edit venue profile and settings",
        PermissionCategory.VENUE,
        (),
    ),
    (
        VenuePermission.MANAGE_PRICING,
        "Manage Pricing",
        "Change venue prices and packages",
        PermissionCategory.VENUE,
        (),
    ),
    (
        VenuePermission.MANAGE_WORKING_HOURS,
        "Manage Working Hours",
        "Change opening hours and closures",
        PermissionCategory.VENUE,
        (),
    ),
    (
        VenuePermission.MANAGE_VENUE_IMAGES,
        "Manage Venue Images",
        "Upload and remove venue images",
        PermissionCategory.VENUE,
        (),
    ),
]


# -- SUB-USERS --

SUB_USER_PERMISSIONS = [
    (
        VenuePermission.VIEW_SUB_USERS,
        "View Sub-Users",
        "List staff accounts of the venue",
        PermissionCategory.SUB_USERS,
        (),
    ),
    (
        VenuePermission.CREATE_SUB_USERS,
        "Create Sub-Users",
        "Create new staff accounts",
        PermissionCategory.SUB_USERS,
        (),
    ),
    (
        VenuePermission.EDIT_SUB_USERS,
        "Edit Sub-Users",
        "Change role, permissions and status of staff accounts",
        PermissionCategory.SUB_USERS,
        (),
    ),
    (
        VenuePermission.DELETE_SUB_USERS,
        "Delete Sub-Users",
        "Deactivate or delete staff accounts",
        PermissionCategory.SUB_USERS,
        _COWORKER,
    ),
    (
        VenuePermission.RESET_SUB_USER_PASSWORDS,
        "Reset Sub-User Passwords",
        "Set a new password for another staff account",
        PermissionCategory.SUB_USERS,
        (),
    ),
]


# -- BOOKINGS --

BOOKING_PERMISSIONS = [
    (
        VenuePermission.VIEW_BOOKINGS,
        "View Bookings",
        "View reservations",
        PermissionCategory.BOOKINGS,
        (),
    ),
    (
        VenuePermission.CREATE_BOOKINGS,
        "Create Bookings",
        "Create reservations on behalf of customers",
        PermissionCategory.BOOKINGS,
        (),
    ),
    (
        VenuePermission.EDIT_BOOKINGS,
        "Edit Bookings",
        "Change existing reservations",
        PermissionCategory.BOOKINGS,
        (),
    ),
    (
        VenuePermission.CANCEL_BOOKINGS,
        "Cancel Bookings",
        "Cancel reservations",
        PermissionCategory.BOOKINGS,
        (),
    ),
]


# -- CUSTOMERS --

CUSTOMER_PERMISSIONS = [
    (
        VenuePermission.VIEW_CUSTOMERS,
        "View Customers",
        "View customer profiles and history",
        PermissionCategory.CUSTOMERS,
        (),
    ),
    (
        VenuePermission.MANAGE_CUSTOMERS,
        "Manage Customers",
        "Edit customer records and notes",
        PermissionCategory.CUSTOMERS,
        (),
    ),
]


# -- FINANCIAL --

FINANCIAL_PERMISSIONS = [
    (
        VenuePermission.VIEW_FINANCIALS,
        "View Financials",
        "View revenue and payout figures",
        PermissionCategory.FINANCIAL,
        (),
    ),
    (
        VenuePermission.MANAGE_FINANCIALS,
        "Manage Financials",
        "Change payout accounts and financial settings",
        PermissionCategory.FINANCIAL,
        _COWORKER,
    ),
    (
        VenuePermission.PROCESS_REFUNDS,
        "Process Refunds",
        "Issue refunds to customers",
        PermissionCategory.FINANCIAL,
        _COWORKER,
    ),
]


# -- REPORTING --

REPORTING_PERMISSIONS = [
    (
        VenuePermission.VIEW_REPORTS,
        "View Reports",
        "View operational reports",
        PermissionCategory.REPORTING,
        (),
    ),
    (
        VenuePermission.EXPORT_REPORTS,
        "Export Reports",
        "Download reports as files",
        PermissionCategory.REPORTING,
        (),
    ),
]


# -- TRACKING --

TRACKING_PERMISSIONS = [
    (
        VenuePermission.VIEW_AUDIT_LOGS,
        "View Audit Logs",
        "Browse the venue audit trail",
        PermissionCategory.TRACKING,
        (),
    ),
    (
        VenuePermission.VIEW_COWORKER_ACTIVITY,
        "View Coworker Activity",
        "View per-staff activity summaries",
        PermissionCategory.TRACKING,
        (),
    ),
]


PERMISSION_DEFINITIONS = (
    VENUE_PERMISSIONS
    + SUB_USER_PERMISSIONS
    + BOOKING_PERMISSIONS
    + CUSTOMER_PERMISSIONS
    + FINANCIAL_PERMISSIONS
    + REPORTING_PERMISSIONS
    + TRACKING_PERMISSIONS
)
