# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    VENUE = "VENUE"
    SUB_USERS = "SUB_USERS"
    BOOKINGS = "BOOKINGS"
    CUSTOMERS = "CUSTOMERS"
    FINANCIAL = "FINANCIAL"
    REPORTING = "REPORTING"
    TRACKING = "TRACKING"
