from .venues import Venue, VenueOwner
from .sub_users import SubUser, SubUserSession, SessionStatus
from .audit import AuditLogEntry

__all__ = [
    'Venue', 'VenueOwner',
    'SubUser', 'SubUserSession', 'SessionStatus',
    'AuditLogEntry',
]
