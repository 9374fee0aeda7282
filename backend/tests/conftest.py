"""
Pytest fixtures for venue-auth tests.

Provides an app per test (in-memory SQLite, frozen clock, in-process cache),
a registered venue with its founder admin, and helpers for sub-users and
auth headers.
"""

from datetime import datetime, timedelta

import pytest

from venue_auth import create_app
from venue_auth.extensions import db
from venue_auth.permissions import ADMIN_PERMISSIONS, SubUserRole, VenuePermission
from venue_auth.services import session_service, sub_user_service, venue_service
from venue_auth.services.registry import get_services
from venue_auth.time_utils import Clock


OWNER_EMAIL = "owner@courthouse.example"
OWNER_PASSWORD = "OwnerPass123"
FOUNDER_PASSWORD = "FounderPass1"
CLERK_PASSWORD = "ClerkPass123"
MANAGER_PASSWORD = "ManagerPass1"


class FrozenClock(Clock):
    """Deterministic clock; tests move time with advance()."""

    def __init__(self, start: datetime):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BCRYPT_ROUNDS': 4,
    'JWT_SECRET_KEY': 'test-jwt-secret-key-of-at-least-32-bytes',
    'CACHE_BACKEND': 'memory',
    'MAX_FAILED_LOGIN_ATTEMPTS': 5,
    'LOCKOUT_DURATION_MINUTES': 30,
    'PASSWORD_RESET_COOLDOWN_SECONDS': 60,
}


@pytest.fixture(scope='function')
def clock():
    return FrozenClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture(scope='function')
def app(clock):
    """Create application for testing."""
    app = create_app(test_config=TEST_CONFIG, clock=clock)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def services(app):
    return get_services()


@pytest.fixture(scope='function')
def venue(app):
    """Registered venue (still requires first-admin setup)."""
    result = venue_service.create_venue("Court House", OWNER_EMAIL, OWNER_PASSWORD)
    return result["venue"]


@pytest.fixture(scope='function')
def founder(venue):
    """Founder admin "owner" of the venue."""
    return sub_user_service.create_first_admin(venue["id"], "owner", FOUNDER_PASSWORD).sub_user


@pytest.fixture(scope='function')
def make_sub_user(venue, founder):
    """Factory: create a sub-user through the founder, ready to log in."""
    def _make(username, role, permissions, password=CLERK_PASSWORD, actor_id=None):
        result = sub_user_service.create_sub_user(
            venue["id"],
            actor_id or founder["id"],
            username,
            password,
            role,
            permissions,
            must_change_password=False,
        )
        return result.sub_user
    return _make


@pytest.fixture(scope='function')
def clerk(make_sub_user):
    """Coworker "clerk" with {ViewVenueDetails, ViewBookings}."""
    return make_sub_user(
        "clerk",
        SubUserRole.COWORKER,
        VenuePermission.VIEW_VENUE_DETAILS | VenuePermission.VIEW_BOOKINGS,
    )


@pytest.fixture(scope='function')
def manager(make_sub_user):
    """Non-founder Admin "manager" with the full admin permission set."""
    return make_sub_user("manager", SubUserRole.ADMIN, ADMIN_PERMISSIONS, password=MANAGER_PASSWORD)


def login(venue_id: int, username: str, password: str, **kwargs):
    return session_service.authenticate_sub_user(venue_id, username, password, **kwargs)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def gateway_headers(client, venue):
    response = client.post('/api/auth/owner/login', json={
        'email': OWNER_EMAIL,
        'password': OWNER_PASSWORD,
    })
    assert response.status_code == 200, response.json
    return auth_headers(response.json['gateway_token'])
