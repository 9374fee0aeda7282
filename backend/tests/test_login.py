"""
Sub-user login tests.

Verifies:
- Successful login issues tokens whose claims carry the effective permissions
- Unknown usernames and wrong passwords are indistinguishable
- Lockout after the configured number of failures, even for the right password,
  and recovery once the window elapses
- Inactive sub-users and inactive venues cannot log in
- Failed attempts are audited
"""

from datetime import timedelta

import pytest

from venue_auth.errors import AccountInactiveError, AccountLockedError, InvalidCredentialsError, TokenInvalidError
from venue_auth.extensions import db
from venue_auth.models import AuditLogEntry, SubUser, SubUserSession
from venue_auth.permissions import VenuePermission
from venue_auth.services import session_service, sub_user_service, venue_service
from venue_auth.services.audit_service import AuditAction

from conftest import CLERK_PASSWORD, FOUNDER_PASSWORD, login


def _reload(sub_user_id):
    db.session.expire_all()
    return db.session.get(SubUser, sub_user_id)


class TestLoginSuccess:

    def test_login_issues_tokens(self, services, venue, clerk):
        result = login(venue["id"], "clerk", CLERK_PASSWORD, device_name="Front desk", ip_address="10.0.0.5")

        claims = services.tokens.verify_operational_token(result.access_token)
        assert claims["sub"] == str(clerk["id"])
        assert claims["venueId"] == str(venue["id"])
        assert claims["subUserRole"] == "Coworker"
        assert int(claims["permissions"]) == int(VenuePermission.VIEW_VENUE_DETAILS | VenuePermission.VIEW_BOOKINGS)

        session = db.session.get(SubUserSession, result.session_id)
        assert session.is_active
        assert session.access_token_jti == claims["jti"]
        assert session.device_name == "Front desk"
        assert session.refresh_token_hash != result.refresh_token

    def test_username_is_case_insensitive(self, venue, clerk):
        result = login(venue["id"], "  CLERK ", CLERK_PASSWORD)
        assert result.sub_user["username"] == "clerk"

    def test_login_is_audited(self, venue, clerk):
        login(venue["id"], "clerk", CLERK_PASSWORD)
        entry = db.session.query(AuditLogEntry).filter_by(action=AuditAction.SUB_USER_LOGIN).one()
        assert entry.sub_user_id == clerk["id"]

    def test_founder_token_carries_every_permission(self, services, venue, founder):
        result = login(venue["id"], "owner", FOUNDER_PASSWORD)
        claims = services.tokens.verify_operational_token(result.access_token)
        assert int(claims["permissions"]) == (1 << 23) - 1

    def test_must_change_password_token_is_empty(self, services, venue, founder):
        sub_user_service.create_sub_user(
            venue["id"], founder["id"], "newbie", "Temporary123", "Coworker",
            ["VIEW_VENUE_DETAILS", "VIEW_BOOKINGS"],
        )
        result = login(venue["id"], "newbie", "Temporary123")
        assert result.must_change_password is True
        claims = services.tokens.verify_operational_token(result.access_token)
        assert claims["permissions"] == "0"


class TestLoginFailure:

    def test_unknown_username(self, venue, clerk):
        with pytest.raises(InvalidCredentialsError):
            login(venue["id"], "ghost", CLERK_PASSWORD)
        entry = db.session.query(AuditLogEntry).filter_by(action=AuditAction.SUB_USER_LOGIN_FAILED).one()
        assert entry.sub_user_id is None

    def test_wrong_password_counts(self, venue, clerk):
        with pytest.raises(InvalidCredentialsError) as exc_info:
            login(venue["id"], "clerk", "WrongPass123")
        assert exc_info.value.to_dict() == {"error": "Invalid username or password", "code": "INVALID_CREDENTIALS"}
        assert _reload(clerk["id"]).failed_login_attempts == 1

    def test_unknown_venue(self, app, clerk):
        with pytest.raises(InvalidCredentialsError):
            login(999, "clerk", CLERK_PASSWORD)

    def test_inactive_venue(self, venue, clerk):
        venue_service.set_venue_active(venue["id"], False)
        with pytest.raises(AccountInactiveError):
            login(venue["id"], "clerk", CLERK_PASSWORD)

    def test_inactive_sub_user(self, venue, founder, clerk):
        sub_user_service.update_sub_user(venue["id"], founder["id"], clerk["id"], is_active=False)
        with pytest.raises(AccountInactiveError):
            login(venue["id"], "clerk", CLERK_PASSWORD)

    def test_inactive_sub_user_with_wrong_password_is_invalid_credentials(self, venue, founder, clerk):
        sub_user_service.update_sub_user(venue["id"], founder["id"], clerk["id"], is_active=False)
        with pytest.raises(InvalidCredentialsError):
            login(venue["id"], "clerk", "WrongPass123")


class TestLockout:

    def _fail(self, venue_id, times):
        for _ in range(times):
            with pytest.raises(InvalidCredentialsError):
                login(venue_id, "clerk", "WrongPass123")

    def test_lockout_and_recovery(self, venue, clerk, clock):
        self._fail(venue["id"], 5)

        with pytest.raises(AccountLockedError) as exc_info:
            login(venue["id"], "clerk", CLERK_PASSWORD)
        assert exc_info.value.retry_after_seconds == 30 * 60

        clock.advance(minutes=29)
        with pytest.raises(AccountLockedError):
            login(venue["id"], "clerk", CLERK_PASSWORD)

        clock.advance(minutes=1, seconds=1)
        result = login(venue["id"], "clerk", CLERK_PASSWORD)
        assert result.access_token

        sub_user = _reload(clerk["id"])
        assert sub_user.failed_login_attempts == 0
        assert sub_user.lockout_end is None

    def test_four_failures_do_not_lock(self, venue, clerk):
        self._fail(venue["id"], 4)
        assert login(venue["id"], "clerk", CLERK_PASSWORD).access_token
        assert _reload(clerk["id"]).failed_login_attempts == 0

    def test_locked_attempts_do_not_extend_window(self, venue, clerk, clock):
        self._fail(venue["id"], 5)
        lockout_end = _reload(clerk["id"]).lockout_end

        clock.advance(minutes=10)
        with pytest.raises(AccountLockedError):
            login(venue["id"], "clerk", "WrongPass123")
        assert _reload(clerk["id"]).lockout_end == lockout_end

    def test_lockout_ends_existing_sessions(self, services, venue, clerk):
        session = login(venue["id"], "clerk", CLERK_PASSWORD)
        self._fail(venue["id"], 5)

        with pytest.raises(TokenInvalidError):
            session_service.verify_operational_token(session.access_token)
        assert db.session.get(SubUserSession, session.session_id).is_active is False

    def test_lock_is_audited(self, venue, clerk):
        self._fail(venue["id"], 5)
        actions = [entry.action for entry in db.session.query(AuditLogEntry).filter_by(sub_user_id=clerk["id"]).all()]
        assert actions.count(AuditAction.SUB_USER_LOGIN_FAILED) == 5
        assert actions.count(AuditAction.SUB_USER_LOCKED) == 1

    def test_failures_after_window_start_fresh(self, venue, clerk, clock):
        self._fail(venue["id"], 5)
        clock.advance(minutes=31)
        self._fail(venue["id"], 1)
        sub_user = _reload(clerk["id"])
        assert sub_user.failed_login_attempts == 1
        assert sub_user.lockout_end is None


class TestOwnerLogin:

    def test_gateway_token(self, services, venue):
        result = venue_service.authenticate_venue_owner("OWNER@courthouse.example", "OwnerPass123")
        claims = services.tokens.verify_gateway_token(result["gateway_token"])
        assert claims["venueId"] == str(venue["id"])
        assert result["requires_sub_user_setup"] is True

    def test_wrong_password(self, venue):
        with pytest.raises(InvalidCredentialsError):
            venue_service.authenticate_venue_owner("owner@courthouse.example", "nope-nope-nope")

    def test_unknown_email(self, venue):
        with pytest.raises(InvalidCredentialsError):
            venue_service.authenticate_venue_owner("nobody@example.com", "OwnerPass123")

    def test_inactive_venue(self, venue):
        venue_service.set_venue_active(venue["id"], False)
        with pytest.raises(AccountInactiveError):
            venue_service.authenticate_venue_owner("owner@courthouse.example", "OwnerPass123")


def test_lockout_window_length(services):
    assert services.lockout_duration == timedelta(minutes=30)
    assert services.max_failed_attempts == 5
