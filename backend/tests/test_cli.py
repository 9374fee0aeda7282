"""
CLI command tests (Flask CLI runner).

Verifies:
- Venue create/list/set-active
- Founder bootstrap and sub-user listing
- Permission listing, checks and cache flush
- Audit chain verification and session cleanup
"""

from venue_auth.services import venue_service

from conftest import CLERK_PASSWORD, login


def _invoke(app, *args):
    result = app.test_cli_runner().invoke(args=list(args))
    assert result.exception is None, result.output
    return result.output


class TestVenueCommands:

    def test_create_and_list(self, app):
        output = _invoke(app, 'venues', 'create', '--name', 'Court House', '--email', 'cli@example.com',
                         '--password', 'CliPass1234')
        assert output.startswith('PASS Created venue: Court House')

        listing = _invoke(app, 'venues', 'list')
        assert 'Court House' in listing

    def test_duplicate_email_fails(self, app, venue):
        output = _invoke(app, 'venues', 'create', '--name', 'Again', '--email', 'owner@courthouse.example',
                         '--password', 'CliPass1234')
        assert output.startswith('FAIL')

    def test_set_inactive(self, app, venue):
        output = _invoke(app, 'venues', 'set-active', str(venue['id']), '--inactive')
        assert 'is now inactive' in output
        assert venue_service.get_venue(venue['id'])['is_active'] is False

    def test_empty_list(self, app):
        assert 'No venues found.' in _invoke(app, 'venues', 'list')


class TestSubUserCommands:

    def test_create_first_admin(self, app, venue):
        output = _invoke(app, 'subusers', 'create-first-admin', str(venue['id']),
                         '--username', 'owner', '--password', 'FounderPass1')
        assert output.startswith('PASS Created founder admin owner')

        again = _invoke(app, 'subusers', 'create-first-admin', str(venue['id']),
                        '--username', 'second', '--password', 'FounderPass1')
        assert again.startswith('FAIL')

    def test_list(self, app, venue, clerk):
        output = _invoke(app, 'subusers', 'list', str(venue['id']))
        assert 'owner' in output
        assert 'clerk' in output

    def test_logout_all(self, app, venue, clerk):
        login(venue['id'], 'clerk', CLERK_PASSWORD)
        output = _invoke(app, 'subusers', 'logout-all', str(clerk['id']))
        assert 'PASS Ended 1 sessions, revoked 1 tokens' in output


class TestPermissionCommands:

    def test_list_by_category(self, app):
        output = _invoke(app, 'perms', 'list', '--category', 'financial')
        assert 'PROCESS_REFUNDS' in output
        assert 'VIEW_BOOKINGS' not in output

    def test_unknown_category(self, app):
        assert _invoke(app, 'perms', 'list', '--category', 'weather').startswith('FAIL')

    def test_check(self, app, clerk):
        assert 'ALLOW' in _invoke(app, 'perms', 'check', str(clerk['id']), 'view_bookings')
        assert 'DENY' in _invoke(app, 'perms', 'check', str(clerk['id']), 'MANAGE_PRICING')
        assert 'Unknown permission' in _invoke(app, 'perms', 'check', str(clerk['id']), 'FLY')

    def test_flush_cache(self, app, clerk):
        _invoke(app, 'perms', 'check', str(clerk['id']), 'VIEW_BOOKINGS')
        output = _invoke(app, 'perms', 'flush-cache')
        assert output.startswith('PASS Removed')


class TestMaintenanceCommands:

    def test_audit_verify(self, app, venue, founder):
        assert 'PASS Audit chain intact' in _invoke(app, 'audit', 'verify', str(venue['id']))

    def test_sessions_cleanup(self, app):
        assert 'PASS Deleted 0 ended sessions' in _invoke(app, 'sessions', 'cleanup')
