"""
HTTP API tests (Flask test client).

Verifies:
- Owner login -> founder setup -> sub-user login -> /me
- Missing or wrong-kind tokens are 401 with the common error body
- Lockout is 423 with a Retry-After header
- Permission-gated endpoints return 403 with the required permission
- Venue scoping on both token kinds
- Health and permission catalogue endpoints
"""

import pytest

from venue_auth.services import venue_service

from conftest import CLERK_PASSWORD, FOUNDER_PASSWORD, auth_headers, login


@pytest.fixture
def owner_token(venue, founder, clerk):
    return login(venue["id"], "owner", FOUNDER_PASSWORD).access_token


@pytest.fixture
def clerk_token(venue, clerk):
    return login(venue["id"], "clerk", CLERK_PASSWORD).access_token


# =============================================================================
# SYSTEM
# =============================================================================


class TestSystemEndpoints:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json['status'] == 'healthy'
        assert response.json['checks']['cache']['details']['backend'] == 'InMemoryCacheBackend'

    def test_permission_catalogue(self, client):
        response = client.get('/api/permissions')
        assert response.status_code == 200
        assert len(response.json['permissions']) == 23
        coworker = response.json['roles']['Coworker']
        assert 'PROCESS_REFUNDS' in coworker['forbidden_permissions']
        assert 'VIEW_BOOKINGS' in coworker['default_permissions']
        assert response.json['roles']['Admin']['forbidden_permissions'] == []


# =============================================================================
# AUTHENTICATION FLOW
# =============================================================================


class TestAuthFlow:

    def test_full_flow(self, client, venue, gateway_headers):
        setup = client.post(
            f'/api/venues/{venue["id"]}/setup',
            json={'username': 'owner', 'password': FOUNDER_PASSWORD},
            headers=gateway_headers,
        )
        assert setup.status_code == 201
        assert setup.json['sub_user']['is_founder_admin'] is True

        response = client.post(
            '/api/auth/login',
            json={'username': 'owner', 'password': FOUNDER_PASSWORD, 'device_name': 'Front desk'},
            headers=gateway_headers,
        )
        assert response.status_code == 200
        assert response.json['token_type'] == 'Bearer'
        assert response.json['access_token_expires_at'].endswith('Z')

        me = client.get('/api/auth/me', headers=auth_headers(response.json['access_token']))
        assert me.status_code == 200
        assert me.json['venue_id'] == venue['id']
        assert len(me.json['permissions']) == 23

    def test_setup_twice_conflicts(self, client, venue, founder, gateway_headers):
        response = client.post(
            f'/api/venues/{venue["id"]}/setup',
            json={'username': 'another', 'password': FOUNDER_PASSWORD},
            headers=gateway_headers,
        )
        assert response.status_code == 409
        assert response.json['code'] == 'CONFLICT'

    def test_gateway_token_for_other_venue(self, client, venue, gateway_headers):
        other = venue_service.create_venue("Other Hall", "other@hall.example", "OtherPass123")["venue"]
        response = client.post(
            f'/api/venues/{other["id"]}/setup',
            json={'username': 'intruder', 'password': FOUNDER_PASSWORD},
            headers=gateway_headers,
        )
        assert response.status_code == 404

    def test_owner_login_failure_body(self, client, venue):
        response = client.post('/api/auth/owner/login', json={'email': 'owner@courthouse.example', 'password': 'WrongPass123'})
        assert response.status_code == 401
        assert response.json == {'error': 'Invalid username or password', 'code': 'INVALID_CREDENTIALS'}

    def test_missing_fields(self, client, gateway_headers):
        response = client.post('/api/auth/login', json={'username': 'clerk'}, headers=gateway_headers)
        assert response.status_code == 400
        assert response.json['code'] == 'VALIDATION'

    def test_non_json_body(self, client, gateway_headers):
        response = client.post('/api/auth/login', data='username=clerk', headers=gateway_headers)
        assert response.status_code == 400

    def test_lockout_is_423_with_retry_after(self, client, clerk, gateway_headers):
        for _ in range(5):
            response = client.post(
                '/api/auth/login', json={'username': 'clerk', 'password': 'WrongPass123'}, headers=gateway_headers
            )
            assert response.status_code == 401

        response = client.post(
            '/api/auth/login', json={'username': 'clerk', 'password': CLERK_PASSWORD}, headers=gateway_headers
        )
        assert response.status_code == 423
        assert response.headers['Retry-After'] == '1800'
        assert response.json['retry_after_seconds'] == 1800

    def test_refresh_and_logout(self, client, clerk, gateway_headers):
        tokens = client.post(
            '/api/auth/login', json={'username': 'clerk', 'password': CLERK_PASSWORD}, headers=gateway_headers
        ).json

        refreshed = client.post('/api/auth/refresh', json={'refresh_token': tokens['refresh_token']})
        assert refreshed.status_code == 200
        reused = client.post('/api/auth/refresh', json={'refresh_token': tokens['refresh_token']})
        assert reused.status_code == 401

        headers = auth_headers(refreshed.json['access_token'])
        sessions = client.get('/api/auth/sessions', headers=headers)
        assert sessions.json['count'] == 1

        logout = client.post('/api/auth/logout', headers=headers)
        assert logout.status_code == 200
        assert logout.json['sessions_ended'] == 1
        assert client.get('/api/auth/me', headers=headers).status_code == 401

    def test_change_password_route(self, client, clerk_token):
        response = client.post(
            '/api/auth/change-password',
            json={'current_password': CLERK_PASSWORD, 'new_password': 'BrandNew1234'},
            headers=auth_headers(clerk_token),
        )
        assert response.status_code == 200
        assert response.json['sub_user']['must_change_password'] is False


# =============================================================================
# TOKEN CHECKS
# =============================================================================


class TestTokenChecks:

    def test_missing_token(self, client):
        response = client.get('/api/auth/me')
        assert response.status_code == 401
        assert response.json['code'] == 'TOKEN_INVALID'

    def test_malformed_header(self, client):
        response = client.get('/api/auth/me', headers={'Authorization': 'Token abc'})
        assert response.status_code == 401

    def test_gateway_token_is_not_operational(self, client, gateway_headers):
        assert client.get('/api/auth/me', headers=gateway_headers).status_code == 401

    def test_operational_token_is_not_gateway(self, client, clerk_token):
        response = client.post(
            '/api/auth/login',
            json={'username': 'clerk', 'password': CLERK_PASSWORD},
            headers=auth_headers(clerk_token),
        )
        assert response.status_code == 401

    def test_other_venue_is_forbidden(self, client, venue, clerk_token):
        response = client.get(f'/api/venues/{venue["id"] + 1}/sub-users', headers=auth_headers(clerk_token))
        assert response.status_code == 403
        assert response.json['code'] == 'PERMISSION_DENIED'


# =============================================================================
# SUB-USER MANAGEMENT & AUDIT
# =============================================================================


class TestManagementRoutes:

    def test_create_update_delete(self, client, venue, owner_token):
        base = f'/api/venues/{venue["id"]}/sub-users'
        headers = auth_headers(owner_token)

        created = client.post(base, json={
            'username': 'runner',
            'password': 'RunnerPass12',
            'role': 'Coworker',
            'permissions': ['VIEW_VENUE_DETAILS', 'VIEW_BOOKINGS'],
        }, headers=headers)
        assert created.status_code == 201
        runner_id = created.json['sub_user']['id']

        bad = client.patch(f'{base}/{runner_id}', json={'is_active': 'no'}, headers=headers)
        assert bad.status_code == 400

        updated = client.patch(f'{base}/{runner_id}', json={'is_active': False}, headers=headers)
        assert updated.status_code == 200
        assert updated.json['sub_user']['is_active'] is False

        deleted = client.delete(f'{base}/{runner_id}', headers=headers)
        assert deleted.status_code == 200
        assert client.get(f'{base}/{runner_id}', headers=headers).status_code == 404

    def test_list_sub_users(self, client, venue, owner_token):
        response = client.get(f'/api/venues/{venue["id"]}/sub-users', headers=auth_headers(owner_token))
        assert response.status_code == 200
        assert [row['username'] for row in response.json['sub_users']] == ['owner', 'clerk']
        assert 'password_hash' not in response.json['sub_users'][0]

    def test_coworker_cannot_list(self, client, venue, clerk_token):
        response = client.get(f'/api/venues/{venue["id"]}/sub-users', headers=auth_headers(clerk_token))
        assert response.status_code == 403
        assert response.json == {'error': 'Permission denied', 'code': 'PERMISSION_DENIED'}

    def test_reset_password_route(self, client, venue, clerk, owner_token):
        response = client.post(
            f'/api/venues/{venue["id"]}/sub-users/{clerk["id"]}/reset-password',
            json={'new_password': 'ResetPass123'},
            headers=auth_headers(owner_token),
        )
        assert response.status_code == 200

        again = client.post(
            f'/api/venues/{venue["id"]}/sub-users/{clerk["id"]}/reset-password',
            json={'new_password': 'ResetPass456'},
            headers=auth_headers(owner_token),
        )
        assert again.status_code == 429
        assert again.headers['Retry-After'] == '60'

    def test_audit_log_requires_permission(self, client, venue, clerk_token):
        response = client.get(f'/api/venues/{venue["id"]}/audit-logs', headers=auth_headers(clerk_token))
        assert response.status_code == 403
        assert response.json['required_permission'] == 'VIEW_AUDIT_LOGS'

    def test_audit_log_query(self, client, venue, owner_token):
        response = client.get(
            f'/api/venues/{venue["id"]}/audit-logs?action=Login&page_size=10',
            headers=auth_headers(owner_token),
        )
        assert response.status_code == 200
        assert response.json['page_size'] == 10
        assert all('Login' in item['action'] for item in response.json['items'])

    def test_audit_log_bad_date(self, client, venue, owner_token):
        response = client.get(
            f'/api/venues/{venue["id"]}/audit-logs?start=yesterday',
            headers=auth_headers(owner_token),
        )
        assert response.status_code == 400

    def test_permission_check_cache_is_keyed_by_permission_not_path(
        self, client, services, venue, founder, clerk, owner_token
    ):
        headers = auth_headers(owner_token)
        for sub_user_id in (clerk["id"], founder["id"]):
            client.get(f'/api/venues/{venue["id"]}/sub-users/{sub_user_id}/activity', headers=headers)

        keys = [key for key in services.cache._entries if ":route:VIEW_COWORKER_ACTIVITY:" in key]
        assert len(keys) == 1

    def test_audit_chain_and_activity(self, client, venue, clerk, owner_token):
        headers = auth_headers(owner_token)
        verify = client.get(f'/api/venues/{venue["id"]}/audit-logs/verify', headers=headers)
        assert verify.status_code == 200
        assert verify.json['valid'] is True

        activity = client.get(f'/api/venues/{venue["id"]}/sub-users/{clerk["id"]}/activity', headers=headers)
        assert activity.status_code == 200
        assert activity.json['sub_user_id'] == clerk['id']
