"""
Authorization cache tests.

Verifies:
- Repeated checks are served from the cache
- Tag invalidation (per sub-user, per venue) and clear_all
- Entries expire after their TTL (allow and deny differ)
- Expired entries and their tag index are swept by the in-memory backend
- A failing backend falls back to the engine (fail open)
- RedisCacheBackend key/tag layout against an in-memory stand-in client
"""

import fnmatch
import logging

import pytest

from venue_auth import create_app
from venue_auth.domain import SubUserState
from venue_auth.permissions import SubUserRole, VenuePermission
from venue_auth.services.authorization_cache import CachedAuthorizationService
from venue_auth.services.authorization_service import AuthorizationEngine
from venue_auth.services.cache_service import InMemoryCacheBackend, RedisCacheBackend

from conftest import TEST_CONFIG


class CountingEngine(AuthorizationEngine):
    def __init__(self, clock):
        super().__init__(clock)
        self.calls = 0

    def check_permission(self, sub_user, required, action=""):
        self.calls += 1
        return super().check_permission(sub_user, required, action)


class BrokenBackend(InMemoryCacheBackend):
    def get(self, key):
        raise ConnectionError("cache down")

    def set(self, key, value, ttl_seconds):
        raise ConnectionError("cache down")

    def remove_by_tag(self, tag):
        raise ConnectionError("cache down")

    def remove_by_pattern(self, pattern):
        raise ConnectionError("cache down")


CLERK = SubUserState(
    id=2,
    venue_id=1,
    role=SubUserRole.COWORKER.value,
    permissions=VenuePermission.VIEW_VENUE_DETAILS | VenuePermission.VIEW_BOOKINGS,
)


@pytest.fixture
def engine(clock):
    return CountingEngine(clock)


@pytest.fixture
def backend(clock):
    return InMemoryCacheBackend(clock)


@pytest.fixture
def cached(app, engine, backend):
    return CachedAuthorizationService(engine, backend)


class TestReadThrough:

    def test_second_check_is_a_hit(self, cached, engine):
        first = cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS, "view")
        second = cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS, "view")
        assert first.authorized and second.authorized
        assert engine.calls == 1

    def test_denial_reason_survives_the_cache(self, cached):
        cached.check_permission(CLERK, VenuePermission.MANAGE_PRICING)
        decision = cached.check_permission(CLERK, VenuePermission.MANAGE_PRICING)
        assert not decision.authorized
        assert decision.reason == "missing permission"

    def test_different_bitmask_is_a_different_entry(self, cached, engine):
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        widened = SubUserState(
            id=CLERK.id,
            venue_id=CLERK.venue_id,
            role=CLERK.role,
            permissions=CLERK.permissions | VenuePermission.VIEW_REPORTS,
        )
        cached.check_permission(widened, VenuePermission.VIEW_BOOKINGS)
        assert engine.calls == 2

    def test_effective_permissions_cached(self, cached, backend):
        assert cached.get_effective_permissions(CLERK) == CLERK.permissions
        assert backend.get("venue:auth:effective:2") == int(CLERK.permissions)


class TestTtl:

    def test_allow_expires_after_fifteen_minutes(self, cached, engine, clock):
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        clock.advance(minutes=14)
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        assert engine.calls == 1

        clock.advance(minutes=2)
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        assert engine.calls == 2

    def test_deny_expires_after_five_minutes(self, cached, engine, clock):
        cached.check_permission(CLERK, VenuePermission.MANAGE_PRICING)
        clock.advance(minutes=5, seconds=1)
        cached.check_permission(CLERK, VenuePermission.MANAGE_PRICING)
        assert engine.calls == 2


class TestInvalidation:

    def test_invalidate_user(self, cached, engine):
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        assert cached.invalidate_user(CLERK.id) is True
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        assert engine.calls == 2

    def test_invalidate_venue(self, cached, backend):
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        cached.can_access_venue_resource(CLERK, 1)
        assert len(backend) == 2
        assert cached.invalidate_venue(1) is True
        assert len(backend) == 0

    def test_other_users_untouched(self, cached, backend):
        other = SubUserState(id=5, venue_id=1, role=CLERK.role, permissions=CLERK.permissions)
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        cached.check_permission(other, VenuePermission.VIEW_BOOKINGS)
        cached.invalidate_user(CLERK.id)
        assert len(backend) == 1

    def test_clear_all_keeps_revocations(self, cached, backend):
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        backend.set("revoked_token:abc", 1, 60)
        assert cached.clear_all() == 1
        assert backend.get("revoked_token:abc") == 1


class TestExpirySweep:

    def test_expired_entries_and_tags_are_swept(self, backend, clock):
        for i in range(1000):
            backend.set(f"k{i}", i, 60)
            backend.tag(f"k{i}", f"user:{i}", "venue:1")
        assert len(backend._tags) == 1001

        clock.advance(seconds=120)
        backend.set("fresh", 1, 60)

        assert list(backend._entries) == ["fresh"]
        assert backend._tags == {}

    def test_sweep_keeps_live_tag_members(self, backend, clock):
        backend.set("short", 1, 30)
        backend.set("long", 2, 600)
        backend.tag("short", "venue:1")
        backend.tag("long", "venue:1")

        clock.advance(seconds=61)
        backend.set("other", 3, 600)

        assert backend._tags == {"venue:1": {"long"}}
        assert backend.remove_by_tag("venue:1") == 1

    def test_sweep_runs_at_most_once_per_interval(self, backend, clock):
        backend.set("a", 1, 10)
        clock.advance(seconds=20)
        backend.set("b", 2, 10)
        assert set(backend._entries) == {"a", "b"}

        assert backend.purge_expired() == 1
        assert set(backend._entries) == {"b"}


class TestFailOpen:

    def test_broken_backend_uses_engine(self, app, engine, clock, caplog):
        cached = CachedAuthorizationService(engine, BrokenBackend(clock))
        with caplog.at_level(logging.ERROR):
            decision = cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        assert decision.authorized
        assert "using engine" in caplog.text

    def test_broken_backend_invalidation_reports_failure(self, app, engine, clock):
        cached = CachedAuthorizationService(engine, BrokenBackend(clock))
        assert cached.invalidate_user(CLERK.id) is False
        assert cached.clear_all() is None

    def test_corrupt_entry_is_a_miss(self, cached, backend, engine):
        cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS)
        key = next(iter(backend._entries))
        backend.set(key, "not a decision", 60)
        assert cached.check_permission(CLERK, VenuePermission.VIEW_BOOKINGS).authorized
        assert engine.calls == 2


# =============================================================================
# REDIS BACKEND
# =============================================================================


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def sadd(self, key, member):
        self.ops.append(("sadd", key, member))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    def execute(self):
        for op, key, arg in self.ops:
            if op == "sadd":
                self.client.sets.setdefault(key, set()).add(arg)
            else:
                self.client.expiries[key] = arg
        self.ops = []


class FakeRedis:
    """Just the redis.Redis surface RedisCacheBackend uses."""

    def __init__(self):
        self.values = {}
        self.sets = {}
        self.expiries = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value, ex=None):
        self.values[key] = value
        self.expiries[key] = ex

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None or self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    def pipeline(self):
        return FakePipeline(self)

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def scan_iter(self, match=None):
        return [key for key in list(self.values) if fnmatch.fnmatchcase(key, match)]

    def ping(self):
        return True


class TestRedisBackend:

    def test_keys_are_prefixed_and_json_encoded(self):
        client = FakeRedis()
        backend = RedisCacheBackend(client, key_prefix="test:")
        backend.set("venue:auth:effective:2", 3, 1800)
        assert client.values["test:venue:auth:effective:2"] == "3"
        assert client.expiries["test:venue:auth:effective:2"] == 1800
        assert backend.get("venue:auth:effective:2") == 3

    def test_remove_by_tag(self):
        client = FakeRedis()
        backend = RedisCacheBackend(client, key_prefix="test:")
        backend.set("a", {"x": 1}, 60)
        backend.set("b", {"x": 2}, 60)
        backend.tag("a", "user:2", "venue:1")
        backend.tag("b", "venue:1")

        assert backend.remove_by_tag("user:2") == 1
        assert backend.get("a") is None
        assert backend.get("b") == {"x": 2}
        assert "test:tag:user:2" not in client.sets

    def test_remove_by_pattern(self):
        client = FakeRedis()
        backend = RedisCacheBackend(client, key_prefix="test:")
        backend.set("venue:auth:permission:1", 1, 60)
        backend.set("venue:auth:manage:1", 1, 60)
        backend.set("revoked_token:x", 1, 60)
        assert backend.remove_by_pattern("venue:auth:*") == 2
        assert backend.get("revoked_token:x") == 1

    def test_requires_client(self):
        with pytest.raises(ValueError):
            RedisCacheBackend(None)


class TestBackendSelection:

    def test_memory_backend_outside_testing_warns(self, clock, caplog):
        with caplog.at_level(logging.WARNING):
            create_app(test_config={**TEST_CONFIG, 'TESTING': False}, clock=clock)
        assert "set CACHE_BACKEND=redis" in caplog.text

    def test_memory_backend_under_testing_is_quiet(self, clock, caplog):
        with caplog.at_level(logging.WARNING):
            create_app(test_config=TEST_CONFIG, clock=clock)
        assert "CACHE_BACKEND" not in caplog.text
