"""
Audit trail tests.

Verifies:
- Query filters (time window, sub-user, action substring, entity type)
- Newest-first paging
- Activity summary counts per action
- Hash chain verification detects an edited entry
- Unknown actions are rejected
"""

from datetime import timedelta

import pytest
from sqlalchemy.dialects import postgresql

from venue_auth.errors import InvalidCredentialsError
from venue_auth.extensions import db
from venue_auth.models import AuditLogEntry
from venue_auth.services import audit_service
from venue_auth.services.audit_service import AuditAction, EntityType
from venue_auth.services.concurrency import atomic

from conftest import CLERK_PASSWORD, login


@pytest.fixture
def busy_venue(venue, founder, clerk, clock):
    """A venue with a few hours of mixed activity."""
    login(venue["id"], "clerk", CLERK_PASSWORD)
    clock.advance(hours=1)
    for _ in range(2):
        with pytest.raises(InvalidCredentialsError):
            login(venue["id"], "clerk", "WrongPass123")
    clock.advance(hours=1)
    login(venue["id"], "clerk", CLERK_PASSWORD)
    return venue


class TestQuery:

    def test_newest_first(self, busy_venue):
        page = audit_service.query_audit_log(busy_venue["id"])
        timestamps = [item["timestamp"] for item in page["items"]]
        assert timestamps == sorted(timestamps, reverse=True)
        assert page["items"][0]["action"] == AuditAction.SUB_USER_LOGIN
        assert page["total"] == len(page["items"])

    def test_action_substring(self, busy_venue):
        page = audit_service.query_audit_log(busy_venue["id"], action="Login")
        actions = {item["action"] for item in page["items"]}
        assert actions == {AuditAction.SUB_USER_LOGIN, AuditAction.SUB_USER_LOGIN_FAILED}
        assert page["total"] == 4

        failed = audit_service.query_audit_log(busy_venue["id"], action="LoginFailed")
        assert failed["total"] == 2

    def test_time_window(self, busy_venue, clock):
        start = clock.now() - timedelta(hours=1, minutes=30)
        end = clock.now() - timedelta(minutes=30)
        page = audit_service.query_audit_log(busy_venue["id"], start=start, end=end)
        assert {item["action"] for item in page["items"]} == {AuditAction.SUB_USER_LOGIN_FAILED}

    def test_sub_user_and_entity_filters(self, busy_venue, clerk):
        page = audit_service.query_audit_log(
            busy_venue["id"], sub_user_id=clerk["id"], entity_type=EntityType.SUB_USER_SESSION
        )
        assert page["total"] == 2
        assert all(item["sub_username"] == "clerk" for item in page["items"])

    def test_paging(self, busy_venue):
        first = audit_service.query_audit_log(busy_venue["id"], page=1, page_size=2)
        second = audit_service.query_audit_log(busy_venue["id"], page=2, page_size=2)
        assert len(first["items"]) == 2
        assert first["pages"] == second["pages"]
        assert not {i["id"] for i in first["items"]} & {i["id"] for i in second["items"]}

    def test_page_size_is_capped(self, busy_venue):
        page = audit_service.query_audit_log(busy_venue["id"], page_size=10_000)
        assert page["page_size"] == audit_service.MAX_PAGE_SIZE

    def test_other_venue_sees_nothing(self, busy_venue):
        assert audit_service.query_audit_log(busy_venue["id"] + 1)["total"] == 0


class TestActivitySummary:

    def test_breakdown(self, busy_venue, clerk, clock):
        summary = audit_service.activity_summary(
            busy_venue["id"], clerk["id"], clock.now() - timedelta(days=1), clock.now()
        )
        assert summary["action_breakdown"] == {
            AuditAction.SUB_USER_LOGIN: 2,
            AuditAction.SUB_USER_LOGIN_FAILED: 2,
        }
        assert summary["total_actions"] == 4


class TestHashChain:

    def test_intact_chain(self, busy_venue):
        result = audit_service.verify_chain(busy_venue["id"])
        assert result["valid"] is True
        assert result["broken_at"] is None
        assert result["entries_checked"] == db.session.query(AuditLogEntry).filter_by(venue_id=busy_venue["id"]).count()

    def test_edited_entry_breaks_chain(self, busy_venue):
        target = (
            db.session.query(AuditLogEntry)
            .filter_by(venue_id=busy_venue["id"], action=AuditAction.SUB_USER_LOGIN_FAILED)
            .order_by(AuditLogEntry.id)
            .first()
        )
        target_id = target.id
        db.session.execute(
            db.text("UPDATE venue_audit_logs SET additional_data = :data WHERE id = :id"),
            {"data": '{"reason": "nothing happened"}', "id": target_id},
        )
        db.session.commit()
        db.session.expire_all()

        result = audit_service.verify_chain(busy_venue["id"])
        assert result["valid"] is False
        assert result["broken_at"] == target_id

    def test_chain_links_to_previous(self, busy_venue):
        entries = (
            db.session.query(AuditLogEntry)
            .filter_by(venue_id=busy_venue["id"])
            .order_by(AuditLogEntry.id)
            .all()
        )
        assert entries[0].previous_hash == audit_service.GENESIS_HASH
        for earlier, later in zip(entries, entries[1:]):
            assert later.previous_hash == earlier.entry_hash

    def test_writers_lock_the_venue_before_reading_the_tail(self, venue, clock, monkeypatch):
        events = []
        locked_queries = []
        real_lock = audit_service.lock_for_update
        real_tail = audit_service._last_hash

        def tracking_lock(query):
            locked = real_lock(query)
            locked_queries.append(locked)
            events.append("lock")
            return locked

        def tracking_tail(venue_id):
            events.append("tail")
            return real_tail(venue_id)

        monkeypatch.setattr(audit_service, "lock_for_update", tracking_lock)
        monkeypatch.setattr(audit_service, "_last_hash", tracking_tail)

        with atomic():
            for _ in range(2):
                audit_service.record(
                    venue_id=venue["id"],
                    action=AuditAction.VENUE_UPDATED,
                    entity_type=EntityType.VENUE,
                    entity_id=venue["id"],
                    now=clock.now(),
                )

        assert events == ["lock", "tail", "lock", "tail"]
        sql = str(locked_queries[0].statement.compile(dialect=postgresql.dialect()))
        assert "venues" in sql
        assert "FOR UPDATE" in sql
        assert audit_service.verify_chain(venue["id"])["valid"] is True


def test_unknown_action_rejected(venue, clock):
    with pytest.raises(ValueError):
        audit_service.record(
            venue_id=venue["id"], action="SubUser.Teleported", entity_type=EntityType.SUB_USER, now=clock.now()
        )
