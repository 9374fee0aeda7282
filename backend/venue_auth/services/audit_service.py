# Overview: Service-layer operations for the venue audit trail.

"""
Venue Audit Log

WHY: Every privileged action must be attributable after the fact.

IMMUTABLE: Entries are only ever inserted. record() adds the row to the
caller's transaction without committing, so the audit entry and the change
it describes commit (or roll back) together.

ORDERING: record() locks the venue row (SELECT ... FOR UPDATE) before reading
the chain tail, so concurrent writers for one venue append one at a time and
the lock is held until the caller's transaction ends.

TAMPER EVIDENCE: Each entry hashes its predecessor's hash together with its
own canonical payload. verify_chain() recomputes the chain for a venue and
reports the first entry that no longer matches.
"""

from __future__ import annotations

import hashlib
import json
import math
from datetime import datetime

from ..extensions import db
from ..models import AuditLogEntry, Venue
from ..time_utils import to_utc_z
from .concurrency import lock_for_update


GENESIS_HASH = "0" * 64
MAX_PAGE_SIZE = 200


class AuditAction:
    SUB_USER_CREATED = "SubUser.Created"
    SUB_USER_UPDATED = "SubUser.Updated"
    SUB_USER_DELETED = "SubUser.Deleted"
    SUB_USER_ACTIVATED = "SubUser.Activated"
    SUB_USER_DEACTIVATED = "SubUser.Deactivated"
    SUB_USER_PASSWORD_CHANGED = "SubUser.PasswordChanged"
    SUB_USER_PASSWORD_RESET = "SubUser.PasswordReset"
    SUB_USER_LOGIN = "SubUser.Login"
    SUB_USER_LOGOUT = "SubUser.Logout"
    SUB_USER_LOGIN_FAILED = "SubUser.LoginFailed"
    SUB_USER_LOCKED = "SubUser.Locked"
    SUB_USER_TOKEN_REFRESHED = "SubUser.TokenRefreshed"

    VENUE_CREATED = "Venue.Created"
    VENUE_UPDATED = "Venue.Updated"
    VENUE_OWNER_LOGIN = "Venue.OwnerLogin"


AUDIT_ACTIONS = frozenset(
    value for name, value in vars(AuditAction).items() if not name.startswith("_")
)


class EntityType:
    SUB_USER = "SubUser"
    SUB_USER_SESSION = "SubUserSession"
    VENUE = "Venue"


def _dump(value):
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


def _compute_hash(entry: AuditLogEntry, previous_hash: str) -> str:
    payload = json.dumps(
        {
            "venue_id": entry.venue_id,
            "sub_user_id": entry.sub_user_id,
            "action": entry.action,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "old_values": entry.old_values,
            "new_values": entry.new_values,
            "additional_data": entry.additional_data,
            "timestamp": to_utc_z(entry.timestamp),
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
        },
        sort_keys=True,
    )
    content = f"{previous_hash}|{payload}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _lock_chain(venue_id: int) -> None:
    """Serialize writers of one venue's chain on the venue row until commit."""
    lock_for_update(db.session.query(Venue.id).filter(Venue.id == venue_id)).first()


def _last_hash(venue_id: int) -> str:
    last = (
        db.session.query(AuditLogEntry.entry_hash)
        .filter(AuditLogEntry.venue_id == venue_id)
        .order_by(AuditLogEntry.id.desc())
        .first()
    )
    return last[0] if last else GENESIS_HASH


def record(
    *,
    venue_id: int,
    action: str,
    entity_type: str,
    now: datetime,
    entity_id=None,
    sub_user_id: int | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    additional_data: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLogEntry:
    """
    Append an audit entry to the current transaction (no commit).

    Raises ValueError for an action outside the closed vocabulary.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    entry = AuditLogEntry(
        venue_id=venue_id,
        sub_user_id=sub_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        old_values=_dump(old_values),
        new_values=_dump(new_values),
        additional_data=_dump(additional_data),
        timestamp=now,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    _lock_chain(venue_id)
    previous_hash = _last_hash(venue_id)
    entry.previous_hash = previous_hash
    entry.entry_hash = _compute_hash(entry, previous_hash)
    db.session.add(entry)
    # Later entries in the same transaction chain onto this one
    db.session.flush()
    return entry


def query_audit_log(
    venue_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    sub_user_id: int | None = None,
    action: str | None = None,
    entity_type: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> dict:
    """
    Paged audit entries for one venue, newest first.

    action matches as a substring ("Login" matches SubUser.Login and
    SubUser.LoginFailed).
    """
    page = max(1, int(page or 1))
    page_size = min(MAX_PAGE_SIZE, max(1, int(page_size or 50)))

    query = db.session.query(AuditLogEntry).filter(AuditLogEntry.venue_id == venue_id)
    if start is not None:
        query = query.filter(AuditLogEntry.timestamp >= start)
    if end is not None:
        query = query.filter(AuditLogEntry.timestamp <= end)
    if sub_user_id is not None:
        query = query.filter(AuditLogEntry.sub_user_id == sub_user_id)
    if action:
        query = query.filter(AuditLogEntry.action.contains(action, autoescape=True))
    if entity_type:
        query = query.filter(AuditLogEntry.entity_type == entity_type)

    total = query.count()
    entries = (
        query.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [entry.to_dict() for entry in entries],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }


def activity_summary(venue_id: int, sub_user_id: int, start: datetime, end: datetime) -> dict:
    """Per-action counts for one sub-user within [start, end]."""
    rows = (
        db.session.query(AuditLogEntry.action, db.func.count(AuditLogEntry.id))
        .filter(
            AuditLogEntry.venue_id == venue_id,
            AuditLogEntry.sub_user_id == sub_user_id,
            AuditLogEntry.timestamp >= start,
            AuditLogEntry.timestamp <= end,
        )
        .group_by(AuditLogEntry.action)
        .all()
    )
    breakdown = {action: count for action, count in rows}
    return {
        "sub_user_id": sub_user_id,
        "total_actions": sum(breakdown.values()),
        "action_breakdown": breakdown,
        "period_start": to_utc_z(start),
        "period_end": to_utc_z(end),
    }


def verify_chain(venue_id: int) -> dict:
    """Recompute the venue's hash chain in insertion order."""
    previous_hash = GENESIS_HASH
    checked = 0
    entries = (
        db.session.query(AuditLogEntry)
        .filter(AuditLogEntry.venue_id == venue_id)
        .order_by(AuditLogEntry.id.asc())
        .yield_per(500)
    )
    for entry in entries:
        checked += 1
        if entry.previous_hash != previous_hash or entry.entry_hash != _compute_hash(entry, previous_hash):
            return {"valid": False, "entries_checked": checked, "broken_at": entry.id}
        previous_hash = entry.entry_hash
    return {"valid": True, "entries_checked": checked, "broken_at": None}
