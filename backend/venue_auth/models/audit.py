from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


def _load_json(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return {"raw": raw}


class AuditLogEntry(db.Model):
    """
    Venue audit trail of privileged actions.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.

    TAMPER EVIDENCE: entry_hash = sha256(previous_hash | canonical payload),
    chained per venue in insertion order. Editing or removing a row breaks
    every later hash (see audit_service.verify_chain).

    sub_user_id is NULL for system actions and for failed logins against
    unknown usernames.
    """
    __tablename__ = "venue_audit_logs"
    __table_args__ = (
        db.Index("ix_venue_audit_logs_venue_timestamp", "venue_id", "timestamp"),
        db.Index("ix_venue_audit_logs_sub_user", "sub_user_id"),
        db.Index("ix_venue_audit_logs_action", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    venue_id = db.Column(db.Integer, db.ForeignKey("venues.id"), nullable=False)
    sub_user_id = db.Column(db.Integer, db.ForeignKey("sub_users.id"), nullable=True)

    action = db.Column(db.String(64), nullable=False)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.String(64), nullable=True)

    # JSON snapshots (text for portability across SQLite/Postgres)
    old_values = db.Column(db.Text, nullable=True)
    new_values = db.Column(db.Text, nullable=True)
    additional_data = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    previous_hash = db.Column(db.String(64), nullable=True)
    entry_hash = db.Column(db.String(64), nullable=False)

    sub_user = db.relationship("SubUser", backref=db.backref("audit_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "venue_id": self.venue_id,
            "sub_user_id": self.sub_user_id,
            "sub_username": self.sub_user.username if self.sub_user else None,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "old_values": _load_json(self.old_values),
            "new_values": _load_json(self.new_values),
            "additional_data": _load_json(self.additional_data),
            "timestamp": to_utc_z(self.timestamp),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "entry_hash": self.entry_hash,
        }
