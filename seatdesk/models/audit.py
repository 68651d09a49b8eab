"""Audit event model.

Logs operator-relevant actions: seat conflicts on paid orders, manual
settlements, admin seat overrides, reconciliation decisions and gateway
notifications. The reconciliation view is built from these plus
payment_attempts.
"""

import uuid

from seatdesk.extensions import db
from seatdesk.timeutil import isoformat


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    member_id = db.Column(
        db.String(128), nullable=True, index=True
    )  # subject member, if any
    actor_id = db.Column(
        db.String(128), nullable=True
    )  # None for system-initiated (webhooks, sweeper)
    action = db.Column(db.String(255), nullable=False)  # e.g. "settlement.seat_conflict"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid Python builtin clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {
            "memberId": self.member_id,
            "actorId": self.actor_id,
            "action": self.action,
            "metadata": self.metadata_ or {},
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
