"""Gateway event model (idempotency table).

Every webhook event is recorded by its gateway event ID. Before processing
any event, the handler checks this table. If the event_id already exists,
it returns 200 immediately — preventing double-writes from gateway retries.
"""

import uuid

from seatdesk.extensions import db


class GatewayEvent(db.Model):
    __tablename__ = "gateway_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    gateway_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "payment_intent.payment_failed"
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<GatewayEvent {self.gateway_event_id} ({self.event_type})>"
