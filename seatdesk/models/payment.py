"""Payment attempt model.

One row per payment order. payment_attempts.state moves only
pending -> verified or pending -> failed, through conditional UPDATEs in
PaymentLedger. gateway_payment_id is written exactly once, on the
pending -> verified edge, and is unique across attempts.

seat_allocation_outcome is tracked separately from state: a verified
payment whose seat was taken by someone else stays verified with
outcome = conflicted until an operator resolves it.
"""

import uuid

from seatdesk.extensions import db
from seatdesk.timeutil import isoformat


class PaymentAttempt(db.Model):
    __tablename__ = "payment_attempts"

    STATES = ["pending", "verified", "failed"]
    PURPOSES = ["seat_booking", "fee_renewal"]
    OUTCOMES = ["not_attempted", "allocated", "conflicted"]
    RESOLUTIONS = ["refunded", "reassigned"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "pi_3Abc..." or "manual_..."
    member_id = db.Column(db.String(128), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="inr")
    purpose = db.Column(db.String(30), nullable=False)  # seat_booking | fee_renewal
    months_covered = db.Column(db.Integer, nullable=False, default=1)
    shift = db.Column(db.String(20), nullable=True)
    payment_mode = db.Column(
        db.String(20), nullable=False, default="online"
    )  # online | cash | upi | card

    state = db.Column(
        db.String(20), nullable=False, default="pending", index=True
    )  # pending | verified | failed
    gateway_payment_id = db.Column(db.String(255), unique=True, nullable=True)
    receipt_id = db.Column(db.String(40), unique=True, nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)
    verified_by = db.Column(
        db.String(128), nullable=True
    )  # admin member id for manual settlement
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    linked_seat_number = db.Column(db.Integer, nullable=True)
    seat_allocation_outcome = db.Column(
        db.String(20), nullable=False, default="not_attempted"
    )  # not_attempted | allocated | conflicted
    conflicted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    # --- Operator reconciliation (conflicted payments) ---
    resolution = db.Column(db.String(20), nullable=True)  # refunded | reassigned
    resolved_by = db.Column(db.String(128), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolution_note = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now(), index=True
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # Handed to the browser when the order is created; never persisted.
    client_secret = None

    @property
    def is_settled(self):
        return self.state in ("verified", "failed")

    @property
    def needs_reconciliation(self):
        return (
            self.state == "verified"
            and self.seat_allocation_outcome == "conflicted"
            and self.resolution is None
        )

    def to_dict(self):
        return {
            "orderId": self.order_id,
            "memberId": self.member_id,
            "amount": float(self.amount),
            "currency": self.currency,
            "purpose": self.purpose,
            "monthsCovered": self.months_covered,
            "shift": self.shift,
            "paymentMode": self.payment_mode,
            "state": self.state,
            "gatewayPaymentId": self.gateway_payment_id,
            "receiptId": self.receipt_id,
            "failureReason": self.failure_reason,
            "verifiedBy": self.verified_by,
            "verifiedAt": isoformat(self.verified_at),
            "linkedSeatNumber": self.linked_seat_number,
            "seatAllocationOutcome": self.seat_allocation_outcome,
            "conflictedAt": isoformat(self.conflicted_at),
            "resolution": self.resolution,
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<PaymentAttempt {self.order_id} ({self.state})>"
