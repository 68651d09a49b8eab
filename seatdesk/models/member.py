"""Member account summary models.

The member profile itself is owned by the identity provider and the
profile service. This is the subset the settlement engine touches:
current seat reference, billing status, running totals and an
append-only payment history.

Written only after the corresponding ledger transition has succeeded.
Last-writer-wins, except total_paid which is incremented in SQL.
"""

import uuid

from flask_login import UserMixin

from seatdesk.extensions import db
from seatdesk.timeutil import isoformat


class MemberAccount(UserMixin, db.Model):
    __tablename__ = "member_accounts"

    PAYMENT_STATUSES = ["paid", "pending", "overdue", "exempt"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_id = db.Column(
        db.String(128), unique=True, nullable=False
    )  # identity-provider member id
    display_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)

    # --- Seat reference ---
    seat_number = db.Column(db.Integer, nullable=True, index=True)
    seat_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shift = db.Column(db.String(20), nullable=True)

    # --- Billing ---
    payment_status = db.Column(
        db.String(20), nullable=False, default="pending"
    )  # paid | pending | overdue | exempt
    next_due_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    total_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    last_payment_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_payment_amount = db.Column(db.Numeric(10, 2), nullable=True)

    # --- Spreadsheet mirror ---
    mirror_sync_status = db.Column(
        db.String(20), nullable=False, default="pending"
    )  # synced | pending
    mirror_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    payment_entries = db.relationship(
        "MemberPaymentEntry",
        back_populates="account",
        lazy="dynamic",
        order_by="MemberPaymentEntry.paid_at.desc()",
    )

    def get_id(self):
        """Flask-Login identity is the identity provider's id."""
        return self.external_id

    def to_dict(self):
        return {
            "memberId": self.external_id,
            "displayName": self.display_name,
            "email": self.email,
            "seat": {
                "seatNumber": self.seat_number,
                "expiresAt": isoformat(self.seat_expires_at),
                "shift": self.shift,
            } if self.seat_number else None,
            "paymentStatus": self.payment_status,
            "nextDueDate": isoformat(self.next_due_date),
            "totalPaid": float(self.total_paid or 0),
            "lastPaymentAt": isoformat(self.last_payment_at),
            "lastPaymentAmount": (
                float(self.last_payment_amount)
                if self.last_payment_amount is not None else None
            ),
        }

    def to_mirror_row(self):
        """Flat row pushed to the spreadsheet mirror."""
        return {
            "memberId": self.external_id,
            "name": self.display_name or "",
            "email": self.email or "",
            "seatNumber": self.seat_number or "N/A",
            "shift": self.shift or "",
            "seatExpiresAt": isoformat(self.seat_expires_at) or "",
            "paymentStatus": self.payment_status,
            "nextDueDate": isoformat(self.next_due_date) or "",
            "totalPaid": float(self.total_paid or 0),
        }

    def __repr__(self):
        return f"<MemberAccount {self.external_id} ({self.payment_status})>"


class MemberPaymentEntry(db.Model):
    __tablename__ = "member_payment_entries"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    account_id = db.Column(
        db.String(36), db.ForeignKey("member_accounts.id"), nullable=False, index=True
    )
    order_id = db.Column(db.String(255), unique=True, nullable=False)
    receipt_id = db.Column(db.String(40), nullable=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    months = db.Column(db.Integer, nullable=False, default=1)
    payment_mode = db.Column(db.String(20), nullable=False)
    collected_by = db.Column(db.String(128), nullable=True)  # admin for cash
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # --- Relationships ---
    account = db.relationship("MemberAccount", back_populates="payment_entries")

    def to_dict(self):
        return {
            "orderId": self.order_id,
            "receiptId": self.receipt_id,
            "amount": float(self.amount),
            "months": self.months,
            "paymentMode": self.payment_mode,
            "collectedBy": self.collected_by,
            "paidAt": isoformat(self.paid_at),
        }

    def __repr__(self):
        return f"<MemberPaymentEntry {self.order_id}>"
