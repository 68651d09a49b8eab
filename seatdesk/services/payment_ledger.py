"""Payment ledger — payment attempts and their verification.

Responsible for:
- Creating the external order first, then the Pending attempt
- Issuing the verification assertion once Stripe reports the order paid
- Checking the client's verification assertion (HMAC-SHA256)
- The guarded pending -> verified / pending -> failed transitions
- Manual (cash) settlements entered directly as verified
- Finding and discarding abandoned Pending attempts

Every state change is a single conditional UPDATE ... WHERE state='pending',
so two concurrent verifications of the same order produce exactly one
Verified and one AlreadyProcessed. Like the seat ledger, this module
flushes but never commits.
"""

import hashlib
import hmac
import logging
import secrets
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError

from seatdesk.errors import (
    AttemptNotFound,
    DuplicatePayment,
    PaymentIncomplete,
    ValidationError,
)
from seatdesk.extensions import db
from seatdesk.models.payment import PaymentAttempt
from seatdesk.services.gateway import to_minor_units
from seatdesk.timeutil import utcnow

logger = logging.getLogger(__name__)


class VerificationOutcome:
    VERIFIED = "verified"
    FAILED = "failed"
    ALREADY_PROCESSED = "already_processed"

    def __init__(self, status, attempt, reason=None, applied=True):
        self.status = status
        self.attempt = attempt
        self.reason = reason
        self.applied = applied  # False when nothing changed (e.g. bad signature on a settled attempt)

    @property
    def receipt_id(self):
        return self.attempt.receipt_id if self.attempt else None

    def __repr__(self):
        return f"<VerificationOutcome {self.status} {self.attempt.order_id}>"


def generate_receipt_id(now=None):
    now = now or utcnow()
    return f"RCP-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def generate_manual_order_id():
    return f"manual_{secrets.token_hex(12)}"


class PaymentLedger:
    def __init__(self, gateway, signing_secret, currency="inr"):
        self.gateway = gateway
        self.signing_secret = signing_secret
        self.currency = currency

    # ──────────────────────────────────────────────
    # Signatures
    # ──────────────────────────────────────────────

    def expected_signature(self, order_id, gateway_payment_id):
        message = f"{order_id}|{gateway_payment_id}".encode("utf-8")
        return hmac.new(
            (self.signing_secret or "").encode("utf-8"), message, hashlib.sha256
        ).hexdigest()

    def issue_assertion(self, order_id):
        """Sign the verification assertion for an order Stripe reports as paid.

        Called after Stripe.js has confirmed the PaymentIntent in the
        browser. This is the only place the order|payment signature is
        produced; verify() checks it. Raises PaymentIncomplete while the
        intent has not succeeded or captured less than the order amount.
        """
        attempt = self.get(order_id)
        if attempt.payment_mode != "online":
            raise ValidationError("Only online orders are confirmed through the gateway")

        capture = self.gateway.fetch_capture(order_id)
        if not capture.succeeded:
            raise PaymentIncomplete(
                "Payment has not completed at the gateway",
                orderId=order_id,
                gatewayStatus=capture.status,
            )
        if (capture.amount_received is not None
                and capture.amount_received < to_minor_units(attempt.amount)):
            logger.warning(
                f"Order {order_id} captured {capture.amount_received}, "
                f"expected {to_minor_units(attempt.amount)}"
            )
            raise PaymentIncomplete(
                "Captured amount is less than the order amount",
                orderId=order_id,
                gatewayStatus=capture.status,
            )

        return {
            "orderId": order_id,
            "paymentId": capture.payment_id,
            "signature": self.expected_signature(order_id, capture.payment_id),
        }

    def signature_matches(self, order_id, gateway_payment_id, asserted_signature):
        if not self.signing_secret or not asserted_signature:
            return False
        expected = self.expected_signature(order_id, gateway_payment_id)
        return hmac.compare_digest(
            expected.encode("utf-8"), str(asserted_signature).encode("utf-8")
        )

    # ──────────────────────────────────────────────
    # Lookups
    # ──────────────────────────────────────────────

    def get(self, order_id):
        attempt = (
            PaymentAttempt.query
            .filter_by(order_id=order_id)
            .populate_existing()
            .first()
        )
        if attempt is None:
            raise AttemptNotFound(f"Payment order {order_id} not found", orderId=order_id)
        return attempt

    def for_member(self, member_id):
        return (
            PaymentAttempt.query
            .filter_by(member_id=member_id)
            .order_by(PaymentAttempt.created_at.desc())
            .all()
        )

    def unresolved_conflicts(self):
        return (
            PaymentAttempt.query
            .filter(
                PaymentAttempt.state == "verified",
                PaymentAttempt.seat_allocation_outcome == "conflicted",
                PaymentAttempt.resolution.is_(None),
            )
            .order_by(PaymentAttempt.verified_at.asc())
            .all()
        )

    # ──────────────────────────────────────────────
    # Creation
    # ──────────────────────────────────────────────

    def create_attempt(self, member_id, amount, purpose, months_covered,
                       seat_hint=None, shift=None):
        """Create the gateway order, then record a Pending attempt.

        GatewayUnavailable propagates before anything local is written.
        """
        order = self.gateway.create_order(
            amount,
            metadata={
                "member_id": member_id,
                "purpose": purpose,
                "months": months_covered,
                "seat_number": seat_hint,
                "shift": shift,
            },
            currency=self.currency,
        )
        order_id = order.order_id

        attempt = PaymentAttempt(
            order_id=order_id,
            member_id=member_id,
            amount=Decimal(str(amount)),
            currency=self.currency,
            purpose=purpose,
            months_covered=months_covered,
            shift=shift,
            payment_mode="online",
            state="pending",
            linked_seat_number=seat_hint,
        )
        db.session.add(attempt)
        db.session.flush()
        attempt.client_secret = order.client_secret
        logger.info(f"Pending attempt {order_id} for member {member_id} ({amount} {self.currency})")
        return attempt

    def record_manual(self, member_id, amount, months_covered, seat_number,
                      shift, admin_id, payment_mode="cash", purpose=None, now=None):
        """A payment collected in person, entered directly as verified."""
        now = now or utcnow()
        attempt = PaymentAttempt(
            order_id=generate_manual_order_id(),
            member_id=member_id,
            amount=Decimal(str(amount)),
            currency=self.currency,
            purpose=purpose or ("seat_booking" if seat_number else "fee_renewal"),
            months_covered=months_covered,
            shift=shift,
            payment_mode=payment_mode,
            state="verified",
            receipt_id=generate_receipt_id(now),
            verified_by=admin_id,
            verified_at=now,
            linked_seat_number=seat_number,
        )
        db.session.add(attempt)
        db.session.flush()
        logger.info(
            f"Manual {payment_mode} payment {attempt.order_id} for member {member_id} "
            f"recorded by {admin_id}"
        )
        return attempt

    # ──────────────────────────────────────────────
    # Transitions
    # ──────────────────────────────────────────────

    def verify(self, order_id, gateway_payment_id, asserted_signature, now=None):
        """Check the assertion and settle a Pending attempt.

        Returns a VerificationOutcome:
          verified          - this call moved the attempt pending -> verified
          failed            - the signature did not match
          already_processed - the attempt was settled before this call
        """
        now = now or utcnow()
        attempt = self.get(order_id)

        if not gateway_payment_id:
            raise ValidationError("paymentId is required")

        if not self.signature_matches(order_id, gateway_payment_id, asserted_signature):
            applied = self.mark_failed(order_id, "signature_mismatch")
            logger.warning(f"Signature mismatch for order {order_id} (attempt failed: {applied})")
            return VerificationOutcome(
                VerificationOutcome.FAILED,
                self.get(order_id),
                reason="signature_mismatch",
                applied=applied,
            )

        try:
            result = db.session.execute(
                update(PaymentAttempt)
                .where(
                    PaymentAttempt.order_id == order_id,
                    PaymentAttempt.state == "pending",
                )
                .values(
                    state="verified",
                    gateway_payment_id=gateway_payment_id,
                    receipt_id=generate_receipt_id(now),
                    verified_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        except IntegrityError:
            db.session.rollback()
            logger.warning(
                f"Gateway payment {gateway_payment_id} already recorded; order {order_id} left as is"
            )
            raise DuplicatePayment(
                "This payment has already been recorded against another order",
                orderId=order_id,
            )

        attempt = self.get(order_id)
        if result.rowcount == 1:
            logger.info(f"Order {order_id} verified, receipt {attempt.receipt_id}")
            return VerificationOutcome(VerificationOutcome.VERIFIED, attempt)

        logger.info(f"Order {order_id} already {attempt.state}, nothing to do")
        return VerificationOutcome(
            VerificationOutcome.ALREADY_PROCESSED, attempt, applied=False
        )

    def mark_failed(self, order_id, reason):
        """Guarded pending -> failed. Returns True if this call applied it."""
        result = db.session.execute(
            update(PaymentAttempt)
            .where(
                PaymentAttempt.order_id == order_id,
                PaymentAttempt.state == "pending",
            )
            .values(state="failed", failure_reason=(reason or "failed")[:255], updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def set_allocation(self, order_id, outcome, seat_number=None):
        now = utcnow()
        values = {"seat_allocation_outcome": outcome, "updated_at": now}
        if outcome == "conflicted":
            values["conflicted_at"] = now
        if seat_number is not None:
            values["linked_seat_number"] = seat_number
        db.session.execute(
            update(PaymentAttempt)
            .where(PaymentAttempt.order_id == order_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    def resolve(self, order_id, resolution, admin_id, note=None, now=None):
        """Record an operator decision on a conflicted payment (guarded)."""
        now = now or utcnow()
        values = {
            "resolution": resolution,
            "resolved_by": admin_id,
            "resolved_at": now,
            "resolution_note": note,
            "updated_at": now,
        }
        if resolution == "reassigned":
            values["seat_allocation_outcome"] = "allocated"
        result = db.session.execute(
            update(PaymentAttempt)
            .where(
                PaymentAttempt.order_id == order_id,
                PaymentAttempt.state == "verified",
                PaymentAttempt.seat_allocation_outcome == "conflicted",
                PaymentAttempt.resolution.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ──────────────────────────────────────────────
    # Abandoned attempts
    # ──────────────────────────────────────────────

    def stale_pending(self, now, days):
        """Order ids of Pending attempts created more than `days` ago."""
        cutoff = now - timedelta(days=days)
        rows = (
            db.session.query(PaymentAttempt.order_id)
            .filter(
                PaymentAttempt.state == "pending",
                PaymentAttempt.created_at < cutoff,
            )
            .all()
        )
        return [row.order_id for row in rows]

    def discard_if_pending(self, order_id):
        """Delete an abandoned attempt, unless it settled in the meantime."""
        result = db.session.execute(
            delete(PaymentAttempt)
            .where(
                PaymentAttempt.order_id == order_id,
                PaymentAttempt.state == "pending",
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
