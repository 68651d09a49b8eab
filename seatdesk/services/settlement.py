"""Settlement engine — payment verification and the seat transition it buys.

Responsible for:
- Order creation with advisory pre-checks (nothing moves money blindly)
- Verifying a payment assertion and crediting the member account
- Exactly one seat transition per verified payment (booking or extension)
- Manual cash settlements, seat release / change, admin overrides
- Operator reconciliation of paid-but-unallocated orders
- Gateway webhook dispatch with event-id idempotency

Durability order for a verification:
    1. payment pending -> verified and the account credit commit together
    2. one seat transition, committed on its own
    3. fan-out and mirror, best effort, after the commit

A verified payment is never rolled back or failed because of what
happens in steps 2 or 3. A seat lost to someone else leaves the attempt
verified with seat_allocation_outcome = conflicted for an operator.
"""

import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from seatdesk.errors import (
    InvalidSignature,
    SeatConflict,
    ValidationError,
)
from seatdesk.extensions import db
from seatdesk.models.gateway_event import GatewayEvent
from seatdesk.models.member import MemberAccount
from seatdesk.models.payment import PaymentAttempt
from seatdesk.models.seat import Seat
from seatdesk.services import account_service
from seatdesk.services.gateway import PaymentGateway
from seatdesk.services.mirror import build_mirror
from seatdesk.services.notifier import build_notifier
from seatdesk.services.payment_ledger import PaymentLedger, VerificationOutcome
from seatdesk.services.seat_ledger import SeatLedger
from seatdesk.timeutil import add_months, as_utc, isoformat, utcnow

logger = logging.getLogger(__name__)

PLAN_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "half_yearly": 6,
    "yearly": 12,
}
MAX_MONTHS = 12
DEFAULT_SHIFT = "fullday"


class SettlementResult:
    """What a settlement did, in terms the caller reports back.

    status:
        allocated         - seat booked or extended
        conflicted        - paid, seat held by someone else (operator queue)
        not_attempted     - paid, no seat involved
        allocation_error  - paid, seat step failed unexpectedly
        already_processed - the order had already settled before this call
    """

    def __init__(self, status, attempt, seat=None):
        self.status = status
        self.attempt = attempt
        self.seat = seat

    def to_dict(self):
        attempt = self.attempt
        data = {
            "orderId": attempt.order_id,
            "receiptId": attempt.receipt_id,
            "paymentState": attempt.state,
            "seatAllocationOutcome": attempt.seat_allocation_outcome,
            "seatNumber": attempt.linked_seat_number,
        }
        if self.seat is not None:
            data["seat"] = self.seat.to_dict()
        return data

    def __repr__(self):
        return f"<SettlementResult {self.status} {self.attempt.order_id}>"


# ──────────────────────────────────────────────
# Input validation (mutates nothing)
# ──────────────────────────────────────────────

def parse_int(value, field):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def parse_amount(value):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("amount must be greater than zero")
    return amount.quantize(Decimal("0.01"))


def parse_months(value):
    months = parse_int(value, "months")
    if months < 1 or months > MAX_MONTHS:
        raise ValidationError(f"months must be between 1 and {MAX_MONTHS}")
    return months


def parse_shift(value):
    if value is None or value == "":
        return None
    if value not in Seat.SHIFTS:
        raise ValidationError(f"shift must be one of: {', '.join(Seat.SHIFTS)}")
    return value


class SettlementEngine:
    MAX_EXTENSION_TRIES = 3

    def __init__(self, gateway, notifier, mirror, seat_ledger, payment_ledger, fees=None):
        self.gateway = gateway
        self.notifier = notifier
        self.mirror = mirror
        self.seats = seat_ledger
        self.payments = payment_ledger
        self.fees = fees or {}

    # ──────────────────────────────────────────────
    # Orders
    # ──────────────────────────────────────────────

    def fee_table(self):
        return [
            {"plan": plan, "amount": amount, "months": PLAN_MONTHS.get(plan)}
            for plan, amount in self.fees.items()
        ]

    def create_order(self, member_id, amount=None, purpose="seat_booking",
                     months=None, seat_number=None, shift=None, plan=None, now=None):
        """Pre-check, create the gateway order, record the Pending attempt.

        The seat checks are advisory: they stop a member paying for a seat
        that is visibly taken, but the seat is only decided at verification.
        """
        now = now or utcnow()

        if purpose not in PaymentAttempt.PURPOSES:
            raise ValidationError(
                f"purpose must be one of: {', '.join(PaymentAttempt.PURPOSES)}"
            )
        if plan is not None:
            if plan not in self.fees:
                raise ValidationError(f"Unknown plan: {plan}")
            if amount is None:
                amount = self.fees[plan]
            if months is None:
                months = PLAN_MONTHS.get(plan, 1)
        if amount is None:
            raise ValidationError("amount or plan is required")
        amount = parse_amount(amount)
        months = parse_months(months if months is not None else 1)
        shift = parse_shift(shift)

        held = self.seats.held_by(member_id, now)
        if seat_number is None and purpose == "fee_renewal" and held:
            seat_number = held.seat_number
        if seat_number is None and purpose == "seat_booking":
            raise ValidationError("seatNumber is required for a seat booking")

        if seat_number is not None:
            seat_number = self.seats.validate_seat_number(parse_int(seat_number, "seatNumber"))
            self._precheck_seat(member_id, seat_number, held, now)

        attempt = self.payments.create_attempt(
            member_id=member_id,
            amount=amount,
            purpose=purpose,
            months_covered=months,
            seat_hint=seat_number,
            shift=shift,
        )
        db.session.commit()
        return attempt

    def _precheck_seat(self, member_id, seat_number, held, now):
        seat = self.seats.get(seat_number)
        if seat is not None and seat.occupancy_state(now) == "occupied" \
                and seat.owner_id != member_id:
            raise SeatConflict(
                f"Seat {seat_number} is currently occupied",
                seatNumber=seat_number,
                seat=seat.to_dict(now),
            )
        if held is not None and held.seat_number != seat_number:
            raise ValidationError(
                f"You already hold seat {held.seat_number}; change seats instead",
                currentSeat=held.seat_number,
            )

    # ──────────────────────────────────────────────
    # Verification
    # ──────────────────────────────────────────────

    def verify_payment(self, order_id, payment_id, signature, now=None):
        """Settle an order from the client's verification assertion.

        Raises InvalidSignature (the attempt is left failed if it was
        pending). Returns a SettlementResult otherwise; a replay returns
        already_processed with the original receipt and changes nothing.
        """
        now = now or utcnow()
        attempt = self.payments.get(order_id)
        account = account_service.get_or_create_account(attempt.member_id)

        outcome = self.payments.verify(order_id, payment_id, signature, now=now)

        if outcome.status == VerificationOutcome.FAILED:
            if outcome.applied:
                account_service.log_audit(
                    "payment.signature_mismatch",
                    member_id=attempt.member_id,
                    metadata={"order_id": order_id, "payment_id": payment_id},
                )
            db.session.commit()
            raise InvalidSignature("Payment signature verification failed", orderId=order_id)

        if outcome.status == VerificationOutcome.ALREADY_PROCESSED:
            db.session.commit()
            return SettlementResult("already_processed", outcome.attempt)

        attempt = outcome.attempt
        account_service.credit_payment(account, attempt, paid_at=now)
        db.session.commit()

        self.publish("payment:verified", {
            "memberId": attempt.member_id,
            "orderId": attempt.order_id,
            "receiptId": attempt.receipt_id,
        })
        return self._settle_seat(attempt, now)

    def record_manual_payment(self, member_id, amount, months, admin_id,
                              seat_number=None, shift=None, payment_mode="cash", now=None):
        """Cash collected at the desk. Enters settlement already verified."""
        now = now or utcnow()
        amount = parse_amount(amount)
        months = parse_months(months)
        shift = parse_shift(shift)
        if payment_mode not in ("cash", "upi", "card"):
            raise ValidationError("paymentMode must be one of: cash, upi, card")

        account = account_service.get_or_create_account(member_id)
        held = self.seats.held_by(member_id, now)
        if seat_number is None and held:
            seat_number = held.seat_number
        if seat_number is not None:
            seat_number = self.seats.validate_seat_number(parse_int(seat_number, "seatNumber"))
            self._precheck_seat(member_id, seat_number, held, now)

        attempt = self.payments.record_manual(
            member_id=member_id,
            amount=amount,
            months_covered=months,
            seat_number=seat_number,
            shift=shift,
            admin_id=admin_id,
            payment_mode=payment_mode,
            now=now,
        )
        account_service.credit_payment(account, attempt, paid_at=now, collected_by=admin_id)
        account_service.log_audit(
            "payment.manual_recorded",
            member_id=member_id,
            actor_id=admin_id,
            metadata={
                "order_id": attempt.order_id,
                "amount": str(amount),
                "months": months,
                "payment_mode": payment_mode,
            },
        )
        db.session.commit()

        self.publish("payment:verified", {
            "memberId": member_id,
            "orderId": attempt.order_id,
            "receiptId": attempt.receipt_id,
        })
        return self._settle_seat(attempt, now)

    # ──────────────────────────────────────────────
    # Seat step
    # ──────────────────────────────────────────────

    def _settle_seat(self, attempt, now):
        """Exactly one seat transition for a freshly verified attempt."""
        order_id = attempt.order_id
        member_id = attempt.member_id
        seat_number = attempt.linked_seat_number

        if seat_number is None:
            self.sync_mirror(member_id)
            return SettlementResult("not_attempted", attempt)

        try:
            result = self._occupy(
                member_id, seat_number, attempt.months_covered, attempt.shift, now
            )
            if result.applied:
                self.payments.set_allocation(order_id, "allocated", seat_number)
                self._record_occupancy(member_id, result.seat)
                db.session.commit()
            else:
                self.payments.set_allocation(order_id, "conflicted", seat_number)
                account_service.log_audit(
                    "settlement.seat_conflict",
                    member_id=member_id,
                    metadata={
                        "order_id": order_id,
                        "seat_number": seat_number,
                        "receipt_id": attempt.receipt_id,
                    },
                )
                db.session.commit()
                logger.warning(
                    f"Order {order_id} paid but seat {seat_number} is taken; "
                    f"queued for reconciliation"
                )
        except Exception as e:
            db.session.rollback()
            logger.error(f"Seat step failed for verified order {order_id}: {e}", exc_info=True)
            self._record_allocation_error(order_id, member_id, seat_number, e)
            self.sync_mirror(member_id)
            return SettlementResult("allocation_error", self.payments.get(order_id))

        attempt = self.payments.get(order_id)
        if result.applied:
            self.publish(f"seat:{'extended' if result.kind == 'extension' else 'booked'}", {
                "seatNumber": seat_number,
                "memberId": member_id,
                "expiresAt": isoformat(result.seat.expires_at),
            })
            self.sync_mirror(member_id)
            return SettlementResult("allocated", attempt, seat=result.seat)

        self.sync_mirror(member_id)
        return SettlementResult("conflicted", attempt, seat=result.seat)

    def _occupy(self, member_id, seat_number, months, shift, now):
        """Book or extend one seat for member_id. Returns the TransitionResult.

        Extension when the member is the recorded owner, fresh booking
        otherwise. Only a version race with the owner unchanged is retried.
        """
        result = None
        for _ in range(self.MAX_EXTENSION_TRIES):
            seat = self.seats.snapshot(seat_number)
            if seat.state == "occupied" and seat.owner_id == member_id:
                current_expiry = as_utc(seat.expires_at)
                base = current_expiry if current_expiry and current_expiry > now else now
                result = self.seats.try_transition(
                    seat_number,
                    expected_owner=member_id,
                    new_occupant=member_id,
                    new_expiry=add_months(base, months),
                    new_shift=shift,
                    expected_version=seat.version,
                    now=now,
                )
                if result.applied:
                    return result
                current = result.seat
                if current is not None and current.state == "occupied" \
                        and current.owner_id == member_id:
                    logger.info(f"Seat {seat_number} extension raced, retrying")
                    continue
                return result

            return self.seats.try_transition(
                seat_number,
                expected_owner=None,
                new_occupant=member_id,
                new_expiry=add_months(now, months),
                new_shift=shift or DEFAULT_SHIFT,
                now=now,
            )
        return result

    def _record_occupancy(self, member_id, seat):
        """Summary writes that follow an applied booking or extension."""
        account_service.assign_seat_reference(
            member_id, seat.seat_number, seat.expires_at, seat.shift
        )
        displaced = account_service.clear_displaced_references(seat.seat_number, member_id)
        if displaced:
            logger.info(f"Seat {seat.seat_number}: cleared stale references for {displaced}")
        return displaced

    def _record_allocation_error(self, order_id, member_id, seat_number, error):
        try:
            account_service.log_audit(
                "settlement.allocation_error",
                member_id=member_id,
                metadata={
                    "order_id": order_id,
                    "seat_number": seat_number,
                    "error": str(error)[:500],
                },
            )
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Could not record allocation error for {order_id}: {e}")

    # ──────────────────────────────────────────────
    # Member seat operations
    # ──────────────────────────────────────────────

    def release_seat(self, member_id, now=None):
        now = now or utcnow()
        seat = self.seats.occupied_by(member_id)
        if seat is None:
            raise ValidationError("You do not hold a seat")

        seat_number = seat.seat_number
        result = self.seats.try_transition(
            seat_number, expected_owner=member_id, new_occupant=None,
            reason="user_request", now=now,
        )
        if not result.applied:
            db.session.rollback()
            raise SeatConflict(f"Seat {seat_number} is no longer yours", seatNumber=seat_number)

        account_service.release_seat_reference(member_id, seat_number)
        db.session.commit()

        self.publish("seat:released", {"seatNumber": seat_number, "reason": "user_request"})
        self.sync_mirror(member_id)
        return result.seat

    def change_seat(self, member_id, new_seat_number, shift=None, now=None):
        """Move an active booking to another seat, keeping its expiry.

        The new seat is taken first (guard: no active owner); the old one is
        released in the same transaction only once that has applied.
        """
        now = now or utcnow()
        new_seat_number = self.seats.validate_seat_number(
            parse_int(new_seat_number, "seatNumber")
        )
        shift = parse_shift(shift)

        current = self.seats.held_by(member_id, now)
        if current is None:
            raise ValidationError("You do not hold an active seat to change")
        old_seat_number = current.seat_number
        if old_seat_number == new_seat_number:
            raise ValidationError("You already hold this seat")
        expires_at = as_utc(current.expires_at)
        shift = shift or current.shift

        self.seats.snapshot(new_seat_number)
        booking = self.seats.try_transition(
            new_seat_number, expected_owner=None, new_occupant=member_id,
            new_expiry=expires_at, new_shift=shift, now=now,
        )
        if not booking.applied:
            db.session.rollback()
            raise SeatConflict(
                f"Seat {new_seat_number} is currently occupied",
                seatNumber=new_seat_number,
            )

        release = self.seats.try_transition(
            old_seat_number, expected_owner=member_id, new_occupant=None,
            reason="seat_change", now=now,
        )
        if not release.applied:
            logger.warning(f"Seat change: seat {old_seat_number} was already released")

        account_service.assign_seat_reference(member_id, new_seat_number, expires_at, shift)
        account_service.clear_displaced_references(new_seat_number, member_id)
        db.session.commit()

        self.publish("seat:changed", {
            "memberId": member_id,
            "fromSeat": old_seat_number,
            "toSeat": new_seat_number,
        })
        self.sync_mirror(member_id)
        return booking.seat

    # ──────────────────────────────────────────────
    # Admin operations
    # ──────────────────────────────────────────────

    def admin_release(self, seat_number, admin_id, now=None):
        now = now or utcnow()
        seat = self.seats.get(parse_int(seat_number, "seatNumber"))
        if seat is None or seat.state != "occupied":
            raise ValidationError(f"Seat {seat_number} is not occupied")

        seat_number = seat.seat_number
        owner_id = seat.owner_id
        result = self.seats.try_transition(
            seat_number, expected_owner=owner_id, new_occupant=None,
            reason="admin", now=now,
        )
        if not result.applied:
            db.session.rollback()
            raise SeatConflict(
                f"Seat {seat_number} changed hands, reload and try again",
                seatNumber=seat_number,
            )

        account_service.release_seat_reference(owner_id, seat_number)
        account_service.log_audit(
            "seat.admin_released",
            member_id=owner_id,
            actor_id=admin_id,
            metadata={"seat_number": seat_number},
        )
        db.session.commit()

        self.publish("seat:released", {"seatNumber": seat_number, "reason": "admin"})
        self.sync_mirror(owner_id)
        return result.seat

    def admin_assign(self, member_id, seat_number, months, admin_id, shift=None, now=None):
        """Book a seat for a member without a payment (staff override)."""
        now = now or utcnow()
        seat_number = self.seats.validate_seat_number(parse_int(seat_number, "seatNumber"))
        months = parse_months(months)
        shift = parse_shift(shift)

        account_service.get_or_create_account(member_id)
        held = self.seats.held_by(member_id, now)
        if held is not None and held.seat_number != seat_number:
            raise ValidationError(
                f"Member already holds seat {held.seat_number}",
                currentSeat=held.seat_number,
            )

        result = self._occupy(member_id, seat_number, months, shift, now)
        if not result.applied:
            db.session.rollback()
            raise SeatConflict(
                f"Seat {seat_number} is currently occupied",
                seatNumber=seat_number,
                seat=result.seat.to_dict(now) if result.seat else None,
            )

        self._record_occupancy(member_id, result.seat)
        account_service.log_audit(
            "seat.admin_assigned",
            member_id=member_id,
            actor_id=admin_id,
            metadata={"seat_number": seat_number, "months": months},
        )
        db.session.commit()

        self.publish("seat:booked", {
            "seatNumber": seat_number,
            "memberId": member_id,
            "expiresAt": isoformat(result.seat.expires_at),
        })
        self.sync_mirror(member_id)
        return result.seat

    def set_payment_status(self, member_id, status, admin_id, note=None):
        previous = account_service.set_payment_status(member_id, status, admin_id, note=note)
        db.session.commit()
        self.sync_mirror(member_id)
        return previous

    def resolve_conflict(self, order_id, resolution, admin_id, seat_number=None,
                         note=None, now=None):
        """Operator decision on a paid order whose seat was taken.

        refunded   - money returned out of band; nothing else changes
        reassigned - book another (or the now free) seat for the member
        """
        now = now or utcnow()
        if resolution not in PaymentAttempt.RESOLUTIONS:
            raise ValidationError(
                f"resolution must be one of: {', '.join(PaymentAttempt.RESOLUTIONS)}"
            )
        attempt = self.payments.get(order_id)
        if not attempt.needs_reconciliation:
            raise ValidationError(f"Order {order_id} is not awaiting reconciliation")
        member_id = attempt.member_id

        if resolution == "refunded":
            if not self.payments.resolve(order_id, "refunded", admin_id, note=note, now=now):
                db.session.rollback()
                raise ValidationError(f"Order {order_id} was resolved concurrently")
            account_service.log_audit(
                "reconciliation.resolved",
                member_id=member_id,
                actor_id=admin_id,
                metadata={"order_id": order_id, "resolution": "refunded", "note": note},
            )
            db.session.commit()
            return SettlementResult("conflicted", self.payments.get(order_id))

        if seat_number is None:
            seat_number = attempt.linked_seat_number
        seat_number = self.seats.validate_seat_number(parse_int(seat_number, "seatNumber"))
        held = self.seats.held_by(member_id, now)
        if held is not None and held.seat_number != seat_number:
            raise ValidationError(
                f"Member already holds seat {held.seat_number}",
                currentSeat=held.seat_number,
            )

        self.seats.snapshot(seat_number)
        if not self.payments.resolve(order_id, "reassigned", admin_id, note=note, now=now):
            db.session.rollback()
            raise ValidationError(f"Order {order_id} was resolved concurrently")

        result = self._occupy(
            member_id, seat_number, attempt.months_covered, attempt.shift, now
        )
        if not result.applied:
            db.session.rollback()
            raise SeatConflict(
                f"Seat {seat_number} is currently occupied",
                seatNumber=seat_number,
            )

        self.payments.set_allocation(order_id, "allocated", seat_number)
        self._record_occupancy(member_id, result.seat)
        account_service.log_audit(
            "reconciliation.resolved",
            member_id=member_id,
            actor_id=admin_id,
            metadata={
                "order_id": order_id,
                "resolution": "reassigned",
                "seat_number": seat_number,
                "note": note,
            },
        )
        db.session.commit()

        self.publish("seat:booked", {
            "seatNumber": seat_number,
            "memberId": member_id,
            "expiresAt": isoformat(result.seat.expires_at),
        })
        self.sync_mirror(member_id)
        return SettlementResult("allocated", self.payments.get(order_id), seat=result.seat)

    # ──────────────────────────────────────────────
    # Gateway webhooks
    # ──────────────────────────────────────────────

    def handle_webhook_event(self, event):
        """Process a verified gateway event.

        Idempotency: checks gateway_events before processing. If the event
        was already processed, returns immediately.

        Returns (success: bool, message: str).
        """
        event_id = event["id"]
        event_type = event["type"]

        existing = GatewayEvent.query.filter_by(gateway_event_id=event_id).first()
        if existing:
            logger.info(f"Duplicate webhook event {event_id}, skipping")
            return True, "already_processed"

        handlers = {
            "payment_intent.payment_failed": self._handle_payment_failed,
            "payment_intent.succeeded": self._handle_payment_succeeded,
        }

        handler = handlers.get(event_type)
        if handler:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error handling {event_type}: {e}", exc_info=True)
                db.session.rollback()
                return False, str(e)

        db.session.add(GatewayEvent(gateway_event_id=event_id, event_type=event_type))
        try:
            db.session.commit()
        except IntegrityError:
            # Same event delivered twice at once; the other delivery won.
            db.session.rollback()
            return True, "already_processed"

        return True, "processed"

    def _handle_payment_failed(self, event):
        """payment_intent.payment_failed: fail the attempt if still pending."""
        intent = event["data"]["object"]
        order_id = intent.get("id")
        attempt = PaymentAttempt.query.filter_by(order_id=order_id).first()
        if attempt is None:
            logger.warning(f"payment_failed: no local attempt for order {order_id}")
            return

        error = intent.get("last_payment_error") or {}
        reason = error.get("message") or "payment_failed"
        applied = self.payments.mark_failed(order_id, reason)
        account_service.log_audit(
            "gateway.payment_failed",
            member_id=attempt.member_id,
            metadata={"order_id": order_id, "reason": reason, "applied": applied},
        )

    def _handle_payment_succeeded(self, event):
        """payment_intent.succeeded: record the capture.

        Settlement still needs the client's assertion; a capture with no
        verification shows up here for the operator.
        """
        intent = event["data"]["object"]
        order_id = intent.get("id")
        attempt = PaymentAttempt.query.filter_by(order_id=order_id).first()
        account_service.log_audit(
            "gateway.payment_captured",
            member_id=attempt.member_id if attempt else None,
            metadata={
                "order_id": order_id,
                "amount_received": intent.get("amount_received"),
                "local_state": attempt.state if attempt else None,
            },
        )

    # ──────────────────────────────────────────────
    # Reporting
    # ──────────────────────────────────────────────

    def stats(self, now=None):
        now = now or utcnow()
        seats = self.seats.list_seats()
        occupied = sum(1 for s in seats if s.occupancy_state(now) == "occupied")
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        revenue = (
            db.session.query(func.coalesce(func.sum(PaymentAttempt.amount), 0))
            .filter(
                PaymentAttempt.state == "verified",
                PaymentAttempt.verified_at >= month_start,
            )
            .scalar()
        )
        return {
            "totalSeats": len(seats),
            "occupiedSeats": occupied,
            "availableSeats": len(seats) - occupied,
            "expiringThisWeek": len(self.seats.expiring_within(now + timedelta(days=7), now)),
            "members": MemberAccount.query.count(),
            "overdueMembers": MemberAccount.query.filter_by(payment_status="overdue").count(),
            "pendingAttempts": PaymentAttempt.query.filter_by(state="pending").count(),
            "unresolvedConflicts": len(self.payments.unresolved_conflicts()),
            "revenueThisMonth": float(revenue or 0),
        }

    # ──────────────────────────────────────────────
    # Best-effort collaborators
    # ──────────────────────────────────────────────

    def publish(self, event, payload):
        try:
            self.notifier.publish(event, payload)
        except Exception as e:
            # Never let fan-out failure touch a committed settlement
            logger.error(f"Fan-out of {event} failed: {e}")

    def sync_mirror(self, member_id):
        """Push the member's row; on failure it stays pending for the sweep."""
        try:
            account = account_service.get_account(member_id)
            if account is None:
                return False
            self.mirror.sync_member(account.to_mirror_row())
            account_service.mark_mirror_synced(member_id, utcnow())
            db.session.commit()
            return True
        except Exception as e:
            db.session.rollback()
            logger.error(f"Mirror sync failed for member {member_id}: {e}")
            return False


def build_engine(config):
    """Construct the engine and its collaborators once, from app config."""
    gateway = PaymentGateway.from_config(config)
    return SettlementEngine(
        gateway=gateway,
        notifier=build_notifier(config),
        mirror=build_mirror(config),
        seat_ledger=SeatLedger(config["SEAT_COUNT"]),
        payment_ledger=PaymentLedger(
            gateway,
            config.get("PAYMENT_SIGNING_SECRET"),
            currency=config.get("PAYMENT_CURRENCY", "inr"),
        ),
        fees=config.get("FEES"),
    )


def get_engine():
    return current_app.extensions["seatdesk"]
