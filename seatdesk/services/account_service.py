"""Account service — member account summary sync helpers.

Responsible for:
- Getting or creating the MemberAccount for an identity-provider id
- Crediting a verified payment (totals, due date, history entry)
- Writing / clearing the seat reference after a seat transition
- The guarded overdue transition used by the sweeper
- Staff overrides of the billing status (e.g. exempt)
- Audit logging

None of these commit. The settlement engine and the sweeper own the
commit boundary so ledger and summary writes land together.
"""

import logging

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError

from seatdesk.errors import MemberNotFound, ValidationError
from seatdesk.extensions import db
from seatdesk.models.audit import AuditEvent
from seatdesk.models.member import MemberAccount, MemberPaymentEntry
from seatdesk.timeutil import add_months, as_utc

logger = logging.getLogger(__name__)


def get_account(external_id):
    return MemberAccount.query.filter_by(external_id=external_id).first()


def get_or_create_account(external_id, display_name=None, email=None):
    """Get existing MemberAccount or create one (committed).

    Two first requests from the same member can race here; the unique
    index on external_id decides and the loser re-reads.
    """
    account = get_account(external_id)
    if account:
        return account

    account = MemberAccount(
        external_id=external_id,
        display_name=display_name,
        email=email,
    )
    db.session.add(account)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        account = get_account(external_id)
    else:
        logger.info(f"Created account summary for member {external_id}")
    return account


def credit_payment(account, attempt, paid_at, collected_by=None):
    """Record a verified payment on the member's account summary.

    total_paid is incremented in SQL so concurrent credits never lose an
    increment. The due date moves forward from whichever is later: the
    current due date or now. Exempt members stay exempt.
    """
    current_due = as_utc(account.next_due_date)
    base = current_due if current_due and current_due > paid_at else paid_at
    next_due = add_months(base, attempt.months_covered)

    db.session.execute(
        update(MemberAccount)
        .where(MemberAccount.id == account.id)
        .values(
            total_paid=MemberAccount.total_paid + attempt.amount,
            last_payment_at=paid_at,
            last_payment_amount=attempt.amount,
            next_due_date=next_due,
            payment_status=case(
                (MemberAccount.payment_status == "exempt", "exempt"),
                else_="paid",
            ),
            mirror_sync_status="pending",
        )
        .execution_options(synchronize_session=False)
    )

    db.session.add(MemberPaymentEntry(
        account_id=account.id,
        order_id=attempt.order_id,
        receipt_id=attempt.receipt_id,
        amount=attempt.amount,
        months=attempt.months_covered,
        payment_mode=attempt.payment_mode,
        collected_by=collected_by,
        paid_at=paid_at,
    ))
    db.session.flush()
    db.session.expire(account)
    return next_due


def assign_seat_reference(member_id, seat_number, expires_at, shift):
    """Point the member's summary at a seat they now hold."""
    db.session.execute(
        update(MemberAccount)
        .where(MemberAccount.external_id == member_id)
        .values(
            seat_number=seat_number,
            seat_expires_at=expires_at,
            shift=shift,
            mirror_sync_status="pending",
        )
        .execution_options(synchronize_session=False)
    )
    _expire_cached(member_id)


def release_seat_reference(member_id, seat_number):
    """Clear the member's seat reference if it still points at seat_number.

    Guarded so a member who already moved to another seat keeps it.
    Returns True if a row changed.
    """
    result = db.session.execute(
        update(MemberAccount)
        .where(
            MemberAccount.external_id == member_id,
            MemberAccount.seat_number == seat_number,
        )
        .values(
            seat_number=None,
            seat_expires_at=None,
            shift=None,
            mirror_sync_status="pending",
        )
        .execution_options(synchronize_session=False)
    )
    _expire_cached(member_id)
    return result.rowcount == 1


def clear_displaced_references(seat_number, new_owner_id):
    """Clear stale references to a seat that just changed hands.

    A lapsed, unswept occupant can be displaced by a fresh booking before
    the sweeper gets to them.
    """
    displaced = [
        row.external_id
        for row in MemberAccount.query.filter(
            MemberAccount.seat_number == seat_number,
            MemberAccount.external_id != new_owner_id,
        ).all()
    ]
    for member_id in displaced:
        release_seat_reference(member_id, seat_number)
    return displaced


def mark_overdue(account_id, now):
    """Guarded billing transition: only past-due, non-overdue, non-exempt rows.

    Returns True if the row changed.
    """
    result = db.session.execute(
        update(MemberAccount)
        .where(
            MemberAccount.id == account_id,
            MemberAccount.next_due_date < now,
            MemberAccount.payment_status.notin_(("overdue", "exempt")),
        )
        .values(payment_status="overdue", mirror_sync_status="pending")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def set_payment_status(external_id, status, actor_id, note=None):
    """Staff override of a member's billing status.

    Exempt members are skipped by the overdue sweep and stay exempt when
    they pay. Returns the previous status.
    """
    if status not in MemberAccount.PAYMENT_STATUSES:
        raise ValidationError(
            f"paymentStatus must be one of: {', '.join(MemberAccount.PAYMENT_STATUSES)}"
        )
    account = get_account(external_id)
    if account is None:
        raise MemberNotFound(f"Member {external_id} not found", memberId=external_id)

    previous = account.payment_status
    db.session.execute(
        update(MemberAccount)
        .where(MemberAccount.id == account.id)
        .values(payment_status=status, mirror_sync_status="pending")
        .execution_options(synchronize_session=False)
    )
    _expire_cached(external_id)
    log_audit(
        "account.payment_status_set",
        member_id=external_id,
        actor_id=actor_id,
        metadata={"from": previous, "to": status, "note": note},
    )
    logger.info(f"Payment status of {external_id}: {previous} -> {status} (by {actor_id})")
    return previous


def mark_mirror_synced(external_id, synced_at):
    db.session.execute(
        update(MemberAccount)
        .where(MemberAccount.external_id == external_id)
        .values(mirror_sync_status="synced", mirror_synced_at=synced_at)
        .execution_options(synchronize_session=False)
    )
    _expire_cached(external_id)


def log_audit(action, member_id=None, actor_id=None, metadata=None):
    """Log an audit event. actor_id is None for system-initiated events."""
    event = AuditEvent(
        member_id=member_id,
        actor_id=actor_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
    return event


def _expire_cached(member_id):
    """Drop a cached MemberAccount so the next read sees the UPDATE."""
    for obj in list(db.session.identity_map.values()):
        if isinstance(obj, MemberAccount) and obj.external_id == member_id:
            db.session.expire(obj)
