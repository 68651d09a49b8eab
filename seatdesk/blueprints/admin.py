"""Admin blueprint — /admin/*

Staff-only operations. All routes require is_admin on the caller's
account summary (see `flask grant-admin`).

Route Map:
  POST /admin/payments/manual               — record a cash/UPI/card payment
  GET  /admin/reconciliation                — paid orders whose seat was taken
  POST /admin/reconciliation/<order_id>     — refund or reassign
  POST /admin/seats/<n>/release             — force release
  POST /admin/seats/<n>/assign              — assign without payment
  GET  /admin/seats/<n>/history             — transition history
  PUT  /admin/members/<id>/payment-status   — set paid/pending/overdue/exempt
  GET  /admin/overdue                       — overdue members
  GET  /admin/expiring?days=N               — seats expiring within N days
  GET  /admin/stats                         — dashboard counts
  POST /admin/sweep                         — run one sweep pass now
"""

import logging
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from seatdesk.blueprints.payments import json_body, settlement_response
from seatdesk.decorators import admin_required
from seatdesk.errors import ValidationError
from seatdesk.models.audit import AuditEvent
from seatdesk.models.member import MemberAccount
from seatdesk.services.settlement import get_engine, parse_int
from seatdesk.services.sweeper import DUTIES, run_sweep
from seatdesk.timeutil import utcnow

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


# ──────────────────────────────────────────────
# Payments
# ──────────────────────────────────────────────

@admin_bp.route("/payments/manual", methods=["POST"])
@admin_required
def manual_payment():
    """Body: { memberId, amount, months, seatNumber?, shift?, paymentMode? }"""
    data = json_body()
    member_id = (data.get("memberId") or "").strip()
    if not member_id:
        raise ValidationError("memberId is required")

    result = get_engine().record_manual_payment(
        member_id=member_id,
        amount=data.get("amount"),
        months=data.get("months", 1),
        admin_id=current_user.external_id,
        seat_number=data.get("seatNumber"),
        shift=data.get("shift"),
        payment_mode=data.get("paymentMode") or "cash",
    )
    response, status = settlement_response(result)
    return response, 201 if status == 200 else status


# ──────────────────────────────────────────────
# Reconciliation
# ──────────────────────────────────────────────

@admin_bp.route("/reconciliation")
@admin_required
def reconciliation():
    """Verified payments with a conflicted seat and no operator decision yet.

    conflictedAt lives on the attempt; the audit row (who held the seat)
    is looked up only for members with an open conflict.
    """
    attempts = get_engine().payments.unresolved_conflicts()
    order_ids = {a.order_id for a in attempts}

    conflicts = {}
    if order_ids:
        events = (
            AuditEvent.query
            .filter(
                AuditEvent.action == "settlement.seat_conflict",
                AuditEvent.member_id.in_(sorted({a.member_id for a in attempts})),
            )
            .order_by(AuditEvent.created_at.asc())
            .all()
        )
        for event in events:
            order_id = (event.metadata_ or {}).get("order_id")
            if order_id in order_ids:
                conflicts[order_id] = event.to_dict()

    return jsonify(
        ok=True,
        count=len(attempts),
        attempts=[
            {**a.to_dict(), "conflict": conflicts.get(a.order_id)}
            for a in attempts
        ],
    )


@admin_bp.route("/reconciliation/<order_id>", methods=["POST"])
@admin_required
def resolve(order_id):
    """Body: { resolution: refunded | reassigned, seatNumber?, note? }"""
    data = json_body()
    result = get_engine().resolve_conflict(
        order_id,
        data.get("resolution"),
        admin_id=current_user.external_id,
        seat_number=data.get("seatNumber"),
        note=data.get("note"),
    )
    return jsonify(ok=True, resolution=result.attempt.resolution, **result.to_dict())


# ──────────────────────────────────────────────
# Seats
# ──────────────────────────────────────────────

@admin_bp.route("/seats/<int:seat_number>/release", methods=["POST"])
@admin_required
def force_release(seat_number):
    seat = get_engine().admin_release(seat_number, admin_id=current_user.external_id)
    return jsonify(ok=True, seat=seat.to_dict(include_owner=True))


@admin_bp.route("/seats/<int:seat_number>/assign", methods=["POST"])
@admin_required
def assign(seat_number):
    """Body: { memberId, months, shift? }"""
    data = json_body()
    member_id = (data.get("memberId") or "").strip()
    if not member_id:
        raise ValidationError("memberId is required")

    seat = get_engine().admin_assign(
        member_id,
        seat_number,
        months=data.get("months", 1),
        admin_id=current_user.external_id,
        shift=data.get("shift"),
    )
    return jsonify(ok=True, seat=seat.to_dict(include_owner=True)), 201


@admin_bp.route("/seats/<int:seat_number>/history")
@admin_required
def seat_history(seat_number):
    rows = get_engine().seats.history(seat_number)
    return jsonify(ok=True, history=[r.to_dict() for r in rows])


# ──────────────────────────────────────────────
# Members & reports
# ──────────────────────────────────────────────

@admin_bp.route("/members/<member_id>/payment-status", methods=["PUT"])
@admin_required
def set_payment_status(member_id):
    """Body: { paymentStatus: paid | pending | overdue | exempt, note? }"""
    data = json_body()
    engine = get_engine()
    previous = engine.set_payment_status(
        member_id,
        data.get("paymentStatus"),
        admin_id=current_user.external_id,
        note=data.get("note"),
    )
    account = MemberAccount.query.filter_by(external_id=member_id).one()
    return jsonify(ok=True, previousStatus=previous, account=account.to_dict())


@admin_bp.route("/overdue")
@admin_required
def overdue():
    members = (
        MemberAccount.query
        .filter_by(payment_status="overdue")
        .order_by(MemberAccount.next_due_date.asc())
        .all()
    )
    return jsonify(ok=True, count=len(members), members=[m.to_dict() for m in members])


@admin_bp.route("/expiring")
@admin_required
def expiring():
    days = parse_int(request.args.get("days", 7), "days")
    if days < 0:
        raise ValidationError("days must not be negative")
    now = utcnow()
    seats = get_engine().seats.expiring_within(now + timedelta(days=days), now)
    return jsonify(
        ok=True,
        days=days,
        count=len(seats),
        seats=[s.to_dict(now, include_owner=True) for s in seats],
    )


@admin_bp.route("/stats")
@admin_required
def stats():
    return jsonify(ok=True, stats=get_engine().stats())


@admin_bp.route("/sweep", methods=["POST"])
@admin_required
def sweep():
    """Body: { duties?: [...] } — defaults to every duty."""
    data = json_body()
    duties = data.get("duties") or list(DUTIES)
    if not isinstance(duties, list):
        raise ValidationError("duties must be a list")
    unknown = [d for d in duties if d not in DUTIES]
    if unknown:
        raise ValidationError(f"Unknown sweep duties: {', '.join(map(str, unknown))}")

    reports = run_sweep(
        get_engine(),
        duties=duties,
        stale_pending_days=current_app.config["STALE_PENDING_DAYS"],
    )
    logger.info(f"Manual sweep by {current_user.external_id}: {list(reports)}")
    return jsonify(ok=True, reports={name: r.to_dict() for name, r in reports.items()})
