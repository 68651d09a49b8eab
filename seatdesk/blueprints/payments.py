"""Payments blueprint — /payments/*

Order creation and verification for members.

Routes:
- POST /payments/orders      — pre-check, create gateway order + Pending attempt
- POST /payments/<order_id>/complete — signed assertion once Stripe reports it paid
- POST /payments/verify      — settle an order from the client's assertion
- GET  /payments/mine        — member's attempts + account summary
- GET  /payments/fees        — fee structure (public)
- GET  /payments/<order_id>  — one attempt (owner or admin)
"""

import logging

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user

from seatdesk.decorators import member_required
from seatdesk.errors import ValidationError
from seatdesk.services.settlement import get_engine

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def settlement_response(result):
    """HTTP shape for a SettlementResult.

    A paid order whose seat went to someone else is a 409 that still
    carries the receipt: the money is kept and an operator follows up.
    """
    body = result.to_dict()
    if result.status == "already_processed":
        return jsonify(ok=True, status="already_processed", **body), 200
    if result.status == "conflicted":
        return jsonify(
            ok=False,
            code="seat_conflict",
            error="Payment received but the seat is no longer available. "
                  "Staff will reassign or refund.",
            **body,
        ), 409
    if result.status == "allocation_error":
        return jsonify(ok=True, status="allocation_pending", **body), 202
    return jsonify(ok=True, status="verified", **body), 200


# ──────────────────────────────────────────────
# POST /payments/orders
# ──────────────────────────────────────────────

@payments_bp.route("/orders", methods=["POST"])
@member_required
def create_order():
    """Create a gateway order for a seat booking or a fee renewal.

    Body: { amount | plan, purpose, months, seatNumber, shift }
    """
    data = json_body()
    engine = get_engine()

    attempt = engine.create_order(
        member_id=current_user.external_id,
        amount=data.get("amount"),
        purpose=data.get("purpose") or "seat_booking",
        months=data.get("months"),
        seat_number=data.get("seatNumber"),
        shift=data.get("shift"),
        plan=data.get("plan"),
    )

    return jsonify(
        ok=True,
        orderId=attempt.order_id,
        amount=float(attempt.amount),
        currency=attempt.currency,
        months=attempt.months_covered,
        seatNumber=attempt.linked_seat_number,
        clientSecret=attempt.client_secret,
        gatewayPublicKey=engine.gateway.publishable_key,
    ), 201


# ──────────────────────────────────────────────
# POST /payments/<order_id>/complete
# ──────────────────────────────────────────────

@payments_bp.route("/<order_id>/complete", methods=["POST"])
@member_required
def complete_order(order_id):
    """Stripe.js has confirmed the intent; hand back the verification assertion.

    The browser posts the returned { orderId, paymentId, signature } to
    /payments/verify. 409 payment_incomplete while Stripe has not captured.
    """
    engine = get_engine()
    attempt = engine.payments.get(order_id)
    if attempt.member_id != current_user.external_id and not current_user.is_admin:
        abort(403)

    assertion = engine.payments.issue_assertion(order_id)
    return jsonify(ok=True, **assertion)


# ──────────────────────────────────────────────
# POST /payments/verify
# ──────────────────────────────────────────────

@payments_bp.route("/verify", methods=["POST"])
@member_required
def verify():
    """Body: { orderId, paymentId, signature }"""
    data = json_body()
    order_id = data.get("orderId")
    payment_id = data.get("paymentId")
    signature = data.get("signature")
    if not order_id or not payment_id or not signature:
        raise ValidationError("orderId, paymentId and signature are required")

    engine = get_engine()
    attempt = engine.payments.get(order_id)
    if attempt.member_id != current_user.external_id and not current_user.is_admin:
        abort(403)

    result = engine.verify_payment(order_id, payment_id, signature)
    return settlement_response(result)


# ──────────────────────────────────────────────
# GET /payments/mine, /payments/fees, /payments/<order_id>
# ──────────────────────────────────────────────

@payments_bp.route("/mine")
@member_required
def my_payments():
    engine = get_engine()
    attempts = engine.payments.for_member(current_user.external_id)
    history = [entry.to_dict() for entry in current_user.payment_entries]
    return jsonify(
        ok=True,
        account=current_user.to_dict(),
        attempts=[a.to_dict() for a in attempts],
        history=history,
    )


@payments_bp.route("/fees")
def fees():
    return jsonify(ok=True, currency=get_engine().payments.currency, fees=get_engine().fee_table())


@payments_bp.route("/<order_id>")
@member_required
def get_attempt(order_id):
    attempt = get_engine().payments.get(order_id)
    if attempt.member_id != current_user.external_id and not current_user.is_admin:
        abort(403)
    return jsonify(ok=True, attempt=attempt.to_dict())
