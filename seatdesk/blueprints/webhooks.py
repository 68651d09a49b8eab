"""Webhooks blueprint — /gateway/webhooks

Receives Stripe webhook events.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, request, jsonify

from seatdesk.services.settlement import get_engine

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/gateway")


@webhooks_bp.route("/webhooks", methods=["POST"])
def gateway_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to handle_webhook_event (idempotent via gateway_events table)
    4. Return 200 to acknowledge receipt
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"ok": False, "error": "Missing signature", "code": "invalid_signature"}), 400

    engine = get_engine()

    # --- Verify signature ---
    try:
        event = engine.gateway.construct_webhook_event(payload, sig_header)
    except Exception as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"ok": False, "error": "Invalid signature", "code": "invalid_signature"}), 400

    # --- Process event (idempotent) ---
    success, message = engine.handle_webhook_event(event)

    if success:
        return jsonify({"ok": True, "status": message}), 200
    else:
        logger.error(f"Webhook processing failed: {message}")
        return jsonify({"ok": False, "error": message}), 500
