"""Tests for the webhooks blueprint and gateway event handling.

Covers:
- Webhook signature verification (missing, invalid)
- Idempotent event processing (duplicate events skipped)
- payment_intent.payment_failed handler
- payment_intent.succeeded handler
- Unknown event types (accepted but not processed)
"""

from unittest.mock import patch

from seatdesk.extensions import db
from seatdesk.models.audit import AuditEvent
from seatdesk.models.gateway_event import GatewayEvent

CONSTRUCT_EVENT = "seatdesk.services.gateway.stripe.Webhook.construct_event"


def post_event(client):
    return client.post(
        "/gateway/webhooks",
        data="{}",
        content_type="application/json",
        headers={"Stripe-Signature": "valid_sig"},
    )


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client, seed_data):
        """POST /gateway/webhooks without signature -> 400."""
        resp = client.post(
            "/gateway/webhooks",
            data="{}",
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert b"Missing signature" in resp.data

    @patch(CONSTRUCT_EVENT)
    def test_invalid_signature_returns_400(self, mock_construct, client, seed_data):
        """POST /gateway/webhooks with bad signature -> 400."""
        mock_construct.side_effect = Exception("Invalid signature")

        resp = client.post(
            "/gateway/webhooks",
            data="{}",
            content_type="application/json",
            headers={"Stripe-Signature": "bad_sig"},
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_signature"


class TestWebhookIdempotency:
    """Tests for duplicate event handling."""

    @patch(CONSTRUCT_EVENT)
    def test_duplicate_event_returns_200(self, mock_construct, client, seed_data, make_attempt):
        """Duplicate event_id -> 200 with 'already_processed', nothing re-applied."""
        make_attempt("pi_dup", "mem_1")
        db.session.add(GatewayEvent(
            gateway_event_id="evt_duplicate_123",
            event_type="payment_intent.payment_failed",
        ))
        db.session.commit()

        mock_construct.return_value = {
            "id": "evt_duplicate_123",
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_dup"}},
        }

        resp = post_event(client)

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "already_processed"
        db.session.expire_all()
        assert GatewayEvent.query.filter_by(gateway_event_id="evt_duplicate_123").count() == 1

    @patch(CONSTRUCT_EVENT)
    def test_new_event_is_recorded(self, mock_construct, client, seed_data):
        mock_construct.return_value = {
            "id": "evt_new_1",
            "type": "payment_intent.created",
            "data": {"object": {"id": "pi_x"}},
        }

        resp = post_event(client)

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "processed"
        db.session.expire_all()
        assert GatewayEvent.query.filter_by(gateway_event_id="evt_new_1").count() == 1


class TestPaymentFailed:
    """payment_intent.payment_failed moves only Pending attempts."""

    @patch(CONSTRUCT_EVENT)
    def test_pending_attempt_is_failed(self, mock_construct, client, seed_data, make_attempt, engine):
        make_attempt("pi_fail_1", "mem_1", seat=12)
        mock_construct.return_value = {
            "id": "evt_fail_1",
            "type": "payment_intent.payment_failed",
            "data": {"object": {
                "id": "pi_fail_1",
                "last_payment_error": {"message": "Your card was declined."},
            }},
        }

        resp = post_event(client)

        assert resp.status_code == 200
        attempt = engine.payments.get("pi_fail_1")
        assert attempt.state == "failed"
        assert attempt.failure_reason == "Your card was declined."
        event = AuditEvent.query.filter_by(action="gateway.payment_failed").one()
        assert event.metadata_["applied"] is True

    @patch(CONSTRUCT_EVENT)
    def test_verified_attempt_is_untouched(self, mock_construct, client, seed_data, make_attempt, engine):
        make_attempt("pi_paid_1", "mem_1", state="verified")
        mock_construct.return_value = {
            "id": "evt_fail_2",
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_paid_1"}},
        }

        resp = post_event(client)

        assert resp.status_code == 200
        assert engine.payments.get("pi_paid_1").state == "verified"

    @patch(CONSTRUCT_EVENT)
    def test_unknown_order_is_acknowledged(self, mock_construct, client, seed_data):
        mock_construct.return_value = {
            "id": "evt_fail_3",
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_not_ours"}},
        }

        resp = post_event(client)

        assert resp.status_code == 200
        assert AuditEvent.query.filter_by(action="gateway.payment_failed").count() == 0


class TestPaymentSucceeded:
    @patch(CONSTRUCT_EVENT)
    def test_capture_is_audited_without_settling(self, mock_construct, client, seed_data,
                                                 make_attempt, engine):
        make_attempt("pi_ok_1", "mem_2", seat=20)
        mock_construct.return_value = {
            "id": "evt_ok_1",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_ok_1", "amount_received": 60000}},
        }

        resp = post_event(client)

        assert resp.status_code == 200
        # Settlement still waits for the client's verification assertion.
        assert engine.payments.get("pi_ok_1").state == "pending"
        assert engine.seats.get(20).state == "available"
        event = AuditEvent.query.filter_by(action="gateway.payment_captured").one()
        assert event.member_id == "mem_2"
        assert event.metadata_["local_state"] == "pending"


class TestUnknownEvent:
    @patch(CONSTRUCT_EVENT)
    def test_unknown_type_accepted(self, mock_construct, client, seed_data):
        mock_construct.return_value = {
            "id": "evt_unknown_1",
            "type": "charge.dispute.created",
            "data": {"object": {}},
        }

        resp = post_event(client)

        assert resp.status_code == 200
        assert resp.get_json()["ok"] is True
        assert AuditEvent.query.count() == 0
