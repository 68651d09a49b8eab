"""Tests for the member and admin HTTP surface.

Covers:
- Identity from the X-Member-Id header (401 without it)
- Order creation and verification over HTTP, including the 409 that
  still carries a receipt when the seat went to someone else
- Seat snapshots and the member's own release / change
- Admin-only routes (403 for members)
- Staff payment-status overrides (exempt members skip the overdue sweep)
"""

from datetime import timedelta
from unittest.mock import patch

from seatdesk.extensions import db
from seatdesk.models.audit import AuditEvent
from seatdesk.services import account_service
from seatdesk.timeutil import utcnow
from tests.conftest import member_headers, sign

ADMIN = member_headers("admin_1")
MEM_1 = member_headers("mem_1")
MEM_2 = member_headers("mem_2")
MEM_3 = member_headers("mem_3")


def verify_body(order_id, payment_id="pay_1", signature=None):
    return {
        "orderId": order_id,
        "paymentId": payment_id,
        "signature": signature or sign(order_id, payment_id),
    }


class TestIdentity:
    def test_index_is_public(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.get_json()["service"] == "seatdesk"

    def test_missing_identity_is_401(self, client, seed_data):
        resp = client.get("/seats")
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "unauthorized"

    def test_fees_are_public(self, client):
        resp = client.get("/payments/fees")
        assert resp.status_code == 200
        plans = {f["plan"]: f for f in resp.get_json()["fees"]}
        assert plans["monthly"]["amount"] == 600
        assert plans["yearly"]["months"] == 12

    def test_first_request_creates_account(self, client, db_session):
        resp = client.get("/payments/mine", headers=member_headers("mem_new", "Nisha"))
        assert resp.status_code == 200
        assert resp.get_json()["account"]["displayName"] == "Nisha"
        assert account_service.get_account("mem_new") is not None

    def test_identity_is_resolved_per_request(self, client, seed_data):
        first = client.get("/payments/mine", headers=MEM_1)
        second = client.get("/payments/mine", headers=MEM_2)
        assert first.get_json()["account"]["memberId"] == "mem_1"
        assert second.get_json()["account"]["memberId"] == "mem_2"


class TestPaymentFlow:
    """POST /payments/orders then POST /payments/verify."""

    @patch("seatdesk.services.gateway.stripe.PaymentIntent.create")
    def test_order_then_verify_books_seat(self, mock_create, client, seed_data):
        mock_create.return_value = {"id": "pi_flow_1"}

        resp = client.post("/payments/orders", headers=MEM_1, json={
            "amount": 600, "months": 1, "seatNumber": 12,
        })
        assert resp.status_code == 201
        order = resp.get_json()
        assert order["orderId"] == "pi_flow_1"
        assert order["gatewayPublicKey"] == "pk_test_fake"

        resp = client.post("/payments/verify", headers=MEM_1, json=verify_body("pi_flow_1"))
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "verified"
        assert data["seatAllocationOutcome"] == "allocated"
        assert data["seat"]["seatNumber"] == 12
        assert data["receiptId"].startswith("RCP-")

        resp = client.post("/payments/verify", headers=MEM_1, json=verify_body("pi_flow_1"))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "already_processed"
        assert resp.get_json()["receiptId"] == data["receiptId"]

    @patch("seatdesk.services.gateway.stripe.PaymentIntent.retrieve")
    @patch("seatdesk.services.gateway.stripe.PaymentIntent.create")
    def test_browser_checkout_end_to_end(self, mock_create, mock_retrieve, client, seed_data):
        """clientSecret out, Stripe confirms, assertion from /complete settles the seat."""
        mock_create.return_value = {"id": "pi_e2e", "client_secret": "pi_e2e_secret_abc"}

        resp = client.post("/payments/orders", headers=MEM_1, json={
            "plan": "monthly", "seatNumber": 14,
        })
        assert resp.status_code == 201
        assert resp.get_json()["clientSecret"] == "pi_e2e_secret_abc"

        # Stripe.js has not confirmed yet
        mock_retrieve.return_value = {
            "id": "pi_e2e", "status": "requires_payment_method", "latest_charge": None,
        }
        resp = client.post("/payments/pi_e2e/complete", headers=MEM_1)
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "payment_incomplete"

        mock_retrieve.return_value = {
            "id": "pi_e2e", "status": "succeeded",
            "latest_charge": "ch_e2e", "amount_received": 60000,
        }
        resp = client.post("/payments/pi_e2e/complete", headers=MEM_1)
        assert resp.status_code == 200
        assertion = resp.get_json()
        assert assertion["paymentId"] == "ch_e2e"

        resp = client.post("/payments/verify", headers=MEM_1, json={
            "orderId": assertion["orderId"],
            "paymentId": assertion["paymentId"],
            "signature": assertion["signature"],
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "verified"
        assert data["seat"]["seatNumber"] == 14

    @patch("seatdesk.services.gateway.stripe.PaymentIntent.retrieve")
    def test_complete_is_owner_only(self, mock_retrieve, client, seed_data, make_attempt):
        make_attempt("pi_other", "mem_2", seat=20)

        resp = client.post("/payments/pi_other/complete", headers=MEM_1)

        assert resp.status_code == 403
        mock_retrieve.assert_not_called()

    @patch("seatdesk.services.gateway.stripe.PaymentIntent.create")
    def test_occupied_seat_refused_at_order_time(self, mock_create, client, seed_data, occupy):
        occupy(5, "mem_2", utcnow() + timedelta(days=10))

        resp = client.post("/payments/orders", headers=MEM_3, json={"amount": 600, "seatNumber": 5})

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "seat_conflict"
        mock_create.assert_not_called()

    def test_seat_lost_after_payment_is_409_with_receipt(self, client, seed_data, make_attempt, occupy):
        make_attempt("ORD_L", "mem_3", seat=5)
        occupy(5, "mem_2", utcnow() + timedelta(days=10))

        resp = client.post("/payments/verify", headers=MEM_3, json=verify_body("ORD_L"))

        assert resp.status_code == 409
        data = resp.get_json()
        assert data["code"] == "seat_conflict"
        assert data["paymentState"] == "verified"
        assert data["receiptId"].startswith("RCP-")

    def test_bad_signature_is_400(self, client, seed_data, make_attempt):
        make_attempt("ORD_B", "mem_1", seat=12)

        resp = client.post("/payments/verify", headers=MEM_1,
                           json=verify_body("ORD_B", signature="forged"))

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "invalid_signature"

    def test_missing_fields_is_400(self, client, seed_data):
        resp = client.post("/payments/verify", headers=MEM_1, json={"orderId": "ORD_X"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_unknown_order_is_404(self, client, seed_data):
        resp = client.post("/payments/verify", headers=MEM_1, json=verify_body("ORD_missing"))
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "attempt_not_found"

    def test_other_members_order_is_403(self, client, seed_data, make_attempt, engine):
        make_attempt("ORD_M", "mem_1", seat=12)

        resp = client.post("/payments/verify", headers=MEM_2, json=verify_body("ORD_M"))

        assert resp.status_code == 403
        assert engine.payments.get("ORD_M").state == "pending"

    def test_my_payments(self, client, seed_data, make_attempt):
        make_attempt("ORD_1", "mem_1", seat=12)
        client.post("/payments/verify", headers=MEM_1, json=verify_body("ORD_1"))

        resp = client.get("/payments/mine", headers=MEM_1)

        data = resp.get_json()
        assert [a["orderId"] for a in data["attempts"]] == ["ORD_1"]
        assert [h["orderId"] for h in data["history"]] == ["ORD_1"]
        assert data["account"]["seat"]["seatNumber"] == 12

    def test_get_attempt(self, client, seed_data, make_attempt):
        make_attempt("ORD_G", "mem_1")
        assert client.get("/payments/ORD_G", headers=MEM_1).status_code == 200
        assert client.get("/payments/ORD_G", headers=MEM_2).status_code == 403
        assert client.get("/payments/ORD_G", headers=ADMIN).status_code == 200


class TestSeatRoutes:
    def test_list_hides_owner_from_members(self, client, seed_data, occupy):
        occupy(5, "mem_2", utcnow() + timedelta(days=10))

        seats = client.get("/seats", headers=MEM_1).get_json()["seats"]
        assert len(seats) == 60
        assert seats[4]["occupancyState"] == "occupied"
        assert "ownerId" not in seats[4]

        seats = client.get("/seats", headers=ADMIN).get_json()["seats"]
        assert seats[4]["ownerId"] == "mem_2"

    def test_available_excludes_held_seats(self, client, seed_data, occupy):
        occupy(5, "mem_2", utcnow() + timedelta(days=10))
        occupy(6, "mem_3", utcnow() - timedelta(hours=1))

        data = client.get("/seats/available", headers=MEM_1).get_json()

        numbers = [s["seatNumber"] for s in data["seats"]]
        assert 5 not in numbers
        assert 6 in numbers
        assert data["count"] == 59

    def test_seat_outside_universe_is_404(self, client, seed_data):
        resp = client.get("/seats/61", headers=MEM_1)
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "seat_not_found"

    def test_mine_release_and_change(self, client, seed_data, occupy):
        occupy(9, "mem_1", utcnow() + timedelta(days=10))

        assert client.get("/seats/mine", headers=MEM_1).get_json()["seat"]["seatNumber"] == 9

        resp = client.post("/seats/change", headers=MEM_1, json={"seatNumber": 10})
        assert resp.status_code == 200
        assert resp.get_json()["seat"]["seatNumber"] == 10

        resp = client.post("/seats/release", headers=MEM_1)
        assert resp.status_code == 200
        assert client.get("/seats/mine", headers=MEM_1).get_json()["seat"] is None

    def test_change_requires_seat_number(self, client, seed_data):
        resp = client.post("/seats/change", headers=MEM_1, json={})
        assert resp.status_code == 400


class TestAdminRoutes:
    def test_members_are_forbidden(self, client, seed_data):
        for path in ("/admin/stats", "/admin/reconciliation", "/admin/overdue"):
            assert client.get(path, headers=MEM_1).status_code == 403
        assert client.post("/admin/sweep", headers=MEM_1, json={}).status_code == 403

    def test_manual_payment(self, client, seed_data, engine):
        resp = client.post("/admin/payments/manual", headers=ADMIN, json={
            "memberId": "mem_2", "amount": 600, "months": 1, "seatNumber": 20,
        })

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["seatAllocationOutcome"] == "allocated"
        assert engine.payments.get(data["orderId"]).verified_by == "admin_1"

    def test_manual_payment_requires_member(self, client, seed_data):
        resp = client.post("/admin/payments/manual", headers=ADMIN, json={"amount": 600})
        assert resp.status_code == 400

    def test_reconciliation_queue_and_resolution(self, client, seed_data, make_attempt, occupy):
        make_attempt("ORD_C", "mem_3", seat=5)
        occupy(5, "mem_2", utcnow() + timedelta(days=10))
        client.post("/payments/verify", headers=MEM_3, json=verify_body("ORD_C"))

        data = client.get("/admin/reconciliation", headers=ADMIN).get_json()
        assert data["count"] == 1
        assert data["attempts"][0]["orderId"] == "ORD_C"
        assert data["attempts"][0]["conflict"]["action"] == "settlement.seat_conflict"
        assert data["attempts"][0]["conflictedAt"] is not None

        resp = client.post("/admin/reconciliation/ORD_C", headers=ADMIN, json={
            "resolution": "reassigned", "seatNumber": 6,
        })
        assert resp.status_code == 200
        assert resp.get_json()["resolution"] == "reassigned"
        assert client.get("/admin/reconciliation", headers=ADMIN).get_json()["count"] == 0

    def test_force_release_assign_and_history(self, client, seed_data, occupy):
        occupy(5, "mem_2", utcnow() + timedelta(days=10))

        assert client.post("/admin/seats/5/release", headers=ADMIN).status_code == 200

        resp = client.post("/admin/seats/5/assign", headers=ADMIN,
                           json={"memberId": "mem_3", "months": 2})
        assert resp.status_code == 201
        assert resp.get_json()["seat"]["ownerId"] == "mem_3"

        history = client.get("/admin/seats/5/history", headers=ADMIN).get_json()["history"]
        assert [(h["kind"], h["memberId"]) for h in history] == [
            ("booking", "mem_2"), ("release", "mem_2"), ("booking", "mem_3"),
        ]

    def test_overdue_and_expiring(self, client, seed_data, occupy):
        account = account_service.get_account("mem_1")
        account.payment_status = "overdue"
        db.session.commit()
        occupy(7, "mem_2", utcnow() + timedelta(days=2))
        occupy(8, "mem_3", utcnow() + timedelta(days=20))

        overdue = client.get("/admin/overdue", headers=ADMIN).get_json()
        assert [m["memberId"] for m in overdue["members"]] == ["mem_1"]

        expiring = client.get("/admin/expiring?days=7", headers=ADMIN).get_json()
        assert [s["seatNumber"] for s in expiring["seats"]] == [7]

        assert client.get("/admin/expiring?days=abc", headers=ADMIN).status_code == 400

    def test_exempt_member_is_skipped_by_overdue_sweep(self, client, seed_data, engine):
        account = account_service.get_account("mem_1")
        account.payment_status = "paid"
        account.next_due_date = utcnow() - timedelta(days=3)
        db.session.commit()

        resp = client.put("/admin/members/mem_1/payment-status", headers=ADMIN,
                          json={"paymentStatus": "exempt", "note": "scholarship"})

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["previousStatus"] == "paid"
        assert data["account"]["paymentStatus"] == "exempt"
        event = AuditEvent.query.filter_by(action="account.payment_status_set").one()
        assert event.actor_id == "admin_1"
        assert event.metadata_ == {"from": "paid", "to": "exempt", "note": "scholarship"}

        resp = client.post("/admin/sweep", headers=ADMIN, json={"duties": ["mark_overdue"]})
        assert resp.status_code == 200
        assert account_service.get_account("mem_1").payment_status == "exempt"
        assert client.get("/admin/overdue", headers=ADMIN).get_json()["count"] == 0

    def test_payment_status_validation(self, client, seed_data):
        resp = client.put("/admin/members/mem_1/payment-status", headers=ADMIN,
                          json={"paymentStatus": "forgiven"})
        assert resp.status_code == 400

        resp = client.put("/admin/members/mem_nobody/payment-status", headers=ADMIN,
                          json={"paymentStatus": "exempt"})
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "member_not_found"

        resp = client.put("/admin/members/mem_2/payment-status", headers=MEM_1,
                          json={"paymentStatus": "exempt"})
        assert resp.status_code == 403
        assert account_service.get_account("mem_2").payment_status == "pending"

    def test_stats(self, client, seed_data):
        stats = client.get("/admin/stats", headers=ADMIN).get_json()["stats"]
        assert stats["totalSeats"] == 60
        assert stats["members"] == 4

    def test_sweep(self, client, seed_data, occupy):
        occupy(3, "mem_1", utcnow() - timedelta(hours=1))

        resp = client.post("/admin/sweep", headers=ADMIN, json={"duties": ["expire_seats"]})

        assert resp.status_code == 200
        assert resp.get_json()["reports"]["expire_seats"]["applied"] == 1

    def test_sweep_unknown_duty(self, client, seed_data):
        resp = client.post("/admin/sweep", headers=ADMIN, json={"duties": ["vacuum"]})
        assert resp.status_code == 400
