"""Shared test fixtures for the seatdesk test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake Stripe keys)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- engine: the app's SettlementEngine
- seed_data: admin + three member accounts, seat universe initialised
- make_attempt / occupy: build ledger state directly
- sign / member_headers: verification assertion and identity helpers
"""

import hashlib
import hmac
from datetime import timedelta
from decimal import Decimal

import pytest

from seatdesk import create_app
from seatdesk.extensions import db as _db
from seatdesk.models.member import MemberAccount
from seatdesk.models.payment import PaymentAttempt
from seatdesk.services import account_service
from seatdesk.timeutil import utcnow

SIGNING_SECRET = "signing_secret_test"


def sign(order_id, payment_id, secret=SIGNING_SECRET):
    """The assertion a client receives from the gateway's checkout."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def member_headers(member_id, name=None):
    headers = {"X-Member-Id": member_id}
    if name:
        headers["X-Member-Name"] = name
    return headers


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def engine(app):
    return app.extensions["seatdesk"]


@pytest.fixture
def seed_data(app, db_session, engine):
    """Seed an admin and three members, and create seats 1..60.

    Returns plain ids so tests can use them across contexts.
    """
    admin = MemberAccount(external_id="admin_1", display_name="Front Desk", is_admin=True)
    _db.session.add(admin)
    for member_id, name in (("mem_1", "Asha"), ("mem_2", "Ravi"), ("mem_3", "Meera")):
        _db.session.add(MemberAccount(external_id=member_id, display_name=name))
    _db.session.commit()

    engine.seats.initialize()

    return {
        "admin_id": "admin_1",
        "member_ids": ["mem_1", "mem_2", "mem_3"],
    }


@pytest.fixture
def make_attempt(db_session):
    """Insert a payment attempt directly, bypassing the gateway."""

    def _make(order_id, member_id, seat=None, amount=600, months=1,
              purpose="seat_booking", state="pending", created_at=None, shift="fullday"):
        attempt = PaymentAttempt(
            order_id=order_id,
            member_id=member_id,
            amount=Decimal(str(amount)),
            currency="inr",
            purpose=purpose,
            months_covered=months,
            shift=shift,
            state=state,
            linked_seat_number=seat,
        )
        if created_at is not None:
            attempt.created_at = created_at
        _db.session.add(attempt)
        _db.session.commit()
        return attempt

    return _make


@pytest.fixture
def occupy(engine, db_session):
    """Book a seat for a member directly through the seat ledger."""

    def _occupy(seat_number, member_id, expires_at, booked_at=None, shift="fullday"):
        booked_at = booked_at or min(utcnow(), expires_at - timedelta(days=1))
        engine.seats.snapshot(seat_number)
        result = engine.seats.try_transition(
            seat_number,
            expected_owner=None,
            new_occupant=member_id,
            new_expiry=expires_at,
            new_shift=shift,
            now=booked_at,
        )
        assert result.applied
        account_service.assign_seat_reference(member_id, seat_number, expires_at, shift)
        _db.session.commit()
        return result.seat

    return _occupy
