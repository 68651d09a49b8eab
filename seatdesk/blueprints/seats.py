"""Seats blueprint — /seats/*

Read-only seat snapshots plus the member's own release / change.

Routes:
- GET  /seats            — every seat {occupancyState, expiresAt, shift}
- GET  /seats/available  — seats with no active owner
- GET  /seats/mine       — the caller's seat, if any
- GET  /seats/<n>        — one seat
- POST /seats/release    — give up the caller's seat
- POST /seats/change     — move the caller's booking to another seat
"""

import logging

from flask import Blueprint, jsonify
from flask_login import current_user

from seatdesk.blueprints.payments import json_body
from seatdesk.decorators import member_required
from seatdesk.errors import ValidationError
from seatdesk.services.settlement import get_engine
from seatdesk.timeutil import utcnow

logger = logging.getLogger(__name__)

seats_bp = Blueprint("seats", __name__, url_prefix="/seats")


def _seat_dict(seat, now):
    return seat.to_dict(now, include_owner=current_user.is_admin)


@seats_bp.route("")
@member_required
def list_seats():
    now = utcnow()
    seats = get_engine().seats.list_seats()
    return jsonify(ok=True, seats=[_seat_dict(s, now) for s in seats])


@seats_bp.route("/available")
@member_required
def available_seats():
    now = utcnow()
    seats = get_engine().seats.available_seats(now)
    return jsonify(ok=True, count=len(seats), seats=[s.to_dict(now) for s in seats])


@seats_bp.route("/mine")
@member_required
def my_seat():
    now = utcnow()
    seat = get_engine().seats.occupied_by(current_user.external_id)
    return jsonify(ok=True, seat=seat.to_dict(now, include_owner=True) if seat else None)


@seats_bp.route("/<int:seat_number>")
@member_required
def get_seat(seat_number):
    now = utcnow()
    seat = get_engine().seats.snapshot(seat_number)
    return jsonify(ok=True, seat=_seat_dict(seat, now))


@seats_bp.route("/release", methods=["POST"])
@member_required
def release_seat():
    seat = get_engine().release_seat(current_user.external_id)
    return jsonify(ok=True, seat=seat.to_dict())


@seats_bp.route("/change", methods=["POST"])
@member_required
def change_seat():
    """Body: { seatNumber, shift? }"""
    data = json_body()
    if data.get("seatNumber") is None:
        raise ValidationError("seatNumber is required")

    seat = get_engine().change_seat(
        current_user.external_id,
        data.get("seatNumber"),
        shift=data.get("shift"),
    )
    return jsonify(ok=True, seat=seat.to_dict(include_owner=True))
