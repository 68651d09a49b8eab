"""Seat models.

- Seat: the authoritative occupancy record for one seat, keyed by seat number.
  Mutated only through SeatLedger.try_transition (a single conditional UPDATE).
- SeatHistory: append-only log of applied transitions (booking / extension /
  release). Rows are never updated or deleted.

seats.state stores available | occupied. An occupied seat whose expires_at
has passed is reported as expired_occupied: logically available, waiting for
the sweeper or the next booking attempt to observe it.
"""

import uuid

from seatdesk.extensions import db
from seatdesk.timeutil import as_utc, isoformat, utcnow


class Seat(db.Model):
    __tablename__ = "seats"

    STATES = ["available", "occupied"]
    SHIFTS = ["morning", "evening", "fullday", "custom"]

    seat_number = db.Column(db.Integer, primary_key=True, autoincrement=False)
    state = db.Column(
        db.String(20), nullable=False, default="available"
    )  # available | occupied
    owner_id = db.Column(
        db.String(128), nullable=True, index=True
    )  # member external id
    shift = db.Column(db.String(20), nullable=True)
    booked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (db.Index("ix_seats_state_expires", "state", "expires_at"),)

    @property
    def zone(self):
        n = self.seat_number
        if n <= 15:
            return "A"
        if n <= 30:
            return "B"
        if n <= 45:
            return "C"
        return "D"

    def occupancy_state(self, now=None):
        if self.state != "occupied":
            return "available"
        now = now or utcnow()
        expires = as_utc(self.expires_at)
        if expires is None or expires <= now:
            return "expired_occupied"
        return "occupied"

    def is_actively_held_by(self, member_id, now=None):
        return (
            self.occupancy_state(now) == "occupied"
            and self.owner_id == member_id
        )

    def to_dict(self, now=None, include_owner=False):
        data = {
            "seatNumber": self.seat_number,
            "zone": self.zone,
            "occupancyState": self.occupancy_state(now),
            "expiresAt": isoformat(self.expires_at),
            "shift": self.shift,
        }
        if include_owner:
            data["ownerId"] = self.owner_id
            data["bookedAt"] = isoformat(self.booked_at)
        return data

    def __repr__(self):
        return f"<Seat {self.seat_number} ({self.state})>"


class SeatHistory(db.Model):
    __tablename__ = "seat_history"

    KINDS = ["booking", "extension", "release"]
    RELEASE_REASONS = ["expired", "lapsed", "user_request", "admin", "seat_change"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    seat_number = db.Column(
        db.Integer, db.ForeignKey("seats.seat_number"), nullable=False, index=True
    )
    kind = db.Column(db.String(20), nullable=False)  # booking | extension | release
    member_id = db.Column(db.String(128), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reason = db.Column(db.String(30), nullable=True)  # release reason
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {
            "seatNumber": self.seat_number,
            "kind": self.kind,
            "memberId": self.member_id,
            "startedAt": isoformat(self.started_at),
            "expiresAt": isoformat(self.expires_at),
            "reason": self.reason,
        }

    def __repr__(self):
        return f"<SeatHistory seat={self.seat_number} {self.kind}>"
