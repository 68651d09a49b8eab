"""Seat ledger — the authoritative seat occupancy record.

Every change to a seat goes through try_transition(), which applies it as a
conditional UPDATE:

    UPDATE seats SET ... WHERE seat_number = :n AND <guard>

and is Applied iff exactly one row matched. Concurrent requests for the
same seat race on that statement and the database picks exactly one
winner; nothing decides the outcome from an earlier SELECT.

Guards:
    expected_owner=None       -> the seat has no active owner
                                 (available, or occupied but lapsed)
    expected_owner=<member>   -> the seat is occupied by that member
    only_if_lapsed=True       -> expires_at <= now (sweeper releases)
    expected_version=<n>      -> optimistic counter (extensions)

A booking over a lapsed occupant is pinned to the version it read, and
their "lapsed" release is recorded only when that UPDATE applies. If the
sweeper got there first the booking falls back to the available-seat
guard and the sweeper's own release row stands alone.

The ledger flushes but never commits; callers own the commit boundary.
"""

import logging

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from seatdesk.errors import SeatNotFound, ValidationError
from seatdesk.extensions import db
from seatdesk.models.seat import Seat, SeatHistory
from seatdesk.timeutil import utcnow

logger = logging.getLogger(__name__)


class TransitionResult:
    """Outcome of a single try_transition call.

    applied is False for a conflict; seat is the row as it stands after
    the attempt (None if the seat has no record yet).
    """

    def __init__(self, applied, seat, kind=None, previous_owner=None):
        self.applied = applied
        self.seat = seat
        self.kind = kind
        self.previous_owner = previous_owner

    def __bool__(self):
        return self.applied

    def __repr__(self):
        status = "Applied" if self.applied else "Rejected"
        number = self.seat.seat_number if self.seat else None
        return f"<TransitionResult {status} seat={number} kind={self.kind}>"


class SeatLedger:
    def __init__(self, seat_count):
        self.seat_count = seat_count

    # ──────────────────────────────────────────────
    # Seat universe
    # ──────────────────────────────────────────────

    def validate_seat_number(self, seat_number):
        if isinstance(seat_number, bool) or not isinstance(seat_number, int):
            raise ValidationError("seatNumber must be an integer")
        if seat_number < 1 or seat_number > self.seat_count:
            raise SeatNotFound(f"Seat {seat_number} not found", seatNumber=seat_number)
        return seat_number

    def ensure_seat(self, seat_number):
        """Create the seat row on first reference (committed).

        Two first references can race; the primary key decides and the
        loser just re-reads. Call with no other pending work in the session.
        """
        self.validate_seat_number(seat_number)
        seat = db.session.get(Seat, seat_number)
        if seat is not None:
            return seat

        db.session.add(Seat(seat_number=seat_number, state="available", version=0))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
        return db.session.get(Seat, seat_number, populate_existing=True)

    def initialize(self):
        """Create every missing seat in 1..seat_count. Returns the number created."""
        existing = {n for (n,) in db.session.query(Seat.seat_number).all()}
        missing = [n for n in range(1, self.seat_count + 1) if n not in existing]
        for n in missing:
            db.session.add(Seat(seat_number=n, state="available", version=0))
        if missing:
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                logger.info("Seat initialisation raced with another writer")
            logger.info(f"Initialised {len(missing)} seats")
        return len(missing)

    # ──────────────────────────────────────────────
    # Atomic transition primitive
    # ──────────────────────────────────────────────

    def try_transition(self, seat_number, expected_owner, new_occupant,
                       new_expiry=None, new_shift=None, expected_version=None,
                       only_if_lapsed=False, reason=None, now=None):
        """Apply a guarded occupancy transition. Returns a TransitionResult.

        new_occupant=None releases the seat (explicit release, admin
        override, sweeper expiry); a release must name the owner it expects.
        """
        self.validate_seat_number(seat_number)
        now = now or utcnow()

        if new_occupant is not None and new_expiry is None:
            raise ValidationError("new_expiry is required when occupying a seat")
        if new_occupant is None and expected_owner is None:
            raise ValidationError("releasing a seat requires the expected owner")

        before = db.session.get(Seat, seat_number, populate_existing=True)
        if before is None:
            if expected_owner is not None:
                # Nothing to extend or release on a seat that was never booked.
                return TransitionResult(False, None)
            before = self.ensure_seat(seat_number)
        before_state = before.state
        before_owner = before.owner_id
        before_version = before.version

        extra = []
        if only_if_lapsed:
            extra.append(Seat.expires_at <= now)
        if expected_version is not None:
            extra.append(Seat.version == expected_version)

        if new_occupant is None:
            kind = "release"
            values = {
                "state": "available",
                "owner_id": None,
                "shift": None,
                "booked_at": None,
                "expires_at": None,
            }
        elif new_occupant == expected_owner:
            kind = "extension"
            values = {"state": "occupied", "expires_at": new_expiry}
            if new_shift:
                values["shift"] = new_shift
        else:
            kind = "booking"
            values = {
                "state": "occupied",
                "owner_id": new_occupant,
                "shift": new_shift,
                "booked_at": now,
                "expires_at": new_expiry,
            }
        values["version"] = Seat.version + 1
        values["updated_at"] = now

        displaced = None
        if expected_owner is None:
            applied = False
            if before_state == "occupied" and before_owner:
                # Displace the lapsed occupant only if the row is still the one read.
                applied = self._apply(seat_number, values, [
                    Seat.state == "occupied",
                    Seat.owner_id == before_owner,
                    Seat.version == before_version,
                    or_(Seat.expires_at.is_(None), Seat.expires_at <= now),
                    *extra,
                ])
                if applied and before_owner != new_occupant:
                    displaced = before_owner
            if not applied:
                applied = self._apply(seat_number, values, [Seat.state == "available", *extra])
        else:
            applied = self._apply(seat_number, values, [
                Seat.state == "occupied",
                Seat.owner_id == expected_owner,
                *extra,
            ])

        if applied:
            if displaced:
                db.session.add(SeatHistory(
                    seat_number=seat_number,
                    kind="release",
                    member_id=displaced,
                    started_at=now,
                    reason="lapsed",
                ))
            db.session.add(SeatHistory(
                seat_number=seat_number,
                kind=kind,
                member_id=new_occupant if new_occupant else expected_owner,
                started_at=now,
                expires_at=new_expiry,
                reason=reason if kind == "release" else None,
            ))
            db.session.flush()
            logger.info(
                f"Seat {seat_number}: {kind} applied "
                f"(owner {expected_owner} -> {new_occupant})"
            )
        else:
            logger.info(
                f"Seat {seat_number}: {kind} rejected "
                f"(expected owner {expected_owner}, found {before_owner})"
            )

        seat = db.session.get(Seat, seat_number, populate_existing=True)
        return TransitionResult(applied, seat, kind=kind, previous_owner=before_owner)

    def _apply(self, seat_number, values, guards):
        """One conditional UPDATE; True iff exactly one row matched."""
        result = db.session.execute(
            update(Seat)
            .where(Seat.seat_number == seat_number, *guards)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ──────────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────────

    def get(self, seat_number):
        self.validate_seat_number(seat_number)
        return db.session.get(Seat, seat_number, populate_existing=True)

    def snapshot(self, seat_number):
        """Current seat row, created lazily if it was never referenced."""
        seat = self.get(seat_number)
        if seat is None:
            seat = self.ensure_seat(seat_number)
        return seat

    def list_seats(self):
        if Seat.query.count() == 0:
            self.initialize()
        return Seat.query.order_by(Seat.seat_number.asc()).all()

    def available_seats(self, now=None):
        now = now or utcnow()
        if Seat.query.count() == 0:
            self.initialize()
        return (
            Seat.query
            .filter(or_(
                Seat.state == "available",
                Seat.expires_at.is_(None),
                Seat.expires_at <= now,
            ))
            .order_by(Seat.seat_number.asc())
            .all()
        )

    def held_by(self, member_id, now=None):
        """The seat this member actively occupies, or None."""
        now = now or utcnow()
        return (
            Seat.query
            .filter(
                Seat.owner_id == member_id,
                Seat.state == "occupied",
                Seat.expires_at > now,
            )
            .order_by(Seat.expires_at.desc())
            .first()
        )

    def occupied_by(self, member_id):
        """The seat recorded as this member's, lapsed or not."""
        return (
            Seat.query
            .filter(Seat.owner_id == member_id, Seat.state == "occupied")
            .order_by(Seat.expires_at.desc())
            .first()
        )

    def lapsed_seats(self, now=None):
        """(seat_number, owner_id) pairs still recorded occupied past expiry."""
        now = now or utcnow()
        rows = (
            db.session.query(Seat.seat_number, Seat.owner_id)
            .filter(Seat.state == "occupied", Seat.expires_at <= now)
            .order_by(Seat.seat_number.asc())
            .all()
        )
        return [(row.seat_number, row.owner_id) for row in rows]

    def expiring_within(self, until, now=None):
        now = now or utcnow()
        return (
            Seat.query
            .filter(
                Seat.state == "occupied",
                Seat.expires_at > now,
                Seat.expires_at <= until,
            )
            .order_by(Seat.expires_at.asc())
            .all()
        )

    def history(self, seat_number):
        self.validate_seat_number(seat_number)
        return (
            SeatHistory.query
            .filter_by(seat_number=seat_number)
            .order_by(SeatHistory.created_at.asc(), SeatHistory.started_at.asc())
            .all()
        )
