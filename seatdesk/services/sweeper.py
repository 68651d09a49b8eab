"""Lifecycle sweeper — time-driven duties that run beside the request path.

Duties:
- expire_seats          release occupied seats whose expiry has passed
- mark_overdue          flag members whose next due date has passed
- prune_stale_attempts  delete Pending attempts abandoned for too long
- sync_mirror           re-push member rows the mirror never received

Each duty uses the same guarded writes as the request path, so a seat
renewed a moment before the sweep is simply skipped. Every record is
committed or rolled back on its own: one bad row is logged and left for
the next run, it never stops the batch. Running a duty twice in a row
changes nothing the second time.
"""

import logging
import threading
import time

from seatdesk.extensions import db
from seatdesk.models.member import MemberAccount
from seatdesk.services import account_service
from seatdesk.timeutil import utcnow

logger = logging.getLogger(__name__)


class SweepReport:
    def __init__(self, duty):
        self.duty = duty
        self.examined = 0
        self.applied = 0
        self.skipped = 0
        self.failed = 0

    def to_dict(self):
        return {
            "duty": self.duty,
            "examined": self.examined,
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
        }

    def __repr__(self):
        return (
            f"<SweepReport {self.duty} examined={self.examined} applied={self.applied} "
            f"skipped={self.skipped} failed={self.failed}>"
        )


# ──────────────────────────────────────────────
# Duties
# ──────────────────────────────────────────────

def expire_seats(engine, now=None):
    now = now or utcnow()
    report = SweepReport("expire_seats")

    for seat_number, owner_id in engine.seats.lapsed_seats(now):
        report.examined += 1
        try:
            result = engine.seats.try_transition(
                seat_number,
                expected_owner=owner_id,
                new_occupant=None,
                only_if_lapsed=True,
                reason="expired",
                now=now,
            )
            if not result.applied:
                # Renewed or released since the scan.
                db.session.rollback()
                report.skipped += 1
                continue
            account_service.release_seat_reference(owner_id, seat_number)
            db.session.commit()
            report.applied += 1
        except Exception as e:
            db.session.rollback()
            report.failed += 1
            logger.error(f"Expiry of seat {seat_number} failed: {e}", exc_info=True)
            continue

        engine.publish("seat:released", {"seatNumber": seat_number, "reason": "expired"})

    return report


def mark_overdue(engine, now=None):
    now = now or utcnow()
    report = SweepReport("mark_overdue")

    candidates = (
        db.session.query(MemberAccount.id, MemberAccount.external_id)
        .filter(
            MemberAccount.next_due_date < now,
            MemberAccount.payment_status.notin_(("overdue", "exempt")),
        )
        .all()
    )
    for account_id, member_id in candidates:
        report.examined += 1
        try:
            if not account_service.mark_overdue(account_id, now):
                db.session.rollback()
                report.skipped += 1
                continue
            db.session.commit()
            report.applied += 1
        except Exception as e:
            db.session.rollback()
            report.failed += 1
            logger.error(f"Overdue marking for member {member_id} failed: {e}", exc_info=True)
            continue

        engine.publish("payment:overdue", {"memberId": member_id})

    return report


def prune_stale_attempts(engine, now=None, days=30):
    now = now or utcnow()
    report = SweepReport("prune_stale_attempts")

    for order_id in engine.payments.stale_pending(now, days):
        report.examined += 1
        try:
            if not engine.payments.discard_if_pending(order_id):
                db.session.rollback()
                report.skipped += 1
                continue
            db.session.commit()
            report.applied += 1
            logger.info(f"Pruned abandoned attempt {order_id}")
        except Exception as e:
            db.session.rollback()
            report.failed += 1
            logger.error(f"Pruning attempt {order_id} failed: {e}", exc_info=True)

    return report


def sync_mirror(engine, now=None):
    now = now or utcnow()
    report = SweepReport("sync_mirror")

    pending = (
        MemberAccount.query
        .filter_by(mirror_sync_status="pending")
        .order_by(MemberAccount.updated_at.asc())
        .all()
    )
    for account in pending:
        report.examined += 1
        member_id = account.external_id
        try:
            engine.mirror.sync_member(account.to_mirror_row())
            account_service.mark_mirror_synced(member_id, now)
            db.session.commit()
            report.applied += 1
        except Exception as e:
            db.session.rollback()
            report.failed += 1
            logger.error(f"Mirror sync for member {member_id} failed: {e}")

    return report


DUTIES = {
    "expire_seats": expire_seats,
    "mark_overdue": mark_overdue,
    "prune_stale_attempts": prune_stale_attempts,
    "sync_mirror": sync_mirror,
}


def run_sweep(engine, duties=None, now=None, stale_pending_days=30):
    """Run the named duties (all by default) once. Returns {duty: SweepReport}."""
    now = now or utcnow()
    reports = {}
    for name in duties or DUTIES:
        duty = DUTIES[name]
        try:
            if name == "prune_stale_attempts":
                reports[name] = duty(engine, now, days=stale_pending_days)
            else:
                reports[name] = duty(engine, now)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Sweep duty {name} aborted: {e}", exc_info=True)
            report = SweepReport(name)
            report.failed = 1
            reports[name] = report
            continue
        logger.info(f"Sweep {reports[name]}")
    return reports


# ──────────────────────────────────────────────
# Recurring task
# ──────────────────────────────────────────────

class LifecycleSweeper:
    """Runs the duties on a background thread, each on its own interval.

    The thread wakes every tick, runs whichever duties are due inside an
    application context, then waits. stop() wakes it immediately and
    joins it.
    """

    def __init__(self, app, tick_seconds=None, intervals=None):
        config = app.config
        self.app = app
        self.tick_seconds = tick_seconds if tick_seconds is not None else config["SWEEP_TICK_SECONDS"]
        self.intervals = intervals or {
            "expire_seats": config["SWEEP_EXPIRY_SECONDS"],
            "mark_overdue": config["SWEEP_OVERDUE_SECONDS"],
            "prune_stale_attempts": config["SWEEP_PRUNE_SECONDS"],
            "sync_mirror": config["SWEEP_MIRROR_SECONDS"],
        }
        self._stop_event = threading.Event()
        self._thread = None
        self._last_run = {}

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="lifecycle-sweeper", daemon=True
        )
        self._thread.start()
        logger.info(f"Lifecycle sweeper started (tick {self.tick_seconds}s)")

    def stop(self, timeout=10):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Lifecycle sweeper stopped")

    def run_once(self, duties=None):
        from seatdesk.services.settlement import get_engine

        with self.app.app_context():
            return run_sweep(
                get_engine(),
                duties=duties,
                stale_pending_days=self.app.config["STALE_PENDING_DAYS"],
            )

    def due_duties(self, clock=None):
        clock = time.monotonic() if clock is None else clock
        return [
            name for name in DUTIES
            if name not in self._last_run
            or clock - self._last_run[name] >= self.intervals[name]
        ]

    def _loop(self):
        while not self._stop_event.is_set():
            clock = time.monotonic()
            due = self.due_duties(clock)
            if due:
                try:
                    self.run_once(due)
                except Exception as e:
                    logger.error(f"Sweep run failed: {e}", exc_info=True)
                for name in due:
                    self._last_run[name] = clock
            self._stop_event.wait(self.tick_seconds)
