"""Tests for the lifecycle sweeper.

Covers:
- Expiry of lapsed seats (idempotent, renewed seats skipped)
- Overdue marking (exempt and paid-up members untouched)
- Per-record failure isolation
- Pruning of abandoned Pending attempts
- Mirror retry for rows the mirror never received
- Background thread start / stop and duty scheduling
"""

import time
from datetime import timedelta
from unittest.mock import MagicMock

from seatdesk.extensions import db
from seatdesk.models.member import MemberAccount
from seatdesk.models.payment import PaymentAttempt
from seatdesk.models.seat import SeatHistory
from seatdesk.services import account_service, sweeper
from seatdesk.services.sweeper import LifecycleSweeper, run_sweep
from seatdesk.timeutil import utcnow


def set_account(member_id, **values):
    account = account_service.get_account(member_id)
    for key, value in values.items():
        setattr(account, key, value)
    db.session.commit()


class TestExpireSeats:
    """Occupied seats past their expiry are released."""

    def test_lapsed_seat_is_released(self, engine, seed_data, occupy):
        now = utcnow()
        occupy(14, "mem_1", now - timedelta(hours=2))
        occupy(15, "mem_2", now + timedelta(days=4))

        report = sweeper.expire_seats(engine, now)

        assert report.applied == 1
        assert engine.seats.get(14).state == "available"
        assert engine.seats.get(15).owner_id == "mem_2"
        assert account_service.get_account("mem_1").seat_number is None
        assert SeatHistory.query.filter_by(seat_number=14, kind="release").one().reason == "expired"

    def test_second_run_changes_nothing(self, engine, seed_data, occupy):
        now = utcnow()
        occupy(14, "mem_1", now - timedelta(hours=2))
        sweeper.expire_seats(engine, now)

        report = sweeper.expire_seats(engine, now)

        assert report.examined == 0
        assert report.applied == 0
        assert SeatHistory.query.filter_by(seat_number=14, kind="release").count() == 1

    def test_seat_renewed_after_scan_is_skipped(self, engine, seed_data, occupy, monkeypatch):
        """The scan saw a lapsed seat; by the UPDATE it had been renewed."""
        now = utcnow()
        occupy(14, "mem_1", now + timedelta(days=30))
        monkeypatch.setattr(engine.seats, "lapsed_seats", lambda now=None: [(14, "mem_1")])

        report = sweeper.expire_seats(engine, now)

        assert report.examined == 1
        assert report.skipped == 1
        assert engine.seats.get(14).owner_id == "mem_1"
        assert account_service.get_account("mem_1").seat_number == 14

    def test_one_bad_record_does_not_stop_the_batch(self, engine, seed_data, occupy, monkeypatch):
        now = utcnow()
        occupy(14, "mem_1", now - timedelta(hours=2))
        occupy(16, "mem_2", now - timedelta(hours=2))

        real = account_service.release_seat_reference

        def flaky(member_id, seat_number):
            if member_id == "mem_1":
                raise RuntimeError("row locked")
            return real(member_id, seat_number)

        monkeypatch.setattr(account_service, "release_seat_reference", flaky)

        report = sweeper.expire_seats(engine, now)

        assert report.failed == 1
        assert report.applied == 1
        # The failed record was rolled back as a whole and waits for the next run.
        assert engine.seats.get(14).owner_id == "mem_1"
        assert engine.seats.get(16).state == "available"

    def test_release_event_published(self, engine, seed_data, occupy, monkeypatch):
        occupy(14, "mem_1", utcnow() - timedelta(hours=2))
        published = []
        monkeypatch.setattr(
            engine.notifier, "publish", lambda event, payload: published.append((event, payload))
        )

        sweeper.expire_seats(engine)

        assert published == [("seat:released", {"seatNumber": 14, "reason": "expired"})]


class TestMarkOverdue:
    """Members past their next due date are flagged."""

    def test_past_due_member_becomes_overdue(self, engine, seed_data):
        now = utcnow()
        set_account("mem_1", payment_status="paid", next_due_date=now - timedelta(days=1))
        set_account("mem_2", payment_status="paid", next_due_date=now + timedelta(days=10))
        set_account("mem_3", payment_status="exempt", next_due_date=now - timedelta(days=40))

        report = sweeper.mark_overdue(engine, now)

        assert report.applied == 1
        assert account_service.get_account("mem_1").payment_status == "overdue"
        assert account_service.get_account("mem_2").payment_status == "paid"
        assert account_service.get_account("mem_3").payment_status == "exempt"

    def test_already_overdue_is_not_examined_again(self, engine, seed_data):
        now = utcnow()
        set_account("mem_1", payment_status="paid", next_due_date=now - timedelta(days=1))
        sweeper.mark_overdue(engine, now)

        report = sweeper.mark_overdue(engine, now)

        assert report.examined == 0


class TestPruneStaleAttempts:
    def test_abandoned_pending_attempts_are_deleted(self, engine, seed_data, make_attempt):
        now = utcnow()
        make_attempt("ORD_old", "mem_1", created_at=now - timedelta(days=31))
        make_attempt("ORD_recent", "mem_1", created_at=now - timedelta(days=1))
        make_attempt("ORD_failed", "mem_1", state="failed", created_at=now - timedelta(days=90))

        report = sweeper.prune_stale_attempts(engine, now, days=30)

        assert report.applied == 1
        remaining = {a.order_id for a in PaymentAttempt.query.all()}
        assert remaining == {"ORD_recent", "ORD_failed"}

    def test_seat_history_is_never_pruned(self, engine, seed_data, occupy):
        now = utcnow()
        occupy(3, "mem_1", now - timedelta(days=200))

        run_sweep(engine, now=now)

        kinds = sorted(h.kind for h in SeatHistory.query.filter_by(seat_number=3).all())
        assert kinds == ["booking", "release"]


class TestMirrorSync:
    def test_pending_rows_are_pushed(self, engine, seed_data):
        report = sweeper.sync_mirror(engine)

        assert report.applied == 4
        assert MemberAccount.query.filter_by(mirror_sync_status="pending").count() == 0

    def test_failed_push_stays_pending(self, engine, seed_data, monkeypatch):
        def down(row):
            if row["memberId"] == "mem_2":
                raise ConnectionError("sheet unreachable")
            return True

        monkeypatch.setattr(engine.mirror, "sync_member", down)

        report = sweeper.sync_mirror(engine)

        assert report.failed == 1
        assert report.applied == 3
        assert account_service.get_account("mem_2").mirror_sync_status == "pending"
        assert account_service.get_account("mem_1").mirror_sync_status == "synced"


class TestRunSweep:
    def test_runs_every_duty(self, engine, seed_data):
        reports = run_sweep(engine)
        assert set(reports) == {"expire_seats", "mark_overdue", "prune_stale_attempts", "sync_mirror"}

    def test_aborted_duty_does_not_stop_others(self, engine, seed_data, monkeypatch):
        def exploding(engine, now=None):
            raise RuntimeError("boom")

        monkeypatch.setitem(sweeper.DUTIES, "mark_overdue", exploding)

        reports = run_sweep(engine, duties=["mark_overdue", "sync_mirror"])

        assert reports["mark_overdue"].failed == 1
        assert reports["sync_mirror"].applied == 4


class TestLifecycleSweeper:
    """The background thread only schedules; duties are tested above."""

    def test_every_duty_due_on_first_tick(self, app):
        sweeper_ = LifecycleSweeper(app, tick_seconds=1)
        assert sweeper_.due_duties(clock=100.0) == list(sweeper.DUTIES)

    def test_duty_not_due_again_before_interval(self, app):
        sweeper_ = LifecycleSweeper(app, tick_seconds=1, intervals={
            "expire_seats": 60,
            "mark_overdue": 3600,
            "prune_stale_attempts": 3600,
            "sync_mirror": 60,
        })
        for name in sweeper.DUTIES:
            sweeper_._last_run[name] = 100.0

        assert sweeper_.due_duties(clock=130.0) == []
        assert sweeper_.due_duties(clock=160.0) == ["expire_seats", "sync_mirror"]

    def test_start_and_stop(self, app, monkeypatch):
        sweeper_ = LifecycleSweeper(app, tick_seconds=0.01)
        run_once = MagicMock(return_value={})
        monkeypatch.setattr(sweeper_, "run_once", run_once)

        sweeper_.start()
        deadline = time.monotonic() + 5
        while not run_once.called and time.monotonic() < deadline:
            time.sleep(0.01)
        sweeper_.stop(timeout=5)

        assert run_once.called
        assert run_once.call_args.args[0] == list(sweeper.DUTIES)
        assert not sweeper_.running
