#!/usr/bin/env python3
"""Reset all member, payment and seat data in the local DB.

Keeps admin accounts intact (their seat and billing fields are cleared).
Removes:
  - All non-admin member accounts and every payment history entry
  - All payment attempts
  - All seat history
  - All audit events
  - All gateway events
and puts every seat back to available.

Usage:
    python3 reset_seat_data.py
    python3 reset_seat_data.py --yes   (skip confirmation prompt)
"""

import sys
import os

# Ensure we can import the app
sys.path.insert(0, os.path.dirname(__file__))

# Load .env
from dotenv import load_dotenv
load_dotenv()


def reset():
    from seatdesk import create_app
    from seatdesk.extensions import db
    from seatdesk.models.audit import AuditEvent
    from seatdesk.models.gateway_event import GatewayEvent
    from seatdesk.models.member import MemberAccount, MemberPaymentEntry
    from seatdesk.models.payment import PaymentAttempt
    from seatdesk.models.seat import Seat, SeatHistory

    app = create_app("development")

    with app.app_context():
        admins = MemberAccount.query.filter_by(is_admin=True).all()
        admin_ids = [a.id for a in admins]

        print("\n  Admin accounts (will be KEPT):")
        for a in admins:
            print(f"    - {a.external_id} ({a.display_name or 'no name'})")

        member_count = MemberAccount.query.filter_by(is_admin=False).count()
        attempt_count = PaymentAttempt.query.count()
        occupied_count = Seat.query.filter_by(state="occupied").count()

        print(f"\n  Data to be DELETED:")
        print(f"    - {member_count} member account(s)")
        print(f"    - {attempt_count} payment attempt(s)")
        print(f"    - {occupied_count} occupied seat(s) released")
        print(f"    - All payment entries, seat history, audit logs, gateway events")
        print()

        if "--yes" not in sys.argv:
            confirm = input("  Proceed? (type 'yes' to confirm): ")
            if confirm.strip().lower() != "yes":
                print("  Aborted.")
                return

        # Delete in dependency order (children first)
        print("\n  Deleting...")

        n = MemberPaymentEntry.query.delete()
        print(f"    member_payment_entries: {n}")

        n = MemberAccount.query.filter(MemberAccount.id.notin_(admin_ids)).delete()
        print(f"    member_accounts (non-admin): {n}")

        MemberAccount.query.update({
            MemberAccount.seat_number: None,
            MemberAccount.seat_expires_at: None,
            MemberAccount.shift: None,
            MemberAccount.payment_status: "pending",
            MemberAccount.next_due_date: None,
            MemberAccount.total_paid: 0,
            MemberAccount.last_payment_at: None,
            MemberAccount.last_payment_amount: None,
            MemberAccount.mirror_sync_status: "pending",
        })

        n = PaymentAttempt.query.delete()
        print(f"    payment_attempts: {n}")

        n = SeatHistory.query.delete()
        print(f"    seat_history: {n}")

        n = Seat.query.update({
            Seat.state: "available",
            Seat.owner_id: None,
            Seat.shift: None,
            Seat.booked_at: None,
            Seat.expires_at: None,
            Seat.version: Seat.version + 1,
        })
        print(f"    seats reset: {n}")

        n = AuditEvent.query.delete()
        print(f"    audit_events: {n}")

        n = GatewayEvent.query.delete()
        print(f"    gateway_events: {n}")

        db.session.commit()
        print("\n  Done! Seat and payment data cleared. Admin account(s) preserved.\n")


if __name__ == "__main__":
    reset()
