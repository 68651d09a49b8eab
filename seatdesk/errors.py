"""Typed errors raised by the ledgers and the settlement engine.

Each error carries the HTTP status and the machine-readable code the
blueprints render. Conflicts are not errors in the business sense (they
are expected contention outcomes) but they travel the same path so the
caller always gets a deterministic signal.
"""


class SeatdeskError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message=None, **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self):
        payload = {"ok": False, "error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class ValidationError(SeatdeskError):
    """Malformed input. Nothing was mutated."""

    status_code = 400
    code = "validation_error"


class SeatNotFound(SeatdeskError):
    """Seat number outside the facility's seat universe."""

    status_code = 404
    code = "seat_not_found"


class AttemptNotFound(SeatdeskError):
    status_code = 404
    code = "attempt_not_found"


class SeatConflict(SeatdeskError):
    """The seat is actively held by someone else (or not held by the caller)."""

    status_code = 409
    code = "seat_conflict"


class InvalidSignature(SeatdeskError):
    status_code = 400
    code = "invalid_signature"


class GatewayUnavailable(SeatdeskError):
    """The payment gateway could not create an order. Safe to retry."""

    status_code = 503
    code = "gateway_unavailable"


class DuplicatePayment(SeatdeskError):
    """The gateway payment id is already recorded against another order."""

    status_code = 409
    code = "duplicate_payment"


class PaymentIncomplete(SeatdeskError):
    """The gateway does not (yet) report the order as paid."""

    status_code = 409
    code = "payment_incomplete"


class MemberNotFound(SeatdeskError):
    status_code = 404
    code = "member_not_found"
