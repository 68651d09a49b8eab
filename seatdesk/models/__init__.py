# Models package — import all models here so Alembic can discover them.

from seatdesk.models.seat import Seat, SeatHistory  # noqa: F401
from seatdesk.models.payment import PaymentAttempt  # noqa: F401
from seatdesk.models.member import MemberAccount, MemberPaymentEntry  # noqa: F401
from seatdesk.models.gateway_event import GatewayEvent  # noqa: F401
from seatdesk.models.audit import AuditEvent  # noqa: F401
