"""Payment gateway — all Stripe API calls.

Responsible for:
- Creating the external order (a Stripe PaymentIntent) before any local row
- Reading back a PaymentIntent once the browser has confirmed it
- Verifying and constructing webhook events
- Checking that the configured key is usable (CLI)

A gateway error while creating an order surfaces as GatewayUnavailable;
the caller must not have written anything locally yet.
"""

import logging
from decimal import Decimal

import stripe

from seatdesk.errors import GatewayUnavailable

logger = logging.getLogger(__name__)


def to_minor_units(amount):
    """Whole currency units (Decimal/int/str) -> integer minor units (paise)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))


class GatewayOrder:
    """A created PaymentIntent: our order_id plus the secret Stripe.js confirms with."""

    def __init__(self, order_id, client_secret=None):
        self.order_id = order_id
        self.client_secret = client_secret


class GatewayCapture:
    """What Stripe reports for an order after in-browser confirmation."""

    def __init__(self, order_id, status, payment_id=None, amount_received=None):
        self.order_id = order_id
        self.status = status
        self.payment_id = payment_id
        self.amount_received = amount_received

    @property
    def succeeded(self):
        return self.status == "succeeded" and bool(self.payment_id)


class PaymentGateway:
    def __init__(self, secret_key, publishable_key, webhook_secret, currency="inr"):
        self.secret_key = secret_key
        self.publishable_key = publishable_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    @classmethod
    def from_config(cls, config):
        return cls(
            secret_key=config.get("STRIPE_SECRET_KEY"),
            publishable_key=config.get("STRIPE_PUBLISHABLE_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            currency=config.get("PAYMENT_CURRENCY", "inr"),
        )

    # ──────────────────────────────────────────────
    # Orders
    # ──────────────────────────────────────────────

    def create_order(self, amount, metadata, currency=None):
        """Create a PaymentIntent and return it as a GatewayOrder.

        metadata values are stringified; Stripe rejects anything else.
        Raises GatewayUnavailable on any Stripe error.
        """
        stripe.api_key = self.secret_key
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency or self.currency,
                metadata={k: str(v) for k, v in metadata.items() if v is not None},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe order creation failed: {e}")
            raise GatewayUnavailable("Payment gateway unavailable, try again")

        logger.info(f"Created gateway order {intent['id']}")
        return GatewayOrder(intent["id"], intent.get("client_secret"))

    def fetch_capture(self, order_id):
        """Retrieve the PaymentIntent behind an order.

        The payment id is the intent's latest charge, which Stripe only
        sets once the payment has gone through. Raises GatewayUnavailable
        on any Stripe error.
        """
        stripe.api_key = self.secret_key
        try:
            intent = stripe.PaymentIntent.retrieve(order_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe order lookup failed for {order_id}: {e}")
            raise GatewayUnavailable("Payment gateway unavailable, try again")

        charge = intent.get("latest_charge")
        if charge is not None and not isinstance(charge, str):
            charge = charge.get("id")  # expanded Charge object
        return GatewayCapture(
            order_id=intent["id"],
            status=intent.get("status"),
            payment_id=charge,
            amount_received=intent.get("amount_received"),
        )

    # ──────────────────────────────────────────────
    # Webhooks
    # ──────────────────────────────────────────────

    def construct_webhook_event(self, payload, sig_header):
        """Verify the Stripe-Signature header and construct the event.

        Raises stripe.SignatureVerificationError on an invalid signature and
        ValueError on an unparseable payload.
        """
        return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)

    # ──────────────────────────────────────────────
    # Diagnostics
    # ──────────────────────────────────────────────

    @property
    def key_mode(self):
        if not self.secret_key:
            return None
        return "Live" if self.secret_key.startswith("sk_live_") else "Test"

    def check_credentials(self):
        """Retrieve the account behind the configured key. Raises StripeError."""
        stripe.api_key = self.secret_key
        return stripe.Account.retrieve()
