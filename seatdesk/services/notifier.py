"""Real-time fan-out — seat and payment change events for connected clients.

Fire-and-forget. The engine calls publish() only after its commit and
never lets a failure here touch the ledgers.

Events: seat:booked, seat:extended, seat:released, seat:changed,
payment:verified, payment:overdue.
"""

import logging

import requests

logger = logging.getLogger(__name__)


class LogNotifier:
    """Used when no hub is configured (local dev, tests)."""

    def publish(self, event, payload):
        logger.info(f"[fan-out] {event}: {payload}")


class HttpNotifier:
    """POSTs each event to the real-time hub's broadcast endpoint."""

    def __init__(self, url, timeout=5):
        self.url = url
        self.timeout = timeout

    def publish(self, event, payload):
        resp = requests.post(
            self.url,
            json={"event": event, "data": payload},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        logger.debug(f"Broadcast {event} ({resp.status_code})")


def build_notifier(config):
    url = config.get("REALTIME_HUB_URL")
    if url:
        return HttpNotifier(url, timeout=config.get("COLLABORATOR_TIMEOUT", 5))
    return LogNotifier()
