"""Spreadsheet mirror — pushes member account rows to the Sheets web app.

The mirror is a read-only copy for staff; the database stays the source
of truth. A failed push leaves the account at mirror_sync_status=pending
and the sync sweep retries it.
"""

import logging

import requests

logger = logging.getLogger(__name__)


class LogMirror:
    """Used when no mirror URL is configured. Every push succeeds."""

    def sync_member(self, row):
        logger.info(f"[mirror] member {row.get('memberId')}: {row}")
        return True


class SheetsMirror:
    """Apps Script web app endpoint accepting one member row per request."""

    def __init__(self, url, timeout=5):
        self.url = url
        self.timeout = timeout

    def sync_member(self, row):
        resp = requests.post(
            self.url,
            json={"action": "upsertMember", "member": row},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        body = resp.json() if resp.content else {}
        if body.get("success") is False:
            raise RuntimeError(body.get("error") or "mirror rejected the row")
        return True


def build_mirror(config):
    url = config.get("SHEETS_MIRROR_URL")
    if url:
        return SheetsMirror(url, timeout=config.get("COLLABORATOR_TIMEOUT", 5))
    return LogMirror()
