"""
Push Gateway — delivers device push notifications over HTTP.

Speaks the FCM legacy HTTP protocol:

    POST {PUSH_GATEWAY_URL}
    Authorization: key={PUSH_SERVER_KEY}
    {"registration_ids": [...], "notification": {...}, "data": {...}}

When PUSH_GATEWAY_URL is not configured the message is logged and
dropped (dev/test mode).  Delivery errors are returned, never raised:
push is fire-and-forget for every caller.
"""

from __future__ import annotations

import logging

import requests
from flask import current_app

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


class PushGateway:
    """HTTP push sender.  Pass a fake ``session`` in tests."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def use_session(self, session: requests.Session | None) -> None:
        self._session = session

    def send(self, tokens: list[str], title: str, body: str, data: dict | None = None) -> dict:
        """Send one message to a list of device tokens.

        Returns:
            {"sent": bool, "error": str | None}
        """
        if not tokens:
            return {"sent": False, "error": "no tokens"}

        url = current_app.config.get("PUSH_GATEWAY_URL")
        if not url:
            logger.info("Push gateway not configured; would send %r to %d device(s)", title, len(tokens))
            return {"sent": False, "error": "not configured"}

        payload = {
            "registration_ids": tokens,
            "notification": {"title": title, "body": body},
            # FCM data values must be strings
            "data": {k: str(v) for k, v in (data or {}).items()},
        }
        try:
            resp = self.session.post(
                url,
                json=payload,
                headers={"Authorization": f"key={current_app.config.get('PUSH_SERVER_KEY') or ''}"},
                timeout=current_app.config.get("PUSH_TIMEOUT", _DEFAULT_TIMEOUT),
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Push delivery failed: %s", exc)
            return {"sent": False, "error": str(exc)}
        return {"sent": True, "error": None}


# Module-level singleton
push_gateway = PushGateway()
