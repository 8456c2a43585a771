"""Best-effort account notifications (welcome, password recovery).

Delivery goes to NOTIFY_WEBHOOK_URL (a mail relay) when configured; otherwise
the notification is only logged. Failures are logged and reported as False,
never raised: callers treat delivery as fire-and-forget.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

if TYPE_CHECKING:
    from backoffice.core.config import Settings

logger = logging.getLogger(__name__)

EVENT_WELCOME = "account.welcome"
EVENT_PASSWORD_RECOVERY = "account.password_recovery"


def build_reset_link(callback_base_url: str, token: str) -> str:
    """Reset link the frontend handles: <base>/reset-password?token=<token>."""
    return f"{callback_base_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"


class Notifier:
    """Sends account notifications through the configured relay."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        self._webhook_url = settings.NOTIFY_WEBHOOK_URL
        self._timeout = settings.NOTIFY_REQUEST_TIMEOUT_SEC
        self._client = client

    def send_welcome(self, email: str, username: str) -> bool:
        return self._deliver(
            EVENT_WELCOME,
            {"to": email, "username": username},
        )

    def send_password_recovery(
        self, email: str, token: str, callback_base_url: str, expires_in_minutes: int
    ) -> bool:
        return self._deliver(
            EVENT_PASSWORD_RECOVERY,
            {
                "to": email,
                "reset_link": build_reset_link(callback_base_url, token),
                "expires_in_minutes": expires_in_minutes,
            },
        )

    def _deliver(self, event: str, payload: dict[str, Any]) -> bool:
        if not self._webhook_url:
            # Payload may hold a reset link; log the event only.
            logger.info("Notification not delivered (no relay configured)", extra={"event": event})
            return True
        body = {"event": event, **payload}
        try:
            if self._client is not None:
                resp = self._client.post(self._webhook_url, json=body, timeout=self._timeout)
            else:
                with httpx.Client() as client:
                    resp = client.post(self._webhook_url, json=body, timeout=self._timeout)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Notification delivery failed",
                extra={"event": event, "reason": str(e)[:200]},
            )
            return False
        logger.info("Notification delivered", extra={"event": event})
        return True
