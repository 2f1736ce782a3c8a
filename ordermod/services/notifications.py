"""
Operator notification sinks.

Notifications are fire-and-forget: a failed delivery is logged and never
affects the modification flow.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx

from ordermod.config import get_settings
from ordermod.services.ports import NotificationSink

logger = logging.getLogger(__name__)

_TIMEOUT = httpx.Timeout(10.0)


class LoggingNotifier:
    async def error(self, message: str) -> None:
        logger.error("Operator notification: %s", message)


class WebhookNotifier:
    """POSTs ``{"level": "error", "message": ...}`` to a configured URL."""

    def __init__(self, url: str) -> None:
        self.url = url

    async def error(self, message: str) -> None:
        logger.error("Operator notification: %s", message)
        payload = {
            "level": "error",
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT) as client:
                resp = await client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Notification webhook unreachable url=%s: %s", self.url, exc)
            return
        if not resp.is_success:
            logger.warning(
                "Notification webhook failed status=%d body=%s",
                resp.status_code, resp.text[:300],
            )


def build_notifier(url: Optional[str] = None) -> NotificationSink:
    url = url if url is not None else get_settings().notification_webhook_url
    if url:
        return WebhookNotifier(url)
    return LoggingNotifier()
