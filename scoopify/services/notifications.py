"""
Outbound notification adapters.

Delivery is best-effort: callers go through ``dispatch_events`` which logs and
drops failures.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aiohttp
import structlog

from scoopify.core.config import settings
from scoopify.core.exceptions import ExternalServiceError

logger = structlog.get_logger(__name__)


class Notifier(ABC):
    """Sends a templated message to a user."""

    @abstractmethod
    async def notify(self, user_id: str, template_kind, payload: Dict[str, Any]) -> None:
        ...


class LogNotifier(Notifier):
    """Writes notifications to the structured log."""

    async def notify(self, user_id: str, template_kind, payload: Dict[str, Any]) -> None:
        logger.info(
            "Notification",
            user_id=user_id,
            template=getattr(template_kind, "value", template_kind),
            payload=payload
        )


class WebhookNotifier(Notifier):
    """Posts notifications as JSON to an HTTP endpoint (email/SMS relay)."""

    def __init__(self, url: str, timeout_seconds: float = 10.0):
        self.url = url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def notify(self, user_id: str, template_kind, payload: Dict[str, Any]) -> None:
        body = {
            "user_id": user_id,
            "template": getattr(template_kind, "value", template_kind),
            "payload": payload,
        }
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.url, json=body) as response:
                    if response.status >= 400:
                        text = await response.text()
                        raise ExternalServiceError(
                            "Notification webhook rejected the message",
                            {"status": response.status, "body": text[:500]}
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExternalServiceError(
                "Notification webhook unreachable",
                {"url": self.url, "error": str(e)}
            )

        logger.debug("Notification delivered", user_id=user_id, template=body["template"])


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Get the process-wide notifier."""
    global _notifier
    if _notifier is None:
        if settings.notification_webhook_url:
            _notifier = WebhookNotifier(settings.notification_webhook_url)
        else:
            _notifier = LogNotifier()
    return _notifier


def set_notifier(notifier: Optional[Notifier]) -> None:
    """Replace the process-wide notifier (None restores the configured one)."""
    global _notifier
    _notifier = notifier
