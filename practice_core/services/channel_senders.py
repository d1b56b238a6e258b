"""Channel sender interface + webhook implementation.

In-app delivery goes through the read model and has no sender. Email, SMS
and push are handed to an external relay, one sender per channel.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from practice_core.core.config import Settings
from practice_core.db.enums import Channel
from practice_core.schemas.notifications import NotificationRead


logger = logging.getLogger(__name__)


class ChannelSender(Protocol):
    channel: Channel

    def send(self, notification: NotificationRead) -> bool:
        """Deliver one notification. False (or an exception) means failure."""


class WebhookChannelSender:
    """POSTs the notification as JSON to a relay URL."""

    def __init__(
        self,
        channel: Channel,
        url: str,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ):
        self.channel = channel
        self._url = url
        self._client = client
        self._timeout = timeout

    def _payload(self, notification: NotificationRead) -> dict:
        return {
            "channel": self.channel.value,
            "notification": notification.model_dump(mode="json"),
        }

    def send(self, notification: NotificationRead) -> bool:
        if self._client is not None:
            response = self._client.post(self._url, json=self._payload(notification))
        else:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(self._url, json=self._payload(notification))
        if not response.is_success:
            logger.warning(
                "%s relay rejected notification %s: HTTP %s",
                self.channel.value,
                notification.id,
                response.status_code,
            )
            return False
        return True


def build_channel_senders(settings: Settings) -> dict[Channel, ChannelSender]:
    """Senders for every channel with a configured relay URL."""
    urls = {
        Channel.EMAIL: settings.NOTIFY_EMAIL_WEBHOOK_URL,
        Channel.SMS: settings.NOTIFY_SMS_WEBHOOK_URL,
        Channel.PUSH: settings.NOTIFY_PUSH_WEBHOOK_URL,
    }
    return {
        channel: WebhookChannelSender(channel, url, timeout=settings.CHANNEL_TIMEOUT_SECONDS)
        for channel, url in urls.items()
        if url
    }
