"""Notification and presentation-publishing collaborators."""

from __future__ import annotations

import itertools
import logging
from typing import Protocol

import httpx

from raidplanner.domain.models import RaidPresentation

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, destination: str, message: str) -> bool: ...


class PresentationPublisher(Protocol):
    def publish(self, presentation: RaidPresentation) -> tuple[str, str]: ...

    def update(self, channel: str, message: str, presentation: RaidPresentation) -> None: ...

    def retract(self, channel: str, message: str, title: str) -> None: ...


class LogNotifier:
    """Writes notifications to the log instead of delivering them."""

    def send(self, destination: str, message: str) -> bool:
        logger.info("Notification to %s: %s", destination, message)
        return True


class WebhookNotifier:
    """Delivers notifications by POSTing ``{"content": ...}`` to a webhook.

    *destination* is used as the URL when it looks like one; otherwise the
    default webhook URL is used. Delivery is fire-and-forget: failures are
    logged and reported as ``False``.
    """

    def __init__(self, default_url: str, client: httpx.Client | None = None) -> None:
        self.default_url = default_url
        self.client = client or httpx.Client(timeout=10.0)

    def send(self, destination: str, message: str) -> bool:
        url = destination if destination.startswith("http") else self.default_url
        if not url:
            logger.warning("No webhook URL for destination %s, dropping message", destination)
            return False
        try:
            r = self.client.post(url, json={"content": message[:2000]})
            r.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Notification to %s failed: %s", destination, exc)
            return False
        return True


class LogPublisher:
    """Publishes presentations to the log under synthetic message handles."""

    def __init__(self, channel: str = "raids") -> None:
        self.channel = channel
        self._ids = itertools.count(1)

    def publish(self, presentation: RaidPresentation) -> tuple[str, str]:
        message_id = str(next(self._ids))
        logger.info(
            "Published %s as %s/%s\n%s",
            presentation.title,
            self.channel,
            message_id,
            presentation.as_text(),
        )
        return self.channel, message_id

    def update(self, channel: str, message: str, presentation: RaidPresentation) -> None:
        logger.info("Updated %s/%s\n%s", channel, message, presentation.as_text())

    def retract(self, channel: str, message: str, title: str) -> None:
        logger.info("Marked %s/%s as CANCELLED: %s", channel, message, title)
