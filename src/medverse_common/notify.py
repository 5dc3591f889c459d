"""
Notification sinks for user-facing toasts.

The cache coordinator reports clearing progress, success and failure through a
``NotificationSink``. Delivery is fire-and-forget: a sink must never raise into
the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

VARIANT_DEFAULT = "default"
VARIANT_DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Toast:
    """A short user-facing notification."""

    title: str
    description: str = ""
    variant: str = VARIANT_DEFAULT

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class NotificationSink(Protocol):
    """Protocol for notification sinks."""

    def notify(self, toast: Toast) -> None:
        """Deliver a toast without blocking the caller."""
        ...


class LoggingNotifier:
    """Writes toasts to the application log."""

    def __init__(self, logger_name: str = "medverse.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    def notify(self, toast: Toast) -> None:
        level = logging.WARNING if toast.variant == VARIANT_DESTRUCTIVE else logging.INFO
        self._logger.log(level, "%s: %s", toast.title, toast.description)


class RecordingNotifier:
    """Keeps every toast in memory, used by monitors and tests."""

    def __init__(self) -> None:
        self.toasts: list[Toast] = []

    def notify(self, toast: Toast) -> None:
        self.toasts.append(toast)

    @property
    def titles(self) -> list[str]:
        return [toast.title for toast in self.toasts]


class WebhookNotifier:
    """Posts toasts as JSON to an HTTP endpoint."""

    def __init__(
        self,
        config: dict[str, Any],
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the webhook notifier.

        Args:
            config: Webhook configuration with keys:
                - url: Webhook URL
                - timeout: Request timeout in seconds (default: 10)
                - headers: Additional HTTP headers (optional)
            transport: Optional httpx transport override
        """
        self.url: str = config.get("url", "")
        self.timeout = config.get("timeout", 10)
        self.headers = config.get("headers", {})
        self._transport = transport
        self._pending: set[asyncio.Task[bool]] = set()

        if not self.url or not isinstance(self.url, str):
            raise ValueError("Webhook URL is required")

        parsed = urlparse(self.url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid webhook URL: {self.url}")

    async def send(self, toast: Toast) -> bool:
        """
        Send a toast to the webhook.

        Returns:
            True if the webhook accepted the notification
        """
        payload = {
            **toast.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "component": "cache-manager",
        }
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "MedVerse/1.0 (Cache Manager)",
            **self.headers,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Failed to send webhook notification: %s", e)
            return False

        logger.debug("Webhook notification sent to %s", self.url)
        return True

    def notify(self, toast: Toast) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.send(toast))
            return
        task = loop.create_task(self.send(toast))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def aclose(self) -> None:
        """Wait for in-flight deliveries."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


class CompositeNotifier:
    """Fans a toast out to several sinks; one failing sink does not stop the others."""

    def __init__(self, sinks: list[NotificationSink] | None = None) -> None:
        self.sinks: list[NotificationSink] = list(sinks or [])

    def add(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    def notify(self, toast: Toast) -> None:
        for sink in self.sinks:
            try:
                sink.notify(toast)
            except Exception as e:  # noqa: BLE001
                logger.warning("Notification sink %s failed: %s", type(sink).__name__, e)

    async def aclose(self) -> None:
        """Wait for every sink that delivers in the background."""
        for sink in self.sinks:
            aclose = getattr(sink, "aclose", None)
            if aclose is not None:
                await aclose()


def create_notifier(config: dict[str, Any]) -> CompositeNotifier:
    """
    Build a notifier from configuration.

    Args:
        config: Mapping with optional ``log`` and ``webhook`` sections, each with
            an ``enabled`` flag.
    """
    notifier = CompositeNotifier()

    if config.get("log", {}).get("enabled", True):
        notifier.add(LoggingNotifier())

    webhook_config = config.get("webhook", {})
    if webhook_config.get("enabled", False):
        try:
            notifier.add(WebhookNotifier(webhook_config))
            logger.info("Webhook notifier initialized")
        except ValueError as e:
            logger.warning("Failed to initialize webhook notifier: %s", e)

    if not notifier.sinks:
        logger.warning("No notification sinks configured")
    return notifier


__all__ = [
    "CompositeNotifier",
    "LoggingNotifier",
    "NotificationSink",
    "RecordingNotifier",
    "Toast",
    "VARIANT_DEFAULT",
    "VARIANT_DESTRUCTIVE",
    "WebhookNotifier",
    "create_notifier",
]
