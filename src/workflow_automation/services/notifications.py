"""Notification delivery for send_notification actions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import httpx

from ..core.config import NotificationConfig
from ..core.logger import get_logger

logger = get_logger("services.notifications")


class Notifier(ABC):
    """Delivers user notifications."""

    @abstractmethod
    def send(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Deliver a notification and return delivery details."""


class LogNotifier(Notifier):
    """Write notifications to the application log."""

    def send(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        logger.info("Notification [%s] for %s: %s - %s", notification_type, user_id, title, message)
        return {"channel": "log", "user_id": user_id, "type": notification_type}


class WebhookNotifier(Notifier):
    """POST notifications as JSON to a webhook endpoint."""

    def __init__(self, config: NotificationConfig, client: httpx.Client | None = None) -> None:
        if not config.webhook_url:
            raise ValueError("WebhookNotifier requires a webhook_url")
        self.config = config
        self._client = client or httpx.Client(timeout=config.timeout, headers=config.headers)

    def __enter__(self) -> WebhookNotifier:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def send(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        payload = {
            "user_id": user_id,
            "type": notification_type,
            "title": title,
            "message": message,
            "sent_at": datetime.now().isoformat(),
        }
        response = self._client.post(
            self.config.webhook_url,
            json=payload,
            timeout=timeout if timeout is not None else self.config.timeout,
        )
        response.raise_for_status()
        logger.debug("Notification webhook responded %s", response.status_code)
        return {"channel": "webhook", "user_id": user_id, "status_code": response.status_code}


def create_notifier(config: NotificationConfig) -> Notifier:
    """Build the notifier selected by configuration."""
    if config.channel == "webhook":
        return WebhookNotifier(config)
    return LogNotifier()
