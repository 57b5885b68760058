"""
Webhook Notifier for ReviewSight
================================

Pushes collection session events to an HTTP webhook.

Configuration:
    NOTIFICATION_WEBHOOK_URL: Webhook receiving JSON events (from .env)
    ENABLE_NOTIFICATIONS: "true" to enable notifications (from .env)

Events:
    collection_progress : every progress update (observer form)
    collection_complete : terminal, with a result summary
    collection_error    : terminal, with the cause

Delivery failures are logged and never raised: the pipeline does not
depend on the sink.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from ..data.config import get_settings

logger = logging.getLogger(__name__)

EVENT_PROGRESS = "collection_progress"
EVENT_COMPLETE = "collection_complete"
EVENT_ERROR = "collection_error"


class WebhookNotifier:
    """
    Sends session events to a webhook.

    Usable directly (notify) or as an async progress observer
    (tracker.subscribe(session_id, notifier)).
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize webhook notifier.

        Args:
            webhook_url: Webhook URL (default: from NOTIFICATION_WEBHOOK_URL)
            enabled: Enable notifications (default: from ENABLE_NOTIFICATIONS)
            timeout: HTTP timeout in seconds
        """
        config = get_settings().notifications
        self.webhook_url = webhook_url or config.webhook_url
        self.enabled = enabled if enabled is not None else config.enabled
        self.timeout = timeout

        if self.enabled and not self.webhook_url:
            logger.warning("Notifications enabled but NOTIFICATION_WEBHOOK_URL not set")
            self.enabled = False

    def is_configured(self) -> bool:
        """Check if notifier is properly configured."""
        return bool(self.enabled and self.webhook_url)

    def notify(self, session_id: str, event_type: str, data: Dict[str, Any]) -> bool:
        """
        Send one event.

        Returns:
            True if the webhook accepted the event
        """
        if not self.is_configured():
            logger.debug("Notifications disabled or not configured")
            return False

        payload = {
            "sessionId": session_id,
            "type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data,
        }

        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            logger.debug(
                f"Notification sent: {event_type} for {session_id}",
                extra={"session_id": session_id, "event_type": event_type},
            )
            return True

        except requests.RequestException as e:
            logger.error(
                f"Failed to send {event_type} notification for {session_id}: {e}",
                extra={"session_id": session_id, "event_type": event_type},
            )
            return False

    def notify_complete(self, session_id: str, summary: Dict[str, Any]) -> bool:
        return self.notify(session_id, EVENT_COMPLETE, {"summary": summary})

    def notify_error(self, session_id: str, error: Dict[str, Any]) -> bool:
        return self.notify(session_id, EVENT_ERROR, {"error": error})

    async def __call__(self, progress: Any) -> bool:
        """Progress observer: posts off the event loop."""
        if not self.is_configured():
            return False
        return await asyncio.to_thread(
            self.notify, progress.session_id, EVENT_PROGRESS, progress.to_dict()
        )
