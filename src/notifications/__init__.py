"""
ReviewSight Notifications
=========================

Notification sink for collection session events.
"""

from .webhook_notifier import WebhookNotifier, EVENT_PROGRESS, EVENT_COMPLETE, EVENT_ERROR

__all__ = ["WebhookNotifier", "EVENT_PROGRESS", "EVENT_COMPLETE", "EVENT_ERROR"]
