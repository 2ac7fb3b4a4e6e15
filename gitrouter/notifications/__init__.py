"""Slack review notifications with delivery ledger and retries."""

from gitrouter.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationError,
    NotificationTargetError,
    RetryPolicy,
)

__all__ = ["NotificationDispatcher", "NotificationError", "NotificationTargetError", "RetryPolicy"]
