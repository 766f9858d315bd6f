"""User-facing notifications for exchange outcomes."""

from cleenswap.notifications.feed import Notification, NotificationFeed, NotificationLevel

__all__ = ["Notification", "NotificationFeed", "NotificationLevel"]
