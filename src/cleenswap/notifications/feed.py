"""In-process notification feed.

Exchange outcomes are surfaced to the user as short-lived notifications:
each one can be dismissed and disappears on its own after a fixed display
duration.
"""

import itertools
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from cleenswap.config import get_settings

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class Notification:
    id: int
    message: str
    level: NotificationLevel
    created_at: float
    expires_at: float

    def is_active(self, now: float) -> bool:
        return now < self.expires_at


def truncate_hash(tx_hash: str) -> str:
    """Shorten a transaction hash to 0x1234...abcd."""
    if len(tx_hash) <= 12:
        return tx_hash
    return f"{tx_hash[:6]}...{tx_hash[-4:]}"


def format_amount(amount) -> str:
    """Format amount with thousands separators and no trailing zeros."""
    value = Decimal(amount)
    if value == value.to_integral_value():
        return f"{int(value):,}"
    return f"{value.normalize():,f}"


class NotificationFeed:
    """Per-user notifications with auto-expiry."""

    def __init__(
        self,
        display_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the feed.

        Args:
            display_seconds: Lifetime of each notification (settings default)
            clock: Monotonic time source, injectable for tests
        """
        if display_seconds is None:
            display_seconds = get_settings().notification_display_seconds
        self.display_seconds = display_seconds
        self._clock = clock
        self._ids = itertools.count(1)
        self._items: dict[str, list[Notification]] = {}

    def _prune(self, user_id: str, now: float) -> list[Notification]:
        """Drop the user's expired notifications and return the rest."""
        items = [n for n in self._items.get(user_id, []) if n.is_active(now)]
        if items:
            self._items[user_id] = items
        else:
            self._items.pop(user_id, None)
        return items

    def _sweep(self, now: float) -> None:
        expired = 0
        for user_id in list(self._items):
            before = len(self._items[user_id])
            expired += before - len(self._prune(user_id, now))
        if expired:
            logger.debug(f"Pruned {expired} expired notification(s)")

    def push(self, user_id: str, message: str, level: NotificationLevel) -> Notification:
        """Add a notification; expired ones of every user are dropped first."""
        now = self._clock()
        self._sweep(now)
        notification = Notification(
            id=next(self._ids),
            message=message,
            level=level,
            created_at=now,
            expires_at=now + self.display_seconds,
        )
        self._items.setdefault(user_id, []).append(notification)
        return notification

    def success(self, user_id: str, message: str) -> Notification:
        return self.push(user_id, message, NotificationLevel.SUCCESS)

    def error(self, user_id: str, message: str) -> Notification:
        return self.push(user_id, message, NotificationLevel.ERROR)

    def active(self, user_id: str) -> list[Notification]:
        """Visible notifications; expired ones are pruned."""
        return list(self._prune(user_id, self._clock()))

    def dismiss(self, user_id: str, notification_id: int) -> bool:
        """Remove an active notification. False if unknown or already expired."""
        items = self._prune(user_id, self._clock())
        remaining = [n for n in items if n.id != notification_id]
        if len(remaining) == len(items):
            return False
        if remaining:
            self._items[user_id] = remaining
        else:
            self._items.pop(user_id, None)
        return True

    def pending_count(self) -> int:
        """Notifications held in memory, expired or not."""
        return sum(len(items) for items in self._items.values())

    # Exchange messages

    def notify_exchange_complete(
        self,
        user_id: str,
        source_amount: int,
        source_symbol: str,
        destination_amount: int,
        token_name: str,
        tx_hash: str,
    ) -> Notification:
        message = (
            f"Successfully exchanged {format_amount(source_amount)} {source_symbol} for "
            f"{format_amount(destination_amount)} {token_name}! Tx: {truncate_hash(tx_hash)}"
        )
        return self.success(user_id, message)

    def notify_exchange_failed(self, user_id: str, message: str) -> Notification:
        return self.error(user_id, message)
