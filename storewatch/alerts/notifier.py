"""Grouping and dispatch of change notifications."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from loguru import logger

from ..storage.models import ChangeEventDTO, ChangeType
from .filters import NotificationFilter, NotificationPriority, determine_priority


@dataclass(frozen=True)
class Notification:
    """One user-facing notification covering a store's changes."""

    title: str
    body: str
    priority: NotificationPriority
    store_id: Optional[str] = None
    events: Sequence[ChangeEventDTO] = field(default_factory=tuple)


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def format_body(events: Sequence[ChangeEventDTO]) -> str:
    """Summarize a group of events, e.g. ``2 price drops, 1 back in stock``."""
    counts = Counter(e.change_type for e in events)
    parts = []

    count = counts[ChangeType.PRICE_DROPPED]
    if count:
        parts.append(f"{count} price {_plural(count, 'drop', 'drops')}")
    count = counts[ChangeType.PRICE_INCREASED]
    if count:
        parts.append(f"{count} price {_plural(count, 'increase', 'increases')}")
    count = counts[ChangeType.BACK_IN_STOCK]
    if count:
        parts.append(f"{count} back in stock")
    count = counts[ChangeType.OUT_OF_STOCK]
    if count:
        parts.append(f"{count} out of stock")
    count = counts[ChangeType.NEW_PRODUCT]
    if count:
        parts.append(f"{count} new {_plural(count, 'product', 'products')}")
    count = counts[ChangeType.PRODUCT_REMOVED]
    if count:
        parts.append(f"{count} {_plural(count, 'product', 'products')} removed")

    if not parts:
        return f"{len(events)} {_plural(len(events), 'change', 'changes')} detected"
    return ", ".join(parts)


class Notifier:
    """Filters a sync's events and delivers one notification per store.

    Channels expose ``name`` and ``async deliver(notification) -> bool``.
    Delivery problems are logged and never propagate to the caller.
    """

    def __init__(self, config: Optional[Dict] = None, channels: Optional[List] = None):
        """Initialize notifier.

        Args:
            config: The ``notifications`` configuration section
            channels: Delivery channels
        """
        config = config or {}
        self.enabled = config.get("enabled", True)
        self.filter = NotificationFilter(config)
        self.channels = list(channels or [])
        self.sent: List[Notification] = []

    def build(self, events: Sequence[ChangeEventDTO]) -> List[Notification]:
        """Group events by store and apply filters."""
        grouped: Dict[Optional[str], List[ChangeEventDTO]] = {}
        for event in events:
            grouped.setdefault(event.store_id, []).append(event)

        notifications = []
        for store_id, store_events in grouped.items():
            filtered = self.filter.apply(store_events)
            if not filtered:
                continue
            notifications.append(
                Notification(
                    title=filtered[0].store_name or "Storewatch",
                    body=format_body(filtered),
                    priority=determine_priority(filtered),
                    store_id=store_id,
                    events=tuple(filtered),
                )
            )
        return notifications

    async def send(self, events: Sequence[ChangeEventDTO]) -> int:
        """Deliver notifications for the given events.

        Returns:
            Number of notifications accepted by at least one channel
        """
        if not self.enabled or not events:
            return 0

        delivered = 0
        for notification in self.build(events):
            self.sent.append(notification)
            if not self.channels:
                logger.info(f"Notification [{notification.title}] {notification.body}")
                continue

            accepted = False
            for channel in self.channels:
                try:
                    accepted = await channel.deliver(notification) or accepted
                except Exception as e:
                    logger.error(f"{channel.name} notification failed: {e}")
            if accepted:
                delivered += 1

        return delivered
