"""Discord alerting system."""

from datetime import datetime
from typing import Optional

import httpx
from loguru import logger

from ..storage.models import ChangeType
from .filters import NotificationPriority
from .notifier import Notification


class DiscordNotifier:
    """Send grouped change notifications to Discord via webhook."""

    MAX_FIELDS = 10

    COLORS = {
        NotificationPriority.TIME_SENSITIVE: 0x00FF00,  # Green
        NotificationPriority.ACTIVE: 0xFFFF00,  # Yellow
        NotificationPriority.PASSIVE: 0x808080,  # Grey
    }

    LABELS = {
        ChangeType.PRICE_DROPPED: "Price drop",
        ChangeType.PRICE_INCREASED: "Price increase",
        ChangeType.BACK_IN_STOCK: "Back in stock",
        ChangeType.OUT_OF_STOCK: "Out of stock",
        ChangeType.NEW_PRODUCT: "New product",
        ChangeType.PRODUCT_REMOVED: "Removed",
        ChangeType.IMAGES_CHANGED: "Images changed",
    }

    def __init__(self, webhook_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize Discord notifier.

        Args:
            webhook_url: Discord webhook URL
            transport: Optional httpx transport, used in tests
        """
        self.webhook_url = webhook_url
        self.transport = transport

    @property
    def name(self) -> str:
        return "discord"

    async def deliver(self, notification: Notification) -> bool:
        """Post one notification as a rich embed.

        Args:
            notification: Grouped notification for one store

        Returns:
            True if the webhook accepted it
        """
        if not self.webhook_url:
            logger.warning("Discord webhook URL not configured")
            return False

        try:
            payload = {"embeds": [self._create_embed(notification)]}

            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(self.webhook_url, json=payload, timeout=10)
                response.raise_for_status()

            logger.info(f"Discord notification sent: {notification.title}")
            return True

        except httpx.HTTPError as e:
            logger.error(f"Failed to send Discord notification: {e}")
            return False

    def _create_embed(self, notification: Notification) -> dict:
        fields = []
        for event in notification.events[: self.MAX_FIELDS]:
            name = f"{self.LABELS[event.change_type]}: {event.product_title}"
            if event.variant_title and event.variant_title != "Default Title":
                name += f" ({event.variant_title})"

            if event.old_value and event.new_value and not event.change_type == ChangeType.IMAGES_CHANGED:
                value = f"{event.old_value} → {event.new_value}"
            else:
                value = event.new_value or "-"

            fields.append({"name": name[:256], "value": value[:1024], "inline": False})

        remaining = len(notification.events) - self.MAX_FIELDS
        if remaining > 0:
            fields.append({"name": "…", "value": f"and {remaining} more", "inline": False})

        return {
            "title": notification.title,
            "description": notification.body,
            "color": self.COLORS[notification.priority],
            "fields": fields,
            "footer": {"text": "Storewatch"},
            "timestamp": datetime.utcnow().isoformat(),
        }
