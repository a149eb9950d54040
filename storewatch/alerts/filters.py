"""Notification filters, price thresholds and priority routing."""

from decimal import Decimal
from enum import Enum, IntEnum
from typing import Dict, Iterable, List, Optional

from ..storage.models import ChangeEventDTO, ChangeMagnitude, ChangeType


class PriceThreshold(str, Enum):
    """Minimum price change a user wants to hear about."""

    ANY = "any"
    DOLLARS_5 = "dollars5"
    DOLLARS_10 = "dollars10"
    DOLLARS_25 = "dollars25"
    PERCENT_10 = "percent10"
    PERCENT_25 = "percent25"

    @property
    def min_dollars(self) -> Optional[Decimal]:
        return {
            PriceThreshold.DOLLARS_5: Decimal("5"),
            PriceThreshold.DOLLARS_10: Decimal("10"),
            PriceThreshold.DOLLARS_25: Decimal("25"),
        }.get(self)

    @property
    def min_percent(self) -> Optional[int]:
        return {PriceThreshold.PERCENT_10: 10, PriceThreshold.PERCENT_25: 25}.get(self)

    def is_satisfied(self, event: ChangeEventDTO) -> bool:
        """Non-price events always pass."""
        if not event.change_type.is_price_change or self == PriceThreshold.ANY:
            return True

        if self.min_dollars is not None:
            if event.price_change is None:
                return True
            return abs(event.price_change) >= self.min_dollars

        # Magnitude stands in for the percentage: medium covers 10-25%
        if event.magnitude == ChangeMagnitude.LARGE:
            return True
        if event.magnitude == ChangeMagnitude.MEDIUM:
            return self.min_percent <= 10
        return False


class NotificationPriority(IntEnum):
    PASSIVE = 0
    ACTIVE = 1
    TIME_SENSITIVE = 2


def priority_for(event: ChangeEventDTO) -> NotificationPriority:
    """Priority of a single event. Restocks are always time sensitive."""
    if event.change_type == ChangeType.BACK_IN_STOCK:
        return NotificationPriority.TIME_SENSITIVE
    if event.change_type == ChangeType.PRICE_DROPPED:
        if event.magnitude == ChangeMagnitude.LARGE:
            return NotificationPriority.TIME_SENSITIVE
        if event.magnitude == ChangeMagnitude.MEDIUM:
            return NotificationPriority.ACTIVE
        return NotificationPriority.PASSIVE
    if event.change_type == ChangeType.IMAGES_CHANGED:
        return NotificationPriority.PASSIVE
    return NotificationPriority.ACTIVE


def determine_priority(events: Iterable[ChangeEventDTO]) -> NotificationPriority:
    """Highest priority in a group of events."""
    return max((priority_for(e) for e in events), default=NotificationPriority.PASSIVE)


class NotificationFilter:
    """Applies per-type toggles and price thresholds from configuration."""

    def __init__(self, config: Optional[Dict] = None):
        config = config or {}
        self.types: Dict[str, bool] = config.get("types", {})
        self.drop_threshold = PriceThreshold(config.get("price_drop_threshold", "any"))
        self.increase_threshold = PriceThreshold(config.get("price_increase_threshold", "any"))

    def is_type_enabled(self, change_type: ChangeType) -> bool:
        # Everything except image changes is on unless configured otherwise
        return self.types.get(change_type.value, change_type != ChangeType.IMAGES_CHANGED)

    def meets_threshold(self, event: ChangeEventDTO) -> bool:
        if event.change_type == ChangeType.PRICE_DROPPED:
            return self.drop_threshold.is_satisfied(event)
        if event.change_type == ChangeType.PRICE_INCREASED:
            return self.increase_threshold.is_satisfied(event)
        return True

    def apply(self, events: Iterable[ChangeEventDTO]) -> List[ChangeEventDTO]:
        return [e for e in events if self.is_type_enabled(e.change_type) and self.meets_threshold(e)]
