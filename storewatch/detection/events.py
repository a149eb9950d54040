"""Change event emission from diff results."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Set, Tuple

from ..storage.models import ChangeEventDTO, ChangeMagnitude, ChangeType
from .diff import ChangeDimension, DiffResult, ProductUpdate, VariantChange

MEDIUM_THRESHOLD = Decimal("0.10")
LARGE_THRESHOLD = Decimal("0.25")


def classify_magnitude(old_price: Decimal, new_price: Decimal) -> ChangeMagnitude:
    """Classify a price change by its relative delta.

    Boundaries are inclusive on the upper class: exactly 10% is medium and
    exactly 25% is large. Any change off a zero base is large.
    """
    if old_price == 0:
        return ChangeMagnitude.LARGE

    relative = abs(new_price - old_price) / abs(old_price)
    if relative >= LARGE_THRESHOLD:
        return ChangeMagnitude.LARGE
    if relative >= MEDIUM_THRESHOLD:
        return ChangeMagnitude.MEDIUM
    return ChangeMagnitude.SMALL


def format_price(price: Optional[Decimal]) -> Optional[str]:
    if price is None:
        return None
    return f"${price:,.2f}"


@dataclass
class EmitResult:
    """Events for one store plus the variants that need a snapshot.

    ``snapshot_targets`` holds ``(product_external_id, variant_external_id)``
    pairs in emission order, each listed once.
    """

    events: List[ChangeEventDTO] = field(default_factory=list)
    snapshot_targets: List[Tuple[str, str]] = field(default_factory=list)
    _seen_targets: Set[Tuple[str, str]] = field(default_factory=set, repr=False, compare=False)

    def _target(self, product_id: str, variant_id: str):
        key = (product_id, variant_id)
        if key not in self._seen_targets:
            self._seen_targets.add(key)
            self.snapshot_targets.append(key)


class ChangeEventEmitter:
    """Turns a DiffResult into ordered, detached ChangeEventDTOs.

    Events are built without a store reference; the store is attached when
    the batch is committed. Order within a store is: new products, updates
    in feed order, removals.
    """

    def emit(self, diff: DiffResult, occurred_at: Optional[datetime] = None) -> EmitResult:
        """Build change events for one diff.

        Args:
            diff: Diff for a single store
            occurred_at: Logical sync timestamp shared by every event

        Returns:
            EmitResult with events and snapshot targets
        """
        if occurred_at is None:
            occurred_at = datetime.utcnow()

        result = EmitResult()

        for product in diff.added:
            result.events.append(
                ChangeEventDTO(
                    occurred_at=occurred_at,
                    change_type=ChangeType.NEW_PRODUCT,
                    product_title=product.title,
                    new_value=format_price(product.sorted_variants[0].price) if product.variants else None,
                    product_external_id=product.id,
                )
            )
            for variant in product.unique_variants:
                result._target(product.id, variant.id)

        for update in diff.updated:
            self._emit_update(update, occurred_at, result)

        for state in diff.removed:
            result.events.append(
                ChangeEventDTO(
                    occurred_at=occurred_at,
                    change_type=ChangeType.PRODUCT_REMOVED,
                    product_title=state.title,
                    product_external_id=state.external_id,
                )
            )
            for variant in state.variants:
                result._target(state.external_id, variant.external_id)

        return result

    def _emit_update(self, update: ProductUpdate, occurred_at: datetime, result: EmitResult):
        product = update.product
        # The feed is authoritative for display fields
        title = product.title

        for change in update.variant_changes:
            if change.dimension == ChangeDimension.PRICE:
                event = self._price_event(change, title, occurred_at)
            else:
                event = self._availability_event(change, title, occurred_at)
            result.events.append(event.model_copy(update={"product_external_id": product.id}))
            result._target(product.id, change.variant_id)

        if update.image_change is not None:
            result.events.append(
                ChangeEventDTO(
                    occurred_at=occurred_at,
                    change_type=ChangeType.IMAGES_CHANGED,
                    product_title=title,
                    old_value="\n".join(update.image_change.old_urls),
                    new_value="\n".join(update.image_change.new_urls),
                    product_external_id=product.id,
                )
            )
            for variant in product.unique_variants:
                result._target(product.id, variant.id)

    def _price_event(self, change: VariantChange, title: str, occurred_at: datetime) -> ChangeEventDTO:
        old_price = change.old_value
        new_price = change.new_value
        delta = new_price - old_price

        return ChangeEventDTO(
            occurred_at=occurred_at,
            change_type=ChangeType.PRICE_DROPPED if delta < 0 else ChangeType.PRICE_INCREASED,
            product_title=title,
            variant_title=change.variant_title,
            old_value=format_price(old_price),
            new_value=format_price(new_price),
            price_change=delta,
            magnitude=classify_magnitude(old_price, new_price),
            variant_external_id=change.variant_id,
        )

    def _availability_event(
        self, change: VariantChange, title: str, occurred_at: datetime
    ) -> ChangeEventDTO:
        return ChangeEventDTO(
            occurred_at=occurred_at,
            change_type=ChangeType.BACK_IN_STOCK if change.new_value else ChangeType.OUT_OF_STOCK,
            product_title=title,
            variant_title=change.variant_title,
            old_value="In stock" if change.old_value else "Out of stock",
            new_value="In stock" if change.new_value else "Out of stock",
            variant_external_id=change.variant_id,
        )
