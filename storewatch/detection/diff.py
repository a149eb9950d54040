"""Change detection between persisted catalog state and a fresh fetch."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

from loguru import logger

from ..storage.models import FetchedProduct, FetchedVariant, Product


@dataclass(frozen=True)
class VariantState:
    """Persisted variant values the diff compares against."""

    external_id: str
    title: str
    price: Decimal
    available: bool
    position: int = 0
    sku: Optional[str] = None
    compare_at_price: Optional[Decimal] = None


@dataclass(frozen=True)
class ProductState:
    """Detached copy of a persisted product and its variants."""

    external_id: str
    title: str
    variants: Tuple[VariantState, ...] = ()
    image_urls: Tuple[str, ...] = ()
    handle: str = ""
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    is_removed: bool = False

    @classmethod
    def from_model(cls, product: Product) -> "ProductState":
        return cls(
            external_id=product.external_id,
            title=product.title,
            handle=product.handle,
            vendor=product.vendor,
            product_type=product.product_type,
            image_urls=tuple(product.image_urls or ()),
            is_removed=product.is_removed,
            variants=tuple(
                VariantState(
                    external_id=v.external_id,
                    title=v.title,
                    sku=v.sku,
                    price=v.price,
                    compare_at_price=v.compare_at_price,
                    available=v.available,
                    position=v.position,
                )
                for v in product.variants
            ),
        )

    @classmethod
    def from_fetched(cls, product: FetchedProduct, is_removed: bool = False) -> "ProductState":
        return cls(
            external_id=product.id,
            title=product.title,
            handle=product.handle,
            vendor=product.vendor,
            product_type=product.product_type,
            image_urls=tuple(product.image_urls),
            is_removed=is_removed,
            variants=tuple(
                VariantState(
                    external_id=v.id,
                    title=v.title,
                    sku=v.sku,
                    price=v.price,
                    compare_at_price=v.compare_at_price,
                    available=v.available,
                    position=v.position,
                )
                for v in product.variants
            ),
        )


class ChangeDimension(str, Enum):
    PRICE = "price"
    AVAILABILITY = "availability"


@dataclass(frozen=True)
class VariantChange:
    """One changed dimension of one variant."""

    variant_id: str
    variant_title: str
    dimension: ChangeDimension
    old_value: Union[Decimal, bool]
    new_value: Union[Decimal, bool]


@dataclass(frozen=True)
class ImageChange:
    old_urls: Tuple[str, ...]
    new_urls: Tuple[str, ...]


@dataclass(frozen=True)
class ProductUpdate:
    """A product present on both sides whose persisted state must change."""

    product: FetchedProduct
    previous: ProductState
    variant_changes: Tuple[VariantChange, ...] = ()
    image_change: Optional[ImageChange] = None
    new_variants: Tuple[FetchedVariant, ...] = ()
    dropped_variant_ids: Tuple[str, ...] = ()
    revived: bool = False
    metadata_changed: bool = False

    @property
    def has_events(self) -> bool:
        return bool(self.variant_changes) or self.image_change is not None


@dataclass(frozen=True)
class DiffResult:
    added: Tuple[FetchedProduct, ...] = ()
    updated: Tuple[ProductUpdate, ...] = ()
    removed: Tuple[ProductState, ...] = ()
    unchanged_ids: Tuple[str, ...] = field(default=(), compare=False)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed)

    def summary(self) -> str:
        changes = sum(len(u.variant_changes) for u in self.updated)
        return (
            f"added={len(self.added)} updated={len(self.updated)} "
            f"removed={len(self.removed)} variant_changes={changes}"
        )


class DiffEngine:
    """Computes add/update/remove sets for one store.

    Products are matched by external product id and variants by external
    variant id within their product; titles and handles never participate
    in identity. A variant can yield a price change and an availability
    change in the same diff. Title or metadata-only edits produce an update
    with ``metadata_changed`` set and no variant changes.
    """

    def diff(
        self,
        persisted: Iterable[ProductState],
        fetched: Iterable[FetchedProduct],
    ) -> DiffResult:
        """Diff persisted state against the complete current feed.

        Args:
            persisted: Every stored product for the store, removed ones included
            fetched: Every product in the current feed, in feed order

        Returns:
            DiffResult
        """
        persisted_by_id: Dict[str, ProductState] = {}
        for state in persisted:
            persisted_by_id[state.external_id] = state

        fetched_by_id = self._index_fetched(fetched)

        added: List[FetchedProduct] = []
        updated: List[ProductUpdate] = []
        unchanged: List[str] = []

        for product_id, product in fetched_by_id.items():
            previous = persisted_by_id.get(product_id)
            if previous is None:
                added.append(product)
                continue

            update = self._compare_product(previous, product)
            if update is None:
                unchanged.append(product_id)
            else:
                updated.append(update)

        removed = [
            state
            for product_id, state in persisted_by_id.items()
            if product_id not in fetched_by_id and not state.is_removed
        ]

        return DiffResult(
            added=tuple(added),
            updated=tuple(updated),
            removed=tuple(removed),
            unchanged_ids=tuple(unchanged),
        )

    def _index_fetched(self, fetched: Iterable[FetchedProduct]) -> Dict[str, FetchedProduct]:
        indexed: Dict[str, FetchedProduct] = {}
        for product in fetched:
            if product.id in indexed:
                logger.warning(f"Duplicate product id {product.id} in feed, keeping first")
                continue
            indexed[product.id] = product
        return indexed

    def _compare_product(
        self, previous: ProductState, product: FetchedProduct
    ) -> Optional[ProductUpdate]:
        existing_variants = {v.external_id: v for v in previous.variants}
        fetched_ids = set()

        variant_changes: List[VariantChange] = []
        new_variants: List[FetchedVariant] = []
        variant_metadata_changed = False

        for variant in product.unique_variants:
            fetched_ids.add(variant.id)

            existing = existing_variants.get(variant.id)
            if existing is None:
                new_variants.append(variant)
                continue

            variant_changes.extend(self._compare_variant(existing, variant))

            if (
                existing.title != variant.title
                or existing.sku != variant.sku
                or existing.compare_at_price != variant.compare_at_price
                or existing.position != variant.position
            ):
                variant_metadata_changed = True

        dropped = tuple(
            v.external_id for v in previous.variants if v.external_id not in fetched_ids
        )

        image_change = None
        new_urls = tuple(product.image_urls)
        if set(previous.image_urls) != set(new_urls):
            image_change = ImageChange(old_urls=previous.image_urls, new_urls=new_urls)

        metadata_changed = (
            variant_metadata_changed
            or previous.title != product.title
            or previous.handle != product.handle
            or previous.vendor != product.vendor
            or previous.product_type != product.product_type
            # Reordering alone is persisted but never reported
            or previous.image_urls != new_urls
        )

        if not (
            variant_changes
            or image_change
            or new_variants
            or dropped
            or previous.is_removed
            or metadata_changed
        ):
            return None

        return ProductUpdate(
            product=product,
            previous=previous,
            variant_changes=tuple(variant_changes),
            image_change=image_change,
            new_variants=tuple(new_variants),
            dropped_variant_ids=dropped,
            revived=previous.is_removed,
            metadata_changed=metadata_changed,
        )

    def _compare_variant(self, existing: VariantState, fetched: FetchedVariant) -> List[VariantChange]:
        changes = []

        if existing.price != fetched.price:
            changes.append(
                VariantChange(
                    variant_id=fetched.id,
                    variant_title=existing.title,
                    dimension=ChangeDimension.PRICE,
                    old_value=existing.price,
                    new_value=fetched.price,
                )
            )

        if existing.available != fetched.available:
            changes.append(
                VariantChange(
                    variant_id=fetched.id,
                    variant_title=existing.title,
                    dimension=ChangeDimension.AVAILABILITY,
                    old_value=existing.available,
                    new_value=fetched.available,
                )
            )

        return changes
