"""Database models for Storewatch."""

import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class ChangeType(str, Enum):
    """Kinds of detected catalog changes."""

    PRICE_DROPPED = "priceDropped"
    PRICE_INCREASED = "priceIncreased"
    BACK_IN_STOCK = "backInStock"
    OUT_OF_STOCK = "outOfStock"
    NEW_PRODUCT = "newProduct"
    PRODUCT_REMOVED = "productRemoved"
    IMAGES_CHANGED = "imagesChanged"

    @property
    def is_price_change(self) -> bool:
        return self in (ChangeType.PRICE_DROPPED, ChangeType.PRICE_INCREASED)


class ChangeMagnitude(str, Enum):
    """Severity of a price change by relative delta."""

    SMALL = "small"  # < 10%
    MEDIUM = "medium"  # 10-25%
    LARGE = "large"  # >= 25%


class DecimalText(TypeDecorator):
    """Stores ``Decimal`` values as text so they never pass through a float."""

    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


# ============================================================================
# Pydantic Models (for data transfer)
# ============================================================================


def _parse_price(value: Union[str, int, Decimal, None]) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, float):
        raise ValueError("prices must be decimal strings, not floats")
    try:
        price = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"invalid price {value!r}") from e
    if not price.is_finite():
        raise ValueError(f"invalid price {value!r}")
    return price


class FetchedVariant(BaseModel):
    """One variant as it appears in a store's product feed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str = ""
    sku: Optional[str] = None
    price: Decimal
    compare_at_price: Optional[Decimal] = None
    available: bool = False
    position: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value):
        if value is None or isinstance(value, bool):
            raise ValueError("variant id is required")
        return str(value)

    @field_validator("price", mode="before")
    @classmethod
    def _require_price(cls, value):
        price = _parse_price(value)
        if price is None:
            raise ValueError("variant price is required")
        return price

    @field_validator("compare_at_price", mode="before")
    @classmethod
    def _optional_price(cls, value):
        return _parse_price(value)


class FetchedProduct(BaseModel):
    """Normalized product from a store's product feed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str
    handle: str = ""
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list, alias="images")
    variants: List[FetchedVariant] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value):
        if value is None or isinstance(value, bool):
            raise ValueError("product id is required")
        return str(value)

    @field_validator("image_urls", mode="before")
    @classmethod
    def _image_sources(cls, value):
        # Feed images are objects with a "src" key; plain URL lists are accepted too
        if value is None:
            return []
        return [image["src"] if isinstance(image, dict) else image for image in value]

    @property
    def unique_variants(self) -> List[FetchedVariant]:
        """Variants with repeated ids dropped, first occurrence wins."""
        seen = set()
        unique = []
        for variant in self.variants:
            if variant.id in seen:
                continue
            seen.add(variant.id)
            unique.append(variant)
        return unique

    @property
    def sorted_variants(self) -> List[FetchedVariant]:
        return sorted(self.unique_variants, key=lambda v: v.position)


class ChangeEventDTO(BaseModel):
    """Immutable change event handed to notification and presentation layers.

    Store fields are denormalized so consumers never traverse relationships.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
    change_type: ChangeType
    product_title: str
    variant_title: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    price_change: Optional[Decimal] = None
    magnitude: ChangeMagnitude = ChangeMagnitude.MEDIUM
    is_read: bool = False
    product_external_id: Optional[str] = None
    variant_external_id: Optional[str] = None
    store_id: Optional[str] = None
    store_name: Optional[str] = None

    @classmethod
    def from_model(cls, event: "ChangeEvent") -> "ChangeEventDTO":
        return cls(
            id=event.id,
            occurred_at=event.occurred_at,
            change_type=ChangeType(event.change_type),
            product_title=event.product_title,
            variant_title=event.variant_title,
            old_value=event.old_value,
            new_value=event.new_value,
            price_change=event.price_change,
            magnitude=ChangeMagnitude(event.magnitude),
            is_read=event.is_read,
            product_external_id=event.product_external_id,
            variant_external_id=event.variant_external_id,
            store_id=event.store_id,
            store_name=event.store.name if event.store is not None else None,
        )


class StoreDTO(BaseModel):
    """Read-only view of a store."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    name: str
    domain: str
    added_at: datetime
    last_fetched_at: Optional[datetime] = None
    is_syncing: bool = False
    cached_product_count: int = 0
    cached_preview_image_urls: List[str] = Field(default_factory=list)


class VariantDTO(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    external_id: str
    title: str
    sku: Optional[str] = None
    price: Decimal
    compare_at_price: Optional[Decimal] = None
    available: bool
    position: int


class ProductDTO(BaseModel):
    """Read-only view of a product with its variants."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    external_id: str
    store_id: str
    title: str
    handle: str
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)
    first_seen_at: datetime
    last_seen_at: datetime
    is_removed: bool
    cached_price: Decimal
    cached_is_available: bool
    variants: List[VariantDTO] = Field(default_factory=list)


class SnapshotDTO(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    captured_at: datetime
    price: Decimal
    compare_at_price: Optional[Decimal] = None
    available: bool


# ============================================================================
# SQLAlchemy Models (for database)
# ============================================================================


class Store(Base):
    """A monitored store catalog."""

    __tablename__ = "stores"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    domain = Column(String, nullable=False, index=True)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_fetched_at = Column(DateTime)
    is_syncing = Column(Boolean, default=False, nullable=False)

    # Denormalized listing cache, recomputed at the end of every sync
    cached_product_count = Column(Integer, default=0, nullable=False)
    cached_preview_image_urls = Column(JSON, default=list)

    products = relationship(
        "Product", back_populates="store", cascade="all, delete-orphan"
    )
    change_events = relationship(
        "ChangeEvent", back_populates="store", cascade="all, delete-orphan"
    )

    def update_listing_cache(self, products: List["Product"]):
        """Recompute cached fields from the given products."""
        active = [p for p in products if not p.is_removed]
        self.cached_product_count = len(active)
        self.cached_preview_image_urls = [p.image_urls[0] for p in active if p.image_urls][:3]

    def __repr__(self):
        return f"<Store(id={self.id}, name='{self.name}', domain='{self.domain}')>"


class Product(Base):
    """A catalog entry within a store."""

    __tablename__ = "products"
    __table_args__ = (UniqueConstraint("store_id", "external_id", name="uq_product_store_external"),)

    id = Column(Integer, primary_key=True)
    store_id = Column(
        String(36), ForeignKey("stores.id", ondelete="CASCADE"), index=True, nullable=False
    )
    external_id = Column(String, nullable=False)
    handle = Column(String, default="", nullable=False)
    title = Column(String, nullable=False)
    vendor = Column(String)
    product_type = Column(String)
    image_urls = Column(JSON, default=list)

    first_seen_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_seen_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    is_removed = Column(Boolean, default=False, nullable=False, index=True)

    # Denormalized listing fields
    cached_price = Column(DecimalText, default=Decimal("0"), nullable=False)
    cached_is_available = Column(Boolean, default=False, nullable=False)
    title_search_key = Column(String, default="", index=True)

    store = relationship("Store", back_populates="products")
    variants = relationship(
        "Variant",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="Variant.position",
    )

    def update_listing_cache(self):
        """Recompute cached price and availability from the variants."""
        ordered = sorted(self.variants, key=lambda v: v.position)
        self.cached_price = ordered[0].price if ordered else Decimal("0")
        self.cached_is_available = any(v.available for v in ordered)
        self.title_search_key = make_search_key(self.title)

    def __repr__(self):
        return f"<Product(id={self.id}, external_id='{self.external_id}', title='{self.title}')>"


class Variant(Base):
    """A priced, independently available unit of a product."""

    __tablename__ = "variants"
    __table_args__ = (UniqueConstraint("product_id", "external_id", name="uq_variant_product_external"),)

    id = Column(Integer, primary_key=True)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False
    )
    external_id = Column(String, nullable=False)
    title = Column(String, default="", nullable=False)
    sku = Column(String)
    price = Column(DecimalText, nullable=False)
    compare_at_price = Column(DecimalText)
    available = Column(Boolean, default=False, nullable=False)
    position = Column(Integer, default=0, nullable=False)

    product = relationship("Product", back_populates="variants")
    snapshots = relationship(
        "VariantSnapshot",
        back_populates="variant",
        cascade="all, delete-orphan",
        order_by="VariantSnapshot.captured_at",
    )

    def __repr__(self):
        return f"<Variant(id={self.id}, external_id='{self.external_id}', price={self.price})>"


class VariantSnapshot(Base):
    """Point-in-time capture of a variant's price and availability."""

    __tablename__ = "variant_snapshots"

    id = Column(Integer, primary_key=True)
    variant_id = Column(
        Integer, ForeignKey("variants.id", ondelete="CASCADE"), index=True, nullable=False
    )
    captured_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
    price = Column(DecimalText, nullable=False)
    compare_at_price = Column(DecimalText)
    available = Column(Boolean, nullable=False)

    variant = relationship("Variant", back_populates="snapshots")

    def __repr__(self):
        return f"<VariantSnapshot(id={self.id}, variant_id={self.variant_id}, price={self.price})>"


class ChangeEvent(Base):
    """A detected difference between two consecutive fetches."""

    __tablename__ = "change_events"

    id = Column(String(36), primary_key=True, default=_new_id)
    store_id = Column(
        String(36), ForeignKey("stores.id", ondelete="CASCADE"), index=True, nullable=False
    )
    occurred_at = Column(DateTime, default=datetime.utcnow, index=True, nullable=False)
    change_type = Column(String, index=True, nullable=False)
    magnitude = Column(String, default=ChangeMagnitude.MEDIUM.value, nullable=False)
    product_title = Column(String, nullable=False)
    variant_title = Column(String)
    old_value = Column(Text)
    new_value = Column(Text)
    price_change = Column(DecimalText)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    product_external_id = Column(String)
    variant_external_id = Column(String)

    store = relationship("Store", back_populates="change_events")

    def __repr__(self):
        return f"<ChangeEvent(id={self.id}, type='{self.change_type}', store_id={self.store_id})>"


def make_search_key(text: str) -> str:
    """Case-folded key for title search."""
    return " ".join((text or "").casefold().split())
