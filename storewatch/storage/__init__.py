"""Data storage and persistence layer"""

from .models import (
    ChangeEvent,
    ChangeEventDTO,
    ChangeMagnitude,
    ChangeType,
    FetchedProduct,
    FetchedVariant,
    Product,
    Store,
    StoreDTO,
    Variant,
    VariantSnapshot,
)
from .database import Database

__all__ = [
    "ChangeEvent",
    "ChangeEventDTO",
    "ChangeMagnitude",
    "ChangeType",
    "FetchedProduct",
    "FetchedVariant",
    "Product",
    "Store",
    "StoreDTO",
    "Variant",
    "VariantSnapshot",
    "Database",
]
