"""Change detection engine for catalog syncs"""

from .diff import DiffEngine, DiffResult, ProductState, ProductUpdate, VariantChange, VariantState
from .events import ChangeEventEmitter, EmitResult, classify_magnitude
from .retention import SnapshotRetention

__all__ = [
    "DiffEngine",
    "DiffResult",
    "ProductState",
    "ProductUpdate",
    "VariantChange",
    "VariantState",
    "ChangeEventEmitter",
    "EmitResult",
    "classify_magnitude",
    "SnapshotRetention",
]
