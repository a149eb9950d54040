"""Per-store sync error tracking for surfacing in the UI."""

from typing import Dict, Optional


class SyncErrorState:
    """Holds the latest sync error of each store.

    The coordinator only writes here (record/clear); presentation layers
    read it.
    """

    def __init__(self):
        self.store_errors: Dict[str, Exception] = {}

    @property
    def has_errors(self) -> bool:
        return bool(self.store_errors)

    @property
    def error_summary(self) -> Optional[str]:
        if not self.has_errors:
            return None
        count = len(self.store_errors)
        if count == 1:
            return "1 store failed to sync"
        return f"{count} stores failed to sync"

    def record_error(self, store_id: str, error: Exception):
        self.store_errors[store_id] = error

    def record_success(self, store_id: str):
        self.store_errors.pop(store_id, None)

    def clear_all(self):
        self.store_errors.clear()

    def error_for(self, store_id: str) -> Optional[Exception]:
        return self.store_errors.get(store_id)
