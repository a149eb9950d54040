"""Error taxonomy for catalog synchronization."""

import math
from typing import Optional


class SyncError(Exception):
    """Base class for every error surfaced by a store sync."""

    description = "Sync failed"
    recovery_suggestion: Optional[str] = None

    @property
    def failure_reason(self) -> str:
        return str(self) or self.description

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "description": self.description,
            "reason": self.failure_reason,
            "recovery": self.recovery_suggestion,
        }


class StoreNotFound(SyncError):
    description = "Store not found"
    recovery_suggestion = "Check the domain and try again."

    def __init__(self, store_id: str = ""):
        self.store_id = store_id
        super().__init__(f"No store with id {store_id!r}" if store_id else "")

    @property
    def failure_reason(self) -> str:
        return "We couldn't find a store with that address."


class RateLimited(SyncError):
    """Raised when a store is polled again inside the minimum interval."""

    description = "Sync limited"
    recovery_suggestion = "Try again after the countdown completes."

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"retry after {retry_after:.1f}s")

    @property
    def failure_reason(self) -> str:
        seconds = int(math.ceil(self.retry_after))
        return f"Please wait {seconds} seconds before syncing again."


class NetworkUnavailable(SyncError):
    description = "Network unavailable"
    recovery_suggestion = "Check your internet connection."


class NetworkTimeout(SyncError):
    description = "Request timed out"
    recovery_suggestion = "The store may be slow right now. Try again later."


class ServerError(SyncError):
    description = "Store server error"
    recovery_suggestion = "The store is having problems. Try again later."

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


class InvalidResponse(SyncError):
    description = "Invalid response"
    recovery_suggestion = "This store may not expose a public product feed."
