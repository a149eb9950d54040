"""Sync orchestration and scheduling"""

from .coordinator import FleetSyncReport, SyncCoordinator, SyncState
from .scheduler import SyncScheduler
from .state import SyncErrorState

__all__ = ["FleetSyncReport", "SyncCoordinator", "SyncErrorState", "SyncScheduler", "SyncState"]
