"""Snapshot history recording and retention."""

from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..storage.database import Database
from ..storage.models import Variant, VariantSnapshot

DEFAULT_RETENTION_DAYS = 90


class SnapshotRetention:
    """Appends variant snapshots and purges the ones outside the window.

    The window is read when ``prune`` runs, so changing ``retention_days``
    only affects future prunes.
    """

    def __init__(
        self,
        db: Database,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        event_retention_days: Optional[int] = None,
    ):
        """Initialize snapshot retention.

        Args:
            db: Database instance
            retention_days: Days of snapshot history to keep
            event_retention_days: Days of change events to keep, None keeps all
        """
        self.db = db
        self.retention_days = retention_days
        self.event_retention_days = event_retention_days

    def record(self, session: Session, variant: Variant, captured_at: datetime) -> VariantSnapshot:
        """Append a snapshot of the variant's current values.

        Capture times never go backwards for a variant; a clock step back
        reuses the latest existing capture time.
        """
        latest = None
        if variant.id is not None:
            latest = (
                session.query(func.max(VariantSnapshot.captured_at))
                .filter(VariantSnapshot.variant_id == variant.id)
                .scalar()
            )
        if latest is not None and latest > captured_at:
            captured_at = latest

        snapshot = VariantSnapshot(
            variant=variant,
            captured_at=captured_at,
            price=variant.price,
            compare_at_price=variant.compare_at_price,
            available=variant.available,
        )
        session.add(snapshot)
        return snapshot

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        if now is None:
            now = datetime.utcnow()
        return now - timedelta(days=self.retention_days)

    def prune(self, now: Optional[datetime] = None) -> int:
        """Delete snapshots captured strictly before ``now - retention_days``.

        Args:
            now: Reference time, defaults to the current UTC time

        Returns:
            Number of snapshots deleted
        """
        if now is None:
            now = datetime.utcnow()

        deleted = self.db.cleanup_old_snapshots(self.cutoff(now))
        logger.info(f"Pruned {deleted} snapshots older than {self.retention_days} days")

        if self.event_retention_days:
            event_cutoff = now - timedelta(days=self.event_retention_days)
            events_deleted = self.db.cleanup_old_events(event_cutoff)
            logger.info(
                f"Pruned {events_deleted} change events older than {self.event_retention_days} days"
            )

        return deleted
