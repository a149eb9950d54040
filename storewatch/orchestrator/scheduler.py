"""Job scheduling for Storewatch."""

from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

if TYPE_CHECKING:
    from .coordinator import SyncCoordinator


FLEET_JOB_ID = "fleet_sync"
PRUNE_JOB_ID = "retention_prune"


class SyncScheduler:
    """Manages the periodic fleet sync and the daily retention job.

    Default schedule:
    - Fleet sync: every 60 minutes
    - Retention prune: daily at 3 AM

    A fleet pass never overlaps itself; missed runs are coalesced into one.
    """

    def __init__(self, coordinator: "SyncCoordinator", config: dict):
        """Initialize sync scheduler.

        Args:
            coordinator: Sync coordinator instance
            config: Configuration dictionary
        """
        self.coordinator = coordinator
        self.config = config

        schedule_config = config.get("schedule", {})
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": schedule_config.get("misfire_grace_time_seconds", 120),
            }
        )

    def configure_jobs(self):
        """Set up all scheduled jobs based on configuration."""
        sync_config = self.config.get("sync", {})
        schedule_config = self.config.get("schedule", {})

        fleet_minutes = sync_config.get("fleet_interval_minutes", 60)
        self.scheduler.add_job(
            self.coordinator.sync_all,
            IntervalTrigger(minutes=fleet_minutes),
            id=FLEET_JOB_ID,
            name="Fleet Sync",
            replace_existing=True,
        )
        logger.info(f"Scheduled fleet sync every {fleet_minutes} minutes")

        prune_hour = schedule_config.get("prune_hour", 3)
        prune_minute = schedule_config.get("prune_minute", 0)
        self.scheduler.add_job(
            self.coordinator.prune,
            CronTrigger(hour=prune_hour, minute=prune_minute),
            id=PRUNE_JOB_ID,
            name="Snapshot Retention",
            replace_existing=True,
        )
        logger.info(f"Scheduled daily retention prune at {prune_hour:02d}:{prune_minute:02d}")

    def trigger_now(self):
        """Run the fleet sync as soon as possible, outside its interval."""
        job = self.scheduler.get_job(FLEET_JOB_ID)
        if job is None:
            logger.warning("Fleet sync job is not configured")
            return
        job.modify(next_run_time=datetime.now(self.scheduler.timezone))
        logger.info("Fleet sync triggered manually")

    def start(self):
        """Start the scheduler."""
        logger.info("Starting sync scheduler")
        self.scheduler.start()

    def stop(self):
        """Stop the scheduler."""
        logger.info("Stopping sync scheduler")
        self.scheduler.shutdown()

    def get_jobs(self):
        """Get list of scheduled jobs."""
        return self.scheduler.get_jobs()
