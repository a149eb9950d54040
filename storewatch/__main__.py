"""Main entry point for Storewatch."""

import argparse
import asyncio
import sys

from loguru import logger

from .errors import SyncError
from .orchestrator.coordinator import SyncCoordinator
from .orchestrator.scheduler import SyncScheduler
from .utils.config import get_config
from .utils.logger import setup_logging


async def run_scheduler():
    """Run the sync scheduler."""
    config = get_config()
    setup_logging()

    logger.info("=" * 80)
    logger.info("Storewatch - Starting")
    logger.info("=" * 80)

    coordinator = SyncCoordinator(config.model_dump())
    scheduler = SyncScheduler(coordinator, config.model_dump())

    scheduler.configure_jobs()
    scheduler.start()
    # Sync once at startup instead of waiting a full interval
    scheduler.trigger_now()

    logger.info("Scheduler started. Press Ctrl+C to stop.")

    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutting down...")
        scheduler.stop()


async def add_store(domain: str, name: str = None):
    """Register a store and import its catalog."""
    config = get_config()
    setup_logging()

    coordinator = SyncCoordinator(config.model_dump())
    store = await coordinator.add_store(domain, name)

    logger.info(f"Added {store.name} ({store.domain}): id={store.id}, {store.cached_product_count} products")


def remove_store(store_id: str):
    """Delete a store and all of its history."""
    config = get_config()
    setup_logging()

    coordinator = SyncCoordinator(config.model_dump())
    if not coordinator.delete_store(store_id):
        logger.error(f"No store with id {store_id}")
        sys.exit(1)


async def sync_store(store_id: str):
    """Sync a single store manually."""
    config = get_config()
    setup_logging()

    coordinator = SyncCoordinator(config.model_dump())
    events = await coordinator.sync_store(store_id)

    for event in events:
        logger.info(
            f"{event.change_type.value}: {event.product_title} "
            f"{event.old_value or ''} -> {event.new_value or ''}"
        )
    logger.info(f"Sync completed with {len(events)} events")


async def sync_all():
    """Run one fleet pass manually."""
    config = get_config()
    setup_logging()

    coordinator = SyncCoordinator(config.model_dump())
    report = await coordinator.sync_all()

    if report.failed:
        for store_id, error in report.failed.items():
            logger.warning(f"{store_id}: {error}")


def prune():
    """Apply the retention window now."""
    config = get_config()
    setup_logging()

    coordinator = SyncCoordinator(config.model_dump())
    deleted = coordinator.prune()

    logger.info(f"Prune completed: {deleted} snapshots deleted")


def list_stores():
    """Print monitored stores."""
    config = get_config()
    setup_logging()

    coordinator = SyncCoordinator(config.model_dump())
    for store in coordinator.db.list_stores():
        last = store.last_fetched_at.isoformat() if store.last_fetched_at else "never"
        print(f"{store.id}  {store.name:<24} {store.domain:<32} {store.cached_product_count:>6} products  last sync {last}")


def run_api():
    """Run the FastAPI server."""
    import uvicorn

    from .api.main import app

    config = get_config()
    setup_logging()

    logger.info("=" * 80)
    logger.info("Storewatch API - Starting")
    logger.info("=" * 80)

    uvicorn.run(
        app,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Storewatch")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Scheduler command
    subparsers.add_parser("scheduler", help="Run the sync scheduler")

    # API command
    subparsers.add_parser("api", help="Run the API server")

    # Store management
    add_parser = subparsers.add_parser("add-store", help="Add a store to monitor")
    add_parser.add_argument("domain", help="Store domain, e.g. shop.example.com")
    add_parser.add_argument("--name", default=None, help="Display name")

    remove_parser = subparsers.add_parser("remove-store", help="Remove a store and its history")
    remove_parser.add_argument("store_id", help="Store ID")

    subparsers.add_parser("stores", help="List monitored stores")

    # Sync commands
    sync_parser = subparsers.add_parser("sync", help="Sync a single store")
    sync_parser.add_argument("store_id", help="Store ID")

    subparsers.add_parser("sync-all", help="Sync every store once")

    # Retention command
    subparsers.add_parser("prune", help="Delete history outside the retention window")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "scheduler":
            asyncio.run(run_scheduler())
        elif args.command == "api":
            run_api()
        elif args.command == "add-store":
            asyncio.run(add_store(args.domain, args.name))
        elif args.command == "remove-store":
            remove_store(args.store_id)
        elif args.command == "stores":
            list_stores()
        elif args.command == "sync":
            asyncio.run(sync_store(args.store_id))
        elif args.command == "sync-all":
            asyncio.run(sync_all())
        elif args.command == "prune":
            prune()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except SyncError as e:
        logger.error(f"{e.description}: {e.failure_reason}")
        if e.recovery_suggestion:
            logger.info(e.recovery_suggestion)
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
