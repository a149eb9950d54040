"""Sync coordination for Storewatch."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from loguru import logger

from ..agents.base_agent import BaseAgent
from ..agents.shopify import ShopifyAgent, normalize_domain
from ..alerts.discord import DiscordNotifier
from ..alerts.notifier import Notifier
from ..detection.diff import DiffEngine, ProductState
from ..detection.events import ChangeEventEmitter
from ..detection.retention import SnapshotRetention
from ..errors import RateLimited, StoreNotFound, SyncError
from ..storage.database import Database
from ..storage.models import ChangeEventDTO, Store, StoreDTO
from ..utils.config import get_config
from .state import SyncErrorState


class SyncState(str, Enum):
    IDLE = "idle"
    RATE_LIMITED = "rate_limited"
    FETCHING = "fetching"
    DIFFING = "diffing"
    PERSISTING = "persisting"
    FAILED = "failed"


@dataclass
class FleetSyncReport:
    """Outcome of one pass over every store."""

    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, Exception] = field(default_factory=dict)
    rate_limited: List[str] = field(default_factory=list)
    events: List[ChangeEventDTO] = field(default_factory=list)
    pruned: int = 0
    cancelled: bool = False
    skipped: bool = False

    def summary(self) -> str:
        return (
            f"{len(self.succeeded)} synced, {len(self.failed)} failed, "
            f"{len(self.rate_limited)} rate limited, {len(self.events)} events, "
            f"{self.pruned} snapshots pruned"
        )


class SyncCoordinator:
    """Coordinates fetch, diff, persistence and notification for every store.

    Stores are synced one at a time. Each store has its own lock so a manual
    sync and a fleet pass never run the same store's cycle concurrently, and
    every write goes through ``Database.writer()``.
    """

    def __init__(
        self,
        config: Optional[Dict] = None,
        db: Optional[Database] = None,
        agent: Optional[BaseAgent] = None,
        error_state: Optional[SyncErrorState] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize sync coordinator.

        Args:
            config: Optional configuration dictionary
            db: Database, built from ``database.url`` when omitted
            agent: Feed agent, a ShopifyAgent when omitted
            error_state: Collaborator receiving per-store sync errors
            notifier: Collaborator receiving emitted events
            clock: Returns the current UTC time
        """
        if config is None:
            config = get_config().model_dump()

        self.config = config
        self.clock = clock or datetime.utcnow

        if db is None:
            db_config = config.get("database", {})
            db = Database(
                db_config.get("url", "sqlite:///data/db/storewatch.db"),
                echo=db_config.get("echo", False),
            )
        self.db = db

        self.agent = agent or ShopifyAgent(config.get("scraping", {}))
        self.error_state = error_state or SyncErrorState()
        self.notifier = notifier or self._init_notifier()

        sync_config = config.get("sync", {})
        self.min_poll_interval = float(sync_config.get("min_poll_interval_seconds", 60.0))

        retention_config = config.get("retention", {})
        self.retention = SnapshotRetention(
            self.db,
            retention_days=retention_config.get("snapshot_days", 90),
            event_retention_days=retention_config.get("event_days"),
        )

        self.diff_engine = DiffEngine()
        self.emitter = ChangeEventEmitter()

        self.states: Dict[str, SyncState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._fleet_running = False

    def _init_notifier(self) -> Notifier:
        """Initialize notification channels."""
        notifications = self.config.get("notifications", {})
        channels = []

        webhook_url = notifications.get("discord", {}).get("webhook_url")
        if webhook_url:
            channels.append(DiscordNotifier(webhook_url))
            logger.info("Initialized Discord notifier")

        return Notifier(notifications, channels)

    def _lock_for(self, store_id: str) -> asyncio.Lock:
        lock = self._locks.get(store_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[store_id] = lock
        return lock

    def state_of(self, store_id: str) -> SyncState:
        return self.states.get(store_id, SyncState.IDLE)

    # ------------------------------------------------------------------
    # Single store
    # ------------------------------------------------------------------

    async def sync_store(self, store_id: str, now: Optional[datetime] = None) -> List[ChangeEventDTO]:
        """Run one full sync cycle for a store.

        Args:
            store_id: Store to sync
            now: Sync timestamp, defaults to the coordinator clock

        Returns:
            Events emitted by this sync, in emission order

        Raises:
            StoreNotFound: Unknown store id
            RateLimited: Last successful poll is too recent; nothing was fetched
            SyncError: Fetch failed; the error is also recorded in the error state
        """
        # Unknown ids never get a lock entry
        if self.db.get_store(store_id) is None:
            raise StoreNotFound(store_id)

        async with self._lock_for(store_id):
            return await self._sync_store(store_id, now)

    async def _sync_store(self, store_id: str, now: Optional[datetime]) -> List[ChangeEventDTO]:
        store = self.db.get_store(store_id)
        if store is None:
            raise StoreNotFound(store_id)

        if now is None:
            now = self.clock()

        self.states[store_id] = SyncState.RATE_LIMITED
        retry_after = self.retry_after(store, now)
        if retry_after > 0:
            self.states[store_id] = SyncState.IDLE
            logger.debug(f"Skipping {store.name}: rate limited for {retry_after:.1f}s")
            raise RateLimited(retry_after)

        start_time = datetime.utcnow()
        self.db.set_syncing(store_id, True)
        try:
            self.states[store_id] = SyncState.FETCHING
            products = await self.agent.fetch_products(store.domain)

            events = self._persist(store_id, products, now)

        except StoreNotFound:
            self.states.pop(store_id, None)
            raise
        except SyncError as e:
            self.states[store_id] = SyncState.FAILED
            self.error_state.record_error(store_id, e)
            logger.warning(f"Sync failed for {store.name}: {e.description} ({e.failure_reason})")
            raise
        except Exception as e:
            self.states[store_id] = SyncState.FAILED
            self.error_state.record_error(store_id, e)
            logger.exception(f"Unexpected error syncing {store.name}: {e}")
            raise
        finally:
            self.db.set_syncing(store_id, False)

        self.states[store_id] = SyncState.IDLE
        self.error_state.record_success(store_id)

        duration = (datetime.utcnow() - start_time).total_seconds()
        logger.info(f"Synced {store.name}: {len(products)} products, {len(events)} events in {duration:.1f}s")

        await self._notify(events)
        return events

    def retry_after(self, store: StoreDTO, now: datetime) -> float:
        """Seconds until the store may be polled again, 0 when it may poll now."""
        if store.last_fetched_at is None:
            return 0.0
        elapsed = (now - store.last_fetched_at).total_seconds()
        if elapsed >= self.min_poll_interval:
            return 0.0
        return self.min_poll_interval - max(elapsed, 0.0)

    def _persist(self, store_id: str, products, now: datetime) -> List[ChangeEventDTO]:
        """Diff and write one fetch inside a single writer session."""
        with self.db.writer() as session:
            store = session.get(Store, store_id)
            if store is None:
                raise StoreNotFound(store_id)

            self.states[store_id] = SyncState.DIFFING
            catalog = self.db.load_catalog(session, store_id)
            persisted = [ProductState.from_model(p) for p in catalog]
            diff = self.diff_engine.diff(persisted, products)
            emitted = self.emitter.emit(diff, occurred_at=now)
            logger.debug(f"Diff for {store.name}: {diff.summary()}")

            self.states[store_id] = SyncState.PERSISTING
            by_id = self.db.apply_diff(session, store, catalog, diff, now)

            for product_id, variant_id in emitted.snapshot_targets:
                product = by_id.get(product_id)
                if product is None:
                    continue
                for variant in product.variants:
                    if variant.external_id == variant_id:
                        self.retention.record(session, variant, now)
                        break

            events = self.db.insert_events(session, store, emitted.events)
            store.last_fetched_at = now
            store.is_syncing = False
            return events

    async def _notify(self, events: List[ChangeEventDTO]):
        if not events:
            return
        try:
            await self.notifier.send(events)
        except Exception as e:
            logger.error(f"Notification delivery failed: {e}")

    # ------------------------------------------------------------------
    # Fleet
    # ------------------------------------------------------------------

    async def sync_all(self, cancel_event: Optional[asyncio.Event] = None) -> FleetSyncReport:
        """Sync every store sequentially, then prune history once.

        A failing store never stops the pass. Cancellation is honoured only
        between stores.

        Args:
            cancel_event: When set, the pass stops before the next store

        Returns:
            FleetSyncReport
        """
        report = FleetSyncReport()
        if self._fleet_running:
            logger.info("Fleet sync already running, skipping")
            report.skipped = True
            return report

        self._fleet_running = True
        try:
            store_ids = self.db.list_store_ids()
            logger.info(f"Starting fleet sync of {len(store_ids)} stores")

            for store_id in store_ids:
                await asyncio.sleep(0)
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Fleet sync cancelled")
                    report.cancelled = True
                    break

                try:
                    events = await self.sync_store(store_id)
                except RateLimited:
                    report.rate_limited.append(store_id)
                except StoreNotFound:
                    # Deleted while the pass was running
                    logger.debug(f"Store {store_id} disappeared during fleet sync")
                except Exception as e:
                    report.failed[store_id] = e
                else:
                    report.succeeded.append(store_id)
                    report.events.extend(events)

            report.pruned = self.prune()
        finally:
            self._fleet_running = False

        logger.info(f"Fleet sync finished: {report.summary()}")
        return report

    def prune(self, now: Optional[datetime] = None) -> int:
        """Apply the retention window to snapshot (and event) history."""
        return self.retention.prune(now or self.clock())

    # ------------------------------------------------------------------
    # Store management
    # ------------------------------------------------------------------

    async def add_store(self, domain: str, name: Optional[str] = None) -> StoreDTO:
        """Register a store and import its current catalog without events.

        Args:
            domain: Store address, with or without scheme
            name: Display name, defaults to the first label of the domain

        Returns:
            The created store
        """
        domain = normalize_domain(domain)
        if not name:
            name = domain.split(".", 1)[0]

        products = await self.agent.fetch_products(domain)
        return self.db.add_store(name, domain, products, fetched_at=self.clock())

    def delete_store(self, store_id: str) -> bool:
        """Delete a store with its products, history and events."""
        deleted = self.db.delete_store(store_id)
        if deleted:
            self.error_state.record_success(store_id)
            self.states.pop(store_id, None)
            self._locks.pop(store_id, None)
        return deleted
