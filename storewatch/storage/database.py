"""Database operations and management"""

import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy import create_engine, event, or_
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    Base,
    ChangeEvent,
    ChangeEventDTO,
    ChangeType,
    FetchedProduct,
    FetchedVariant,
    Product,
    ProductDTO,
    SnapshotDTO,
    Store,
    StoreDTO,
    Variant,
    VariantSnapshot,
    make_search_key,
)

if TYPE_CHECKING:
    from ..detection.diff import DiffResult


STOCK_SCOPES = ("all", "in_stock", "out_of_stock")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Database management class.

    Every mutation goes through ``writer()``, which serializes write sessions
    behind a single lock. Read helpers return frozen DTO copies so nothing
    handed to callers is attached to a live session.
    """

    def __init__(self, db_url: str = "sqlite:///data/db/storewatch.db", echo: bool = False):
        self.db_url = db_url
        engine_args = {}
        if db_url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every thread sees the same in-memory database
            engine_args["poolclass"] = StaticPool
        elif db_url.startswith("sqlite:///"):
            Path(db_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(db_url, echo=echo, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._write_lock = threading.RLock()
        logger.info(f"Database initialized: {db_url}")

    @contextmanager
    def session(self):
        """Context manager for database sessions"""
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    @contextmanager
    def writer(self):
        """Serialized write session. Only one writer runs at a time."""
        with self._write_lock:
            with self.session() as session:
                yield session

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def add_store(self, name: str, domain: str, products: Iterable[FetchedProduct] = (),
                  fetched_at: Optional[datetime] = None) -> StoreDTO:
        """Create a store and import its initial catalog without events."""
        now = fetched_at or datetime.utcnow()
        with self.writer() as session:
            store = Store(name=name, domain=domain, added_at=now, is_syncing=False)
            session.add(store)

            created = []
            seen = set()
            for fetched in products:
                if fetched.id in seen:
                    continue
                seen.add(fetched.id)
                product = self._create_product(fetched, now)
                store.products.append(product)
                created.append(product)

            store.last_fetched_at = fetched_at
            store.update_listing_cache(created)
            session.flush()
            logger.info(f"Added store {name} ({domain}) with {len(created)} products")
            return StoreDTO.model_validate(store)

    def get_store(self, store_id: str) -> Optional[StoreDTO]:
        with self.session() as session:
            store = session.get(Store, store_id)
            return StoreDTO.model_validate(store) if store else None

    def list_stores(self) -> List[StoreDTO]:
        with self.session() as session:
            stores = session.query(Store).order_by(Store.name).all()
            return [StoreDTO.model_validate(s) for s in stores]

    def list_store_ids(self) -> List[str]:
        with self.session() as session:
            return [row[0] for row in session.query(Store.id).order_by(Store.added_at).all()]

    def delete_store(self, store_id: str) -> bool:
        """Delete a store and everything it owns."""
        with self.writer() as session:
            store = session.get(Store, store_id)
            if store is None:
                return False
            session.delete(store)
            logger.info(f"Deleted store {store.name}")
            return True

    def set_syncing(self, store_id: str, is_syncing: bool):
        with self.writer() as session:
            store = session.get(Store, store_id)
            if store is not None:
                store.is_syncing = is_syncing

    # ------------------------------------------------------------------
    # Sync persistence (called inside a writer session)
    # ------------------------------------------------------------------

    def load_catalog(self, session: Session, store_id: str) -> List[Product]:
        """All products of a store, removed ones included, variants preloaded."""
        return (
            session.query(Product)
            .options(selectinload(Product.variants))
            .filter(Product.store_id == store_id)
            .order_by(Product.id)
            .all()
        )

    def apply_diff(
        self,
        session: Session,
        store: Store,
        catalog: List[Product],
        diff: "DiffResult",
        now: datetime,
    ) -> Dict[str, Product]:
        """Write a diff to the store's products.

        Args:
            session: Writer session
            store: Store being synced
            catalog: Products returned by ``load_catalog``
            diff: Diff computed from the same catalog
            now: Sync timestamp

        Returns:
            Products keyed by external id, after the write
        """
        by_id = {p.external_id: p for p in catalog}

        for fetched in diff.added:
            product = self._create_product(fetched, now)
            store.products.append(product)
            by_id[fetched.id] = product

        for update in diff.updated:
            product = by_id[update.product.id]
            self._update_product(session, product, update.product, update.dropped_variant_ids)
            product.is_removed = False
            product.last_seen_at = now

        for product_id in diff.unchanged_ids:
            by_id[product_id].last_seen_at = now

        for state in diff.removed:
            by_id[state.external_id].is_removed = True

        session.flush()
        store.update_listing_cache(list(by_id.values()))
        return by_id

    def insert_events(self, session: Session, store: Store, events: List[ChangeEventDTO]) -> List[ChangeEventDTO]:
        """Attach detached events to their store and persist them."""
        attached = []
        for dto in events:
            dto = dto.model_copy(update={"store_id": store.id, "store_name": store.name})
            session.add(
                ChangeEvent(
                    id=dto.id,
                    store_id=store.id,
                    occurred_at=dto.occurred_at,
                    change_type=dto.change_type.value,
                    magnitude=dto.magnitude.value,
                    product_title=dto.product_title,
                    variant_title=dto.variant_title,
                    old_value=dto.old_value,
                    new_value=dto.new_value,
                    price_change=dto.price_change,
                    is_read=dto.is_read,
                    product_external_id=dto.product_external_id,
                    variant_external_id=dto.variant_external_id,
                )
            )
            attached.append(dto)
        return attached

    def _create_product(self, fetched: FetchedProduct, now: datetime) -> Product:
        product = Product(
            external_id=fetched.id,
            handle=fetched.handle,
            title=fetched.title,
            vendor=fetched.vendor,
            product_type=fetched.product_type,
            image_urls=list(fetched.image_urls),
            first_seen_at=now,
            last_seen_at=now,
            is_removed=False,
        )
        for fetched_variant in fetched.unique_variants:
            product.variants.append(self._create_variant(fetched_variant))
        product.update_listing_cache()
        return product

    def _create_variant(self, fetched: FetchedVariant) -> Variant:
        return Variant(
            external_id=fetched.id,
            title=fetched.title,
            sku=fetched.sku,
            price=fetched.price,
            compare_at_price=fetched.compare_at_price,
            available=fetched.available,
            position=fetched.position,
        )

    def _update_product(
        self,
        session: Session,
        product: Product,
        fetched: FetchedProduct,
        dropped_variant_ids: Iterable[str],
    ):
        # Only assign on change to keep the unit of work small
        if product.title != fetched.title:
            product.title = fetched.title
        if product.handle != fetched.handle:
            product.handle = fetched.handle
        if product.vendor != fetched.vendor:
            product.vendor = fetched.vendor
        if product.product_type != fetched.product_type:
            product.product_type = fetched.product_type
        if list(product.image_urls or []) != list(fetched.image_urls):
            product.image_urls = list(fetched.image_urls)

        existing = {v.external_id: v for v in product.variants}
        for fetched_variant in fetched.unique_variants:
            variant = existing.get(fetched_variant.id)
            if variant is None:
                variant = self._create_variant(fetched_variant)
                product.variants.append(variant)
                existing[fetched_variant.id] = variant
                continue

            for attr in ("title", "sku", "price", "compare_at_price", "available", "position"):
                value = getattr(fetched_variant, attr)
                if getattr(variant, attr) != value:
                    setattr(variant, attr, value)

        dropped = set(dropped_variant_ids)
        for variant in list(product.variants):
            if variant.external_id in dropped:
                product.variants.remove(variant)
                session.delete(variant)

        product.update_listing_cache()

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup_old_snapshots(self, cutoff: datetime) -> int:
        """Remove snapshots captured before the cutoff"""
        with self.writer() as session:
            return (
                session.query(VariantSnapshot)
                .filter(VariantSnapshot.captured_at < cutoff)
                .delete(synchronize_session=False)
            )

    def cleanup_old_events(self, cutoff: datetime) -> int:
        """Remove change events that occurred before the cutoff"""
        with self.writer() as session:
            return (
                session.query(ChangeEvent)
                .filter(ChangeEvent.occurred_at < cutoff)
                .delete(synchronize_session=False)
            )

    # ------------------------------------------------------------------
    # Read queries
    # ------------------------------------------------------------------

    def fetch_events(
        self,
        store_id: Optional[str] = None,
        change_types: Optional[Iterable[ChangeType]] = None,
        since: Optional[datetime] = None,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ChangeEventDTO]:
        """Activity feed, newest first"""
        with self.session() as session:
            query = session.query(ChangeEvent).options(selectinload(ChangeEvent.store))
            query = self._filter_events(query, store_id, change_types, since, unread_only)
            events = (
                query.order_by(ChangeEvent.occurred_at.desc(), ChangeEvent.id)
                .limit(limit)
                .offset(offset)
                .all()
            )
            return [ChangeEventDTO.from_model(e) for e in events]

    def count_unread_events(self, store_id: Optional[str] = None) -> int:
        with self.session() as session:
            query = self._filter_events(session.query(ChangeEvent), store_id, None, None, True)
            return query.count()

    def mark_event_read(self, event_id: str) -> bool:
        with self.writer() as session:
            event = session.get(ChangeEvent, event_id)
            if event is None:
                return False
            event.is_read = True
            return True

    def mark_events_read(self, event_ids: Iterable[str]) -> int:
        ids = list(event_ids)
        if not ids:
            return 0
        with self.writer() as session:
            return (
                session.query(ChangeEvent)
                .filter(ChangeEvent.id.in_(ids), ChangeEvent.is_read.is_(False))
                .update({ChangeEvent.is_read: True}, synchronize_session=False)
            )

    def mark_all_events_read(
        self,
        store_id: Optional[str] = None,
        change_types: Optional[Iterable[ChangeType]] = None,
        since: Optional[datetime] = None,
    ) -> int:
        with self.writer() as session:
            query = self._filter_events(session.query(ChangeEvent), store_id, change_types, since, True)
            return query.update({ChangeEvent.is_read: True}, synchronize_session=False)

    def delete_all_events(self) -> int:
        with self.writer() as session:
            return session.query(ChangeEvent).delete(synchronize_session=False)

    def _filter_events(self, query, store_id, change_types, since, unread_only):
        if store_id:
            query = query.filter(ChangeEvent.store_id == store_id)
        if change_types:
            query = query.filter(
                ChangeEvent.change_type.in_([ChangeType(t).value for t in change_types])
            )
        if since is not None:
            query = query.filter(ChangeEvent.occurred_at >= since)
        if unread_only:
            query = query.filter(ChangeEvent.is_read.is_(False))
        return query

    def fetch_products(
        self,
        store_id: str,
        search: str = "",
        stock_scope: str = "all",
        include_removed: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ProductDTO]:
        """Products of a store ordered by title"""
        with self.session() as session:
            query = self._filter_products(
                session.query(Product).options(selectinload(Product.variants)),
                store_id, search, stock_scope, include_removed,
            )
            products = query.order_by(Product.title_search_key).limit(limit).offset(offset).all()
            return [ProductDTO.model_validate(p) for p in products]

    def count_products(
        self, store_id: str, search: str = "", stock_scope: str = "all", include_removed: bool = False
    ) -> int:
        with self.session() as session:
            query = self._filter_products(
                session.query(Product), store_id, search, stock_scope, include_removed
            )
            return query.count()

    def _filter_products(self, query, store_id, search, stock_scope, include_removed):
        if stock_scope not in STOCK_SCOPES:
            raise ValueError(f"Unknown stock scope: {stock_scope}")

        query = query.filter(Product.store_id == store_id)
        if not include_removed:
            query = query.filter(Product.is_removed.is_(False))
        key = make_search_key(search)
        if key:
            query = query.filter(
                or_(Product.title_search_key.contains(key), Product.vendor.ilike(f"%{key}%"))
            )
        if stock_scope == "in_stock":
            query = query.filter(Product.cached_is_available.is_(True))
        elif stock_scope == "out_of_stock":
            query = query.filter(Product.cached_is_available.is_(False))
        return query

    def get_price_history(self, store_id: str, product_external_id: str, variant_external_id: str) -> List[SnapshotDTO]:
        """Snapshots of one variant, oldest first"""
        with self.session() as session:
            snapshots = (
                session.query(VariantSnapshot)
                .join(Variant)
                .join(Product)
                .filter(
                    Product.store_id == store_id,
                    Product.external_id == product_external_id,
                    Variant.external_id == variant_external_id,
                )
                .order_by(VariantSnapshot.captured_at)
                .all()
            )
            return [SnapshotDTO.model_validate(s) for s in snapshots]

    def count_snapshots(self) -> int:
        with self.session() as session:
            return session.query(VariantSnapshot).count()
