from datetime import datetime, timedelta
from decimal import Decimal

from storewatch.detection.retention import SnapshotRetention
from storewatch.storage import Database
from storewatch.storage.models import ChangeEvent, FetchedProduct, Variant, VariantSnapshot

NOW = datetime(2025, 6, 1, 12, 0, 0)


def seed_variant(db):
    product = FetchedProduct.model_validate(
        {"id": 1, "title": "Mug", "variants": [{"id": 10, "price": "12.00", "available": True}]}
    )
    store = db.add_store("Mugs", "mugs.example.test", [product], fetched_at=NOW)
    with db.session() as session:
        return store, session.query(Variant).one().id


def add_snapshot(db, variant_id, captured_at):
    with db.writer() as session:
        session.add(
            VariantSnapshot(variant_id=variant_id, captured_at=captured_at, price=Decimal("12.00"), available=True)
        )


def test_prune_boundary():
    db = Database("sqlite:///:memory:")
    _, variant_id = seed_variant(db)
    add_snapshot(db, variant_id, NOW - timedelta(days=90, seconds=1))
    add_snapshot(db, variant_id, NOW - timedelta(days=89))

    retention = SnapshotRetention(db, retention_days=90)
    deleted = retention.prune(NOW)

    assert deleted == 1
    with db.session() as session:
        remaining = [s.captured_at for s in session.query(VariantSnapshot).all()]
    assert remaining == [NOW - timedelta(days=89)]


def test_snapshot_exactly_at_cutoff_is_kept():
    db = Database("sqlite:///:memory:")
    _, variant_id = seed_variant(db)
    add_snapshot(db, variant_id, NOW - timedelta(days=90))

    assert SnapshotRetention(db).prune(NOW) == 0
    assert db.count_snapshots() == 1


def test_prune_is_idempotent():
    db = Database("sqlite:///:memory:")
    _, variant_id = seed_variant(db)
    add_snapshot(db, variant_id, NOW - timedelta(days=200))

    retention = SnapshotRetention(db)

    assert retention.prune(NOW) == 1
    assert retention.prune(NOW) == 0


def test_window_change_only_affects_later_prunes():
    db = Database("sqlite:///:memory:")
    _, variant_id = seed_variant(db)
    add_snapshot(db, variant_id, NOW - timedelta(days=40))

    retention = SnapshotRetention(db, retention_days=90)
    assert retention.prune(NOW) == 0

    retention.retention_days = 30
    assert retention.prune(NOW) == 1


def test_record_never_goes_back_in_time():
    db = Database("sqlite:///:memory:")
    _, variant_id = seed_variant(db)
    retention = SnapshotRetention(db)

    with db.writer() as session:
        variant = session.get(Variant, variant_id)
        retention.record(session, variant, NOW)
    with db.writer() as session:
        variant = session.get(Variant, variant_id)
        snapshot = retention.record(session, variant, NOW - timedelta(minutes=5))
        assert snapshot.captured_at == NOW

    history = db.get_price_history(db.list_store_ids()[0], "1", "10")
    assert [s.captured_at for s in history] == [NOW, NOW]
    assert history[0].price == Decimal("12.00")


def test_event_retention_is_optional():
    db = Database("sqlite:///:memory:")
    store, _ = seed_variant(db)
    with db.writer() as session:
        session.add(
            ChangeEvent(
                store_id=store.id,
                occurred_at=NOW - timedelta(days=31),
                change_type="newProduct",
                magnitude="medium",
                product_title="Mug",
            )
        )

    SnapshotRetention(db).prune(NOW)
    assert len(db.fetch_events()) == 1

    SnapshotRetention(db, event_retention_days=30).prune(NOW)
    assert db.fetch_events() == []
