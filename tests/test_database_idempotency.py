from datetime import datetime

from storewatch.detection.diff import DiffEngine, ProductState
from storewatch.storage import Database
from storewatch.storage.models import FetchedProduct, Product, Store, Variant


def feed(price="19.99"):
    return [
        FetchedProduct.model_validate(
            {
                "id": 123,
                "title": "Portable Blender",
                "vendor": "Blendco",
                "variants": [
                    {"id": 1, "title": "Blue", "price": price, "available": True, "position": 1},
                    {"id": 2, "title": "Pink", "price": price, "available": False, "position": 2},
                ],
            }
        )
    ]


def apply_feed(db, store_id, products, now):
    with db.writer() as session:
        store = session.get(Store, store_id)
        catalog = db.load_catalog(session, store_id)
        diff = DiffEngine().diff([ProductState.from_model(p) for p in catalog], products)
        db.apply_diff(session, store, catalog, diff, now)
        return diff


def test_add_store_skips_duplicate_products_in_feed():
    db = Database("sqlite:///:memory:")
    products = feed() + feed()

    store = db.add_store("Blendco", "blendco.example.test", products, fetched_at=datetime(2025, 1, 1))

    assert store.cached_product_count == 1
    with db.session() as session:
        assert session.query(Product).count() == 1
        assert session.query(Variant).count() == 2


def test_applying_same_feed_twice_keeps_single_rows():
    db = Database("sqlite:///:memory:")
    store = db.add_store("Blendco", "blendco.example.test", feed(), fetched_at=datetime(2025, 1, 1))

    apply_feed(db, store.id, feed(price="17.99"), datetime(2025, 1, 2))
    diff = apply_feed(db, store.id, feed(price="17.99"), datetime(2025, 1, 3))

    assert diff.is_empty
    with db.session() as session:
        assert session.query(Product).count() == 1
        assert session.query(Variant).count() == 2
        product = session.query(Product).one()
        assert product.last_seen_at == datetime(2025, 1, 3)
        assert product.first_seen_at == datetime(2025, 1, 1)
        assert str(product.cached_price) == "17.99"
