from decimal import Decimal

from storewatch.detection.diff import ChangeDimension, DiffEngine, ProductState
from storewatch.storage.models import FetchedProduct


def make_product(product_id=1, title="Wool Runner", variants=None, images=None, **extra):
    if variants is None:
        variants = [{"id": 11, "title": "Default Title", "price": "95.00", "available": True, "position": 1}]
    if images is None:
        images = [{"src": "https://cdn.example.test/a.jpg"}]
    return FetchedProduct.model_validate(
        {"id": product_id, "title": title, "handle": "wool-runner", "variants": variants, "images": images, **extra}
    )


def state_of(product, is_removed=False):
    return ProductState.from_fetched(product, is_removed=is_removed)


def test_same_feed_twice_yields_empty_diff():
    feed = [make_product(1), make_product(2, title="Tree Dasher")]
    persisted = [state_of(p) for p in feed]

    diff = DiffEngine().diff(persisted, feed)

    assert diff.is_empty
    assert diff.added == ()
    assert diff.updated == ()
    assert diff.removed == ()
    assert set(diff.unchanged_ids) == {"1", "2"}


def test_new_and_missing_products():
    persisted = [state_of(make_product(1)), state_of(make_product(2))]
    fetched = [make_product(1), make_product(3)]

    diff = DiffEngine().diff(persisted, fetched)

    assert [p.id for p in diff.added] == ["3"]
    assert [s.external_id for s in diff.removed] == ["2"]
    assert diff.updated == ()


def test_already_removed_product_is_not_removed_again():
    persisted = [state_of(make_product(1)), state_of(make_product(2), is_removed=True)]

    diff = DiffEngine().diff(persisted, [make_product(1)])

    assert diff.removed == ()


def test_reappearing_product_is_revived_not_added():
    persisted = [state_of(make_product(5), is_removed=True)]

    diff = DiffEngine().diff(persisted, [make_product(5)])

    assert diff.added == ()
    assert len(diff.updated) == 1
    update = diff.updated[0]
    assert update.revived is True
    assert update.variant_changes == ()
    assert not update.has_events


def test_price_and_stock_change_on_same_variant():
    before = make_product(variants=[{"id": 11, "price": "100.00", "available": True}])
    after = make_product(variants=[{"id": 11, "price": "80.00", "available": False}])

    diff = DiffEngine().diff([state_of(before)], [after])

    changes = diff.updated[0].variant_changes
    assert [c.dimension for c in changes] == [ChangeDimension.PRICE, ChangeDimension.AVAILABILITY]
    assert changes[0].old_value == Decimal("100.00")
    assert changes[0].new_value == Decimal("80.00")
    assert changes[1].old_value is True
    assert changes[1].new_value is False


def test_variants_matched_by_id_not_title():
    before = make_product(variants=[{"id": 11, "title": "Small", "price": "10"}])
    after = make_product(variants=[{"id": 11, "title": "S", "price": "10"}])

    diff = DiffEngine().diff([state_of(before)], [after])

    update = diff.updated[0]
    assert update.variant_changes == ()
    assert update.new_variants == ()
    assert update.dropped_variant_ids == ()
    assert update.metadata_changed is True


def test_title_only_change_is_metadata_update_without_events():
    before = make_product(title="Wool Runner")
    after = make_product(title="Wool Runner 2")

    diff = DiffEngine().diff([state_of(before)], [after])

    update = diff.updated[0]
    assert update.metadata_changed is True
    assert not update.has_events


def test_added_and_dropped_variants_reported_without_changes():
    before = make_product(variants=[{"id": 11, "price": "10"}, {"id": 12, "price": "12"}])
    after = make_product(variants=[{"id": 11, "price": "10"}, {"id": 13, "price": "14"}])

    diff = DiffEngine().diff([state_of(before)], [after])

    update = diff.updated[0]
    assert [v.id for v in update.new_variants] == ["13"]
    assert update.dropped_variant_ids == ("12",)
    assert update.variant_changes == ()


def test_image_reorder_is_not_an_image_change():
    images = [{"src": "https://cdn.example.test/a.jpg"}, {"src": "https://cdn.example.test/b.jpg"}]
    before = make_product(images=images)
    after = make_product(images=list(reversed(images)))

    diff = DiffEngine().diff([state_of(before)], [after])

    update = diff.updated[0]
    assert update.image_change is None
    assert update.metadata_changed is True


def test_image_set_change_carries_new_ordered_list():
    before = make_product(images=[{"src": "https://cdn.example.test/a.jpg"}])
    after = make_product(
        images=[{"src": "https://cdn.example.test/c.jpg"}, {"src": "https://cdn.example.test/a.jpg"}]
    )

    diff = DiffEngine().diff([state_of(before)], [after])

    change = diff.updated[0].image_change
    assert change.old_urls == ("https://cdn.example.test/a.jpg",)
    assert change.new_urls == ("https://cdn.example.test/c.jpg", "https://cdn.example.test/a.jpg")


def test_duplicate_products_in_feed_keep_first():
    first = make_product(1, title="First")
    second = make_product(1, title="Second")

    diff = DiffEngine().diff([], [first, second])

    assert [p.title for p in diff.added] == ["First"]
