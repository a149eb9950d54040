import json
from decimal import Decimal

import httpx
import pytest
import respx

from storewatch.alerts.discord import DiscordNotifier
from storewatch.alerts.filters import (
    NotificationFilter,
    NotificationPriority,
    PriceThreshold,
    determine_priority,
    priority_for,
)
from storewatch.alerts.notifier import Notification, Notifier, format_body
from storewatch.storage.models import ChangeEventDTO, ChangeMagnitude, ChangeType

WEBHOOK = "https://discord.example.test/api/webhooks/1/token"


def event(change_type, magnitude=ChangeMagnitude.MEDIUM, price_change=None, store_id="s1", store_name="Shop"):
    return ChangeEventDTO(
        change_type=change_type,
        product_title="Trail Shoe",
        variant_title="9",
        old_value="$100.00",
        new_value="$80.00",
        price_change=price_change,
        magnitude=magnitude,
        store_id=store_id,
        store_name=store_name,
    )


def test_priority_rules():
    assert priority_for(event(ChangeType.BACK_IN_STOCK)) == NotificationPriority.TIME_SENSITIVE
    assert priority_for(event(ChangeType.PRICE_DROPPED, ChangeMagnitude.LARGE)) == NotificationPriority.TIME_SENSITIVE
    assert priority_for(event(ChangeType.PRICE_DROPPED, ChangeMagnitude.MEDIUM)) == NotificationPriority.ACTIVE
    assert priority_for(event(ChangeType.PRICE_DROPPED, ChangeMagnitude.SMALL)) == NotificationPriority.PASSIVE
    assert priority_for(event(ChangeType.OUT_OF_STOCK)) == NotificationPriority.ACTIVE
    assert priority_for(event(ChangeType.IMAGES_CHANGED)) == NotificationPriority.PASSIVE


def test_group_priority_is_highest():
    events = [event(ChangeType.PRICE_DROPPED, ChangeMagnitude.SMALL), event(ChangeType.BACK_IN_STOCK)]
    assert determine_priority(events) == NotificationPriority.TIME_SENSITIVE
    assert determine_priority([]) == NotificationPriority.PASSIVE


def test_dollar_thresholds():
    threshold = PriceThreshold.DOLLARS_10
    assert threshold.is_satisfied(event(ChangeType.PRICE_DROPPED, price_change=Decimal("-10.00")))
    assert not threshold.is_satisfied(event(ChangeType.PRICE_DROPPED, price_change=Decimal("-9.99")))
    assert threshold.is_satisfied(event(ChangeType.BACK_IN_STOCK))


def test_percent_thresholds_use_magnitude():
    ten = PriceThreshold.PERCENT_10
    twenty_five = PriceThreshold.PERCENT_25

    assert ten.is_satisfied(event(ChangeType.PRICE_DROPPED, ChangeMagnitude.MEDIUM))
    assert not ten.is_satisfied(event(ChangeType.PRICE_DROPPED, ChangeMagnitude.SMALL))
    assert twenty_five.is_satisfied(event(ChangeType.PRICE_DROPPED, ChangeMagnitude.LARGE))
    assert not twenty_five.is_satisfied(event(ChangeType.PRICE_DROPPED, ChangeMagnitude.MEDIUM))


def test_filter_types_and_thresholds():
    notification_filter = NotificationFilter(
        {"types": {"outOfStock": False}, "price_increase_threshold": "dollars5"}
    )
    events = [
        event(ChangeType.OUT_OF_STOCK),
        event(ChangeType.IMAGES_CHANGED),
        event(ChangeType.PRICE_INCREASED, price_change=Decimal("2.00")),
        event(ChangeType.PRICE_INCREASED, price_change=Decimal("6.00")),
        event(ChangeType.BACK_IN_STOCK),
    ]

    kept = notification_filter.apply(events)

    assert [(e.change_type, e.price_change) for e in kept] == [
        (ChangeType.PRICE_INCREASED, Decimal("6.00")),
        (ChangeType.BACK_IN_STOCK, None),
    ]


def test_format_body():
    events = [
        event(ChangeType.PRICE_DROPPED),
        event(ChangeType.PRICE_DROPPED),
        event(ChangeType.BACK_IN_STOCK),
    ]
    assert format_body(events) == "2 price drops, 1 back in stock"
    assert format_body([event(ChangeType.NEW_PRODUCT)]) == "1 new product"
    assert format_body([event(ChangeType.IMAGES_CHANGED)] * 2) == "2 changes detected"


def test_build_groups_by_store():
    notifier = Notifier({})
    notifications = notifier.build([
        event(ChangeType.PRICE_DROPPED, store_id="a", store_name="Alpha"),
        event(ChangeType.BACK_IN_STOCK, store_id="b", store_name="Beta"),
        event(ChangeType.OUT_OF_STOCK, store_id="a", store_name="Alpha"),
    ])

    assert [(n.store_id, n.title, len(n.events)) for n in notifications] == [("a", "Alpha", 2), ("b", "Beta", 1)]
    assert notifications[1].priority == NotificationPriority.TIME_SENSITIVE


@pytest.mark.asyncio
async def test_disabled_notifier_sends_nothing():
    notifier = Notifier({"enabled": False})

    assert await notifier.send([event(ChangeType.BACK_IN_STOCK)]) == 0
    assert notifier.sent == []


@pytest.mark.asyncio
@respx.mock
async def test_discord_posts_embed():
    route = respx.post(WEBHOOK).mock(return_value=httpx.Response(204))
    notifier = Notifier({}, [DiscordNotifier(WEBHOOK)])

    delivered = await notifier.send([event(ChangeType.PRICE_DROPPED, ChangeMagnitude.LARGE)])

    assert delivered == 1
    assert route.called
    payload = json.loads(route.calls.last.request.content)
    embed = payload["embeds"][0]
    assert embed["title"] == "Shop"
    assert embed["description"] == "1 price drop"
    assert embed["color"] == DiscordNotifier.COLORS[NotificationPriority.TIME_SENSITIVE]
    assert embed["fields"][0]["name"] == "Price drop: Trail Shoe (9)"
    assert embed["fields"][0]["value"] == "$100.00 → $80.00"


@pytest.mark.asyncio
@respx.mock
async def test_discord_failure_returns_false():
    respx.post(WEBHOOK).mock(return_value=httpx.Response(500))
    notification = Notification(
        title="Shop",
        body="1 back in stock",
        priority=NotificationPriority.TIME_SENSITIVE,
        events=(event(ChangeType.BACK_IN_STOCK),),
    )

    assert await DiscordNotifier(WEBHOOK).deliver(notification) is False


@pytest.mark.asyncio
async def test_discord_without_webhook_is_skipped():
    notification = Notification(title="Shop", body="", priority=NotificationPriority.PASSIVE)

    assert await DiscordNotifier("").deliver(notification) is False
