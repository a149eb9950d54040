from decimal import Decimal

import httpx
import pytest
import respx

from storewatch.agents.shopify import ShopifyAgent, normalize_domain
from storewatch.errors import InvalidResponse, NetworkTimeout, NetworkUnavailable, ServerError

FIRST_PAGE = "https://shop.example.test/products.json?limit=250"


def product_json(product_id, price="19.99", available=True):
    return {
        "id": product_id,
        "title": f"Product {product_id}",
        "handle": f"product-{product_id}",
        "vendor": "Acme",
        "product_type": "Widget",
        "images": [{"id": 1, "src": f"https://cdn.example.test/{product_id}.jpg"}],
        "variants": [
            {
                "id": product_id * 10,
                "title": "Default Title",
                "sku": None,
                "price": price,
                "compare_at_price": None,
                "available": available,
                "position": 1,
            }
        ],
    }


def test_normalize_domain():
    assert normalize_domain("https://Shop.Example.test/collections/all") == "shop.example.test"
    assert normalize_domain("shop.example.test/") == "shop.example.test"


@pytest.mark.asyncio
@respx.mock
async def test_fetch_single_page_parses_decimal_prices():
    respx.get(FIRST_PAGE).mock(
        return_value=httpx.Response(200, json={"products": [product_json(1, price="1234.50")]})
    )

    products = await ShopifyAgent().fetch_products("shop.example.test")

    assert len(products) == 1
    product = products[0]
    assert product.id == "1"
    assert product.image_urls == ["https://cdn.example.test/1.jpg"]
    assert product.variants[0].id == "10"
    assert product.variants[0].price == Decimal("1234.50")
    assert isinstance(product.variants[0].price, Decimal)


@pytest.mark.asyncio
@respx.mock
async def test_follows_link_header_until_absent():
    next_url = "https://shop.example.test/products.json?limit=250&page_info=abc"
    respx.get(next_url).mock(
        return_value=httpx.Response(200, json={"products": [product_json(2)]})
    )
    respx.get(FIRST_PAGE).mock(
        return_value=httpx.Response(
            200,
            json={"products": [product_json(1)]},
            headers={"Link": f'<{next_url}>; rel="next"'},
        )
    )

    products = await ShopifyAgent().fetch_products("shop.example.test")

    assert [p.id for p in products] == ["1", "2"]


@pytest.mark.asyncio
@respx.mock
async def test_follows_body_cursor():
    second = "https://shop.example.test/products.json?limit=250&page_info=cursor-2"
    respx.get(second).mock(return_value=httpx.Response(200, json={"products": [product_json(2)]}))
    respx.get(FIRST_PAGE).mock(
        return_value=httpx.Response(200, json={"products": [product_json(1)], "next_cursor": "cursor-2"})
    )

    products = await ShopifyAgent().fetch_products("shop.example.test")

    assert [p.id for p in products] == ["1", "2"]


@pytest.mark.asyncio
@respx.mock
async def test_repeated_cursor_is_invalid_response():
    respx.get(FIRST_PAGE).mock(
        return_value=httpx.Response(
            200,
            json={"products": [product_json(1)]},
            headers={"Link": f'<{FIRST_PAGE}>; rel="next"'},
        )
    )

    with pytest.raises(InvalidResponse):
        await ShopifyAgent().fetch_products("shop.example.test")


@pytest.mark.asyncio
@respx.mock
async def test_page_cap_is_invalid_response():
    pages = iter(range(1, 100))
    respx.get(url__startswith="https://shop.example.test/products.json").mock(
        side_effect=lambda request: httpx.Response(
            200, json={"products": [], "next_cursor": f"cursor-{next(pages)}"}
        )
    )

    with pytest.raises(InvalidResponse):
        await ShopifyAgent({"max_pages": 3}).fetch_products("shop.example.test")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [500, 502, 503])
async def test_server_errors(status):
    with respx.mock:
        respx.get(FIRST_PAGE).mock(return_value=httpx.Response(status))

        with pytest.raises(ServerError) as exc_info:
            await ShopifyAgent().fetch_products("shop.example.test")

    assert exc_info.value.status_code == status


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 404, 429])
async def test_client_errors_are_invalid_response(status):
    with respx.mock:
        respx.get(FIRST_PAGE).mock(return_value=httpx.Response(status))

        with pytest.raises(InvalidResponse):
            await ShopifyAgent().fetch_products("shop.example.test")


@pytest.mark.asyncio
@respx.mock
async def test_non_json_body_is_invalid_response():
    respx.get(FIRST_PAGE).mock(return_value=httpx.Response(200, text="<html>password page</html>"))

    with pytest.raises(InvalidResponse):
        await ShopifyAgent().fetch_products("shop.example.test")


@pytest.mark.asyncio
@respx.mock
async def test_malformed_price_is_invalid_response():
    respx.get(FIRST_PAGE).mock(
        return_value=httpx.Response(200, json={"products": [product_json(1, price="twelve")]})
    )

    with pytest.raises(InvalidResponse):
        await ShopifyAgent().fetch_products("shop.example.test")


@pytest.mark.asyncio
@respx.mock
async def test_timeout_maps_to_network_timeout():
    respx.get(FIRST_PAGE).mock(side_effect=httpx.ReadTimeout("timed out"))

    with pytest.raises(NetworkTimeout):
        await ShopifyAgent().fetch_products("shop.example.test")


@pytest.mark.asyncio
@respx.mock
async def test_connect_error_maps_to_network_unavailable():
    respx.get(FIRST_PAGE).mock(side_effect=httpx.ConnectError("connection refused"))

    with pytest.raises(NetworkUnavailable):
        await ShopifyAgent().fetch_products("shop.example.test")


@pytest.mark.asyncio
@respx.mock
async def test_numeric_prices_are_read_exactly():
    body = (
        b'{"products": [{"id": 5, "title": "Mug", "variants": '
        b'[{"id": 50, "price": 19.99, "compare_at_price": 24.9, "available": true}]}]}'
    )
    respx.get(FIRST_PAGE).mock(return_value=httpx.Response(200, content=body))

    products = await ShopifyAgent().fetch_products("shop.example.test")

    variant = products[0].variants[0]
    assert variant.price == Decimal("19.99")
    assert variant.compare_at_price == Decimal("24.90")
