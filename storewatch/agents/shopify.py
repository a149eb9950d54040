"""Shopify storefront product feed agent."""

from decimal import Decimal
from typing import List, Optional, Tuple
from urllib.parse import urlencode, urljoin

import httpx
from loguru import logger
from pydantic import ValidationError

from ..errors import InvalidResponse, NetworkTimeout, NetworkUnavailable, ServerError
from ..storage.models import FetchedProduct
from .base_agent import BaseAgent


def normalize_domain(domain: str) -> str:
    """Strip scheme, path and trailing slashes from a store address."""
    domain = domain.strip()
    for prefix in ("https://", "http://"):
        if domain.lower().startswith(prefix):
            domain = domain[len(prefix):]
    return domain.split("/", 1)[0].lower()


class ShopifyAgent(BaseAgent):
    """Reads the public ``/products.json`` feed of a Shopify store.

    Pagination is cursor based: the agent follows the ``rel="next"`` link of
    the ``Link`` header, or a ``next_page`` / ``next_cursor`` value in the
    body, until neither is present. Pages are accumulated and returned as a
    single list because the diff needs the complete catalog.

    Failures map onto the sync error taxonomy:
    - connection failures -> NetworkUnavailable
    - deadline exceeded -> NetworkTimeout
    - status >= 500 -> ServerError(status)
    - any other non-2xx, or an unparseable body -> InvalidResponse
    """

    @property
    def source_name(self) -> str:
        return "shopify"

    @property
    def page_limit(self) -> int:
        return int(self.config.get("page_limit", 250))

    @property
    def max_pages(self) -> int:
        return int(self.config.get("max_pages", 200))

    def first_page_url(self, domain: str) -> str:
        scheme = "http" if domain.startswith("http://") else "https"
        return f"{scheme}://{normalize_domain(domain)}/products.json?limit={self.page_limit}"

    async def fetch_products(self, domain: str) -> List[FetchedProduct]:
        """Fetch every page of a store's product feed.

        Args:
            domain: Store domain, e.g. ``shop.example.com``

        Returns:
            Products in feed order
        """
        base_url = self.first_page_url(domain)
        url: Optional[str] = base_url
        products: List[FetchedProduct] = []
        visited = set()

        async with self.get_http_client() as client:
            while url:
                if url in visited:
                    raise InvalidResponse(f"Pagination cursor repeated: {url}")
                if len(visited) >= self.max_pages:
                    raise InvalidResponse(f"Feed exceeded {self.max_pages} pages")
                visited.add(url)

                page, url = await self._fetch_page(client, url, base_url)
                products.extend(page)

        logger.info(f"Fetched {len(products)} products from {domain} in {len(visited)} pages")
        return products

    async def _fetch_page(
        self, client: httpx.AsyncClient, url: str, base_url: str
    ) -> Tuple[List[FetchedProduct], Optional[str]]:
        try:
            response = await client.get(url)
        except httpx.TimeoutException as e:
            raise NetworkTimeout(str(e) or "request timed out") from e
        except httpx.TransportError as e:
            raise NetworkUnavailable(str(e) or type(e).__name__) from e

        status = response.status_code
        if status >= 500:
            raise ServerError(status)
        if not 200 <= status < 300:
            raise InvalidResponse(f"HTTP {status} from {url}")

        try:
            # Numeric prices stay exact
            data = response.json(parse_float=Decimal)
        except ValueError as e:
            raise InvalidResponse("Response body is not JSON") from e

        if not isinstance(data, dict) or not isinstance(data.get("products"), list):
            raise InvalidResponse("Response has no products list")

        try:
            page = [FetchedProduct.model_validate(item) for item in data["products"]]
        except ValidationError as e:
            raise InvalidResponse(f"Malformed product in feed: {e.errors()[0].get('msg')}") from e

        return page, self._next_url(response, data, base_url)

    def _next_url(self, response: httpx.Response, data: dict, base_url: str) -> Optional[str]:
        link = response.links.get("next")
        if link and link.get("url"):
            return urljoin(str(response.url), link["url"])

        next_page = data.get("next_page")
        if next_page:
            return urljoin(str(response.url), str(next_page))

        cursor = data.get("next_cursor") or data.get("page_info")
        if cursor:
            return f"{base_url}&{urlencode({'page_info': cursor})}"

        return None
