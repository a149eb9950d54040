"""Base agent class for catalog feed agents"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from ..storage.models import FetchedProduct


class BaseAgent(ABC):
    """Abstract base class for all catalog feed agents"""

    def __init__(self, config: Optional[dict] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        config = config or {}
        self.config = config
        self.timeout = float(config.get("timeout", 30.0))
        self.user_agent = config.get("user_agent", "storewatch/1.0")
        self.transport = transport

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Unique identifier for this feed type"""
        pass

    @abstractmethod
    async def fetch_products(self, domain: str) -> list[FetchedProduct]:
        """Fetch the complete current catalog of a store"""
        pass

    def get_http_client(self) -> httpx.AsyncClient:
        """Get configured HTTP client"""
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._get_headers(),
            follow_redirects=True,
            transport=self.transport,
        )

    def _get_headers(self) -> dict:
        return {
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }
