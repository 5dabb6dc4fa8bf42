"""
CoinGecko Provider

Implements ProviderInterface on top of the public CoinGecko v3 API.

CoinGecko covers crypto assets only, but for those it offers everything:
- batched spot prices (one call for the whole request)
- price history (hourly up to 90 days back, daily beyond)
- coin search

API Documentation:
    https://docs.coingecko.com/v3.0.1/reference/introduction

Structure:
    providers/coingecko/
    ├── __init__.py          # This file (CoinGeckoProvider class)
    └── api_client.py        # REST client with aiohttp
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from core.logging import logger
from core.provider_interface import ProviderInterface
from core.schemas import Capability, PriceHistory, Quote, Sampling, SearchResult
from .api_client import CoinGeckoAPIClient


class CoinGeckoProvider(ProviderInterface):
    """
    CoinGecko Price Provider

    Example:
        >>> provider = CoinGeckoProvider()
        >>> await provider.initialize()
        >>> quotes = await provider.fetch_quotes(["BTC", "ETH"], "USD")
        >>> await provider.shutdown()
    """

    # ============================================
    # Class Attributes
    # ============================================

    id = "coingecko"
    name = "CoinGecko"
    capabilities = frozenset({Capability.SPOT_QUOTE, Capability.HISTORY, Capability.SEARCH})
    batches_quotes = True
    max_hourly_window = timedelta(days=90)

    # ============================================
    # Initialization
    # ============================================

    def __init__(self, timeout: float = 10, max_concurrency: int = 8, base_url: Optional[str] = None):
        super().__init__(max_concurrency=max_concurrency)
        self.client = CoinGeckoAPIClient(timeout=timeout, base_url=base_url)

    async def initialize(self) -> None:
        logger.info("Initializing CoinGecko provider...")
        await self.client.__aenter__()
        logger.info("✓ CoinGecko provider initialized")

    async def shutdown(self) -> None:
        await self.client.__aexit__(None, None, None)
        logger.info("✓ CoinGecko provider shut down")

    # ============================================
    # Capability Methods
    # ============================================

    async def fetch_quotes(self, symbols: Sequence[str], currency: str) -> List[Quote]:
        """
        CoinGecko Endpoint:
            GET /simple/price (all symbols in one call)
        """
        found = await self.client.get_quotes(symbols, currency)
        return self._assemble_quotes(symbols, found)

    async def fetch_history(
        self,
        symbol: str,
        currency: str,
        start: datetime,
        end: datetime,
        sampling: Sampling,
    ) -> PriceHistory:
        return await self.client.get_history(symbol, currency, start, end, sampling)

    async def search(self, query: str, limit: int) -> List[SearchResult]:
        return await self.client.search(query, limit)
