"""
Yahoo Finance Provider

Stocks, ETFs, indices and crypto pairs (``BTC-USD``) from Yahoo Finance.
There is no batch quote endpoint, so quotes are fetched one symbol at a
time, concurrently under the worker budget.

Structure:
    providers/yahoo/
    ├── __init__.py          # This file (YahooProvider class)
    └── api_client.py        # REST client with aiohttp
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from core.logging import logger
from core.provider_interface import ProviderInterface
from core.schemas import Capability, PriceHistory, Quote, Sampling, SearchResult
from .api_client import YahooAPIClient


class YahooProvider(ProviderInterface):

    id = "yahoo"
    name = "Yahoo Finance"
    capabilities = frozenset({Capability.SPOT_QUOTE, Capability.HISTORY, Capability.SEARCH})
    batches_quotes = False
    # Yahoo keeps 1h bars for roughly two years.
    max_hourly_window = timedelta(days=730)

    def __init__(self, timeout: float = 10, max_concurrency: int = 8, base_url: Optional[str] = None):
        super().__init__(max_concurrency=max_concurrency)
        self.client = YahooAPIClient(timeout=timeout, base_url=base_url)

    async def initialize(self) -> None:
        await self.client.__aenter__()
        logger.info("✓ Yahoo Finance provider initialized")

    async def shutdown(self) -> None:
        await self.client.__aexit__(None, None, None)

    async def fetch_quotes(self, symbols: Sequence[str], currency: str) -> List[Quote]:
        return await self._quotes_per_symbol(
            symbols, lambda symbol: self.client.get_quote(symbol, currency)
        )

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
