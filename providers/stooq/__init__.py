"""
Stooq Provider

Stock and ETF quotes plus daily history from Stooq. Hourly history is not
offered, so hourly chart requests skip this provider.

Structure:
    providers/stooq/
    ├── __init__.py          # This file (StooqProvider class)
    └── api_client.py        # CSV client with aiohttp
"""

from datetime import datetime
from typing import List, Optional, Sequence

from core.logging import logger
from core.provider_interface import ProviderInterface
from core.schemas import Capability, PriceHistory, Quote, Sampling, SearchResult
from .api_client import StooqAPIClient


class StooqProvider(ProviderInterface):

    id = "stooq"
    name = "Stooq"
    capabilities = frozenset({Capability.SPOT_QUOTE, Capability.HISTORY, Capability.SEARCH})
    batches_quotes = False
    max_hourly_window = None

    def __init__(
        self,
        timeout: float = 10,
        max_concurrency: int = 8,
        base_url: Optional[str] = None,
        search_base_url: Optional[str] = None,
    ):
        super().__init__(max_concurrency=max_concurrency)
        self.client = StooqAPIClient(timeout=timeout, base_url=base_url, search_base_url=search_base_url)

    async def initialize(self) -> None:
        await self.client.__aenter__()
        logger.info("✓ Stooq provider initialized")

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
