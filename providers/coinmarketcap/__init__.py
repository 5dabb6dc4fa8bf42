"""
CoinMarketCap Provider

Crypto quotes and history from the CoinMarketCap Pro API. The provider is
registered even without an API key, but then reports itself unavailable
and is skipped by the fallback chain.

Structure:
    providers/coinmarketcap/
    ├── __init__.py          # This file (CoinMarketCapProvider class)
    └── api_client.py        # REST client with aiohttp
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from core.logging import logger
from core.provider_interface import ProviderInterface
from core.schemas import Capability, PriceHistory, Quote, Sampling
from .api_client import CoinMarketCapAPIClient


class CoinMarketCapProvider(ProviderInterface):
    """
    CoinMarketCap Price Provider

    Example:
        >>> provider = CoinMarketCapProvider(api_key="...")
        >>> provider.available
        True
        >>> CoinMarketCapProvider(api_key=None).unavailable_reason
        'missing API key'
    """

    id = "cmc"
    name = "CoinMarketCap"
    capabilities = frozenset({Capability.SPOT_QUOTE, Capability.HISTORY})
    batches_quotes = True
    max_hourly_window = timedelta(days=30)

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 10,
        max_concurrency: int = 8,
        base_url: Optional[str] = None,
    ):
        super().__init__(max_concurrency=max_concurrency)
        self.api_key = api_key or None
        self.client: Optional[CoinMarketCapAPIClient] = (
            CoinMarketCapAPIClient(self.api_key, timeout=timeout, base_url=base_url)
            if self.api_key
            else None
        )

    @property
    def available(self) -> bool:
        return self.client is not None

    @property
    def unavailable_reason(self) -> Optional[str]:
        return None if self.available else "missing API key"

    async def initialize(self) -> None:
        if not self.client:
            logger.info("CoinMarketCap provider disabled: missing API key")
            return
        await self.client.__aenter__()
        logger.info("✓ CoinMarketCap provider initialized")

    async def shutdown(self) -> None:
        if self.client:
            await self.client.__aexit__(None, None, None)

    async def fetch_quotes(self, symbols: Sequence[str], currency: str) -> List[Quote]:
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
