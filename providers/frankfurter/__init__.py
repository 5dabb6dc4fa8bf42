"""
Frankfurter Fiat-Rate Provider

ECB reference rates for fiat conversion targets and all-fiat charts. This
provider is not an asset provider: it has no spot quotes for symbols, is
not registered in the ProviderRegistry and never appears in an asset
fallback chain.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, Sequence

from core.logging import logger
from core.schemas import PriceHistory
from .api_client import FrankfurterAPIClient


class FrankfurterProvider:
    """
    Example:
        >>> fx = FrankfurterProvider()
        >>> await fx.initialize()
        >>> await fx.fetch_rates("USD", ["EUR", "GBP"])
        {'EUR': Decimal('0.9215'), 'GBP': Decimal('0.7843')}
    """

    id = "frankfurter"
    name = "Frankfurter (ECB)"
    available = True
    unavailable_reason = None

    def __init__(self, timeout: float = 10, base_url: Optional[str] = None):
        self.client = FrankfurterAPIClient(timeout=timeout, base_url=base_url)

    async def initialize(self) -> None:
        await self.client.__aenter__()
        logger.info("✓ Frankfurter fiat-rate provider initialized")

    async def shutdown(self) -> None:
        await self.client.__aexit__(None, None, None)

    async def health_check(self) -> bool:
        return self.client.session is not None

    async def fetch_rates(self, base: str, targets: Sequence[str]) -> Dict[str, Decimal]:
        return await self.client.get_latest_rates(base, targets)

    async def fetch_rate_history(
        self,
        base: str,
        targets: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> Dict[str, PriceHistory]:
        return await self.client.get_rate_history(base, targets, start, end)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id='{self.id}')>"
