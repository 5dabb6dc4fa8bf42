"""
Price Providers Package

One sub-package per external data source. Each has:
- api_client.py: HTTP calls and response normalization (aiohttp)
- __init__.py: the provider class implementing ProviderInterface

Adding a provider means adding a sub-package and listing it in
``build_default_registry``; the engine never changes.
"""

from typing import Optional

from core.config import Settings
from core.provider_registry import ProviderRegistry
from providers.coingecko import CoinGeckoProvider
from providers.coinmarketcap import CoinMarketCapProvider
from providers.frankfurter import FrankfurterProvider
from providers.stooq import StooqProvider
from providers.yahoo import YahooProvider

__all__ = [
    "CoinGeckoProvider",
    "CoinMarketCapProvider",
    "FrankfurterProvider",
    "StooqProvider",
    "YahooProvider",
    "build_default_registry",
    "build_fiat_provider",
]


def build_default_registry(settings: Settings) -> ProviderRegistry:
    """
    Registry of every asset provider, in registry order:
    coingecko, cmc, yahoo, stooq.
    """
    timeout = settings.request_timeout
    workers = settings.max_concurrent_requests
    return ProviderRegistry(
        [
            CoinGeckoProvider(timeout=timeout, max_concurrency=workers),
            CoinMarketCapProvider(
                api_key=settings.coinmarketcap_api_key, timeout=timeout, max_concurrency=workers
            ),
            YahooProvider(timeout=timeout, max_concurrency=workers),
            StooqProvider(timeout=timeout, max_concurrency=workers),
        ]
    )


def build_fiat_provider(settings: Optional[Settings] = None) -> FrankfurterProvider:
    return FrankfurterProvider(timeout=settings.request_timeout if settings else 10)
