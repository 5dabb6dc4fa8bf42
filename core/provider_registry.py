"""
Provider Registry - Central Registry for Price Providers

The ProviderRegistry holds every configured provider, in registry order, and
manages their lifecycle. Registry order is significant: the FallbackResolver
appends providers that are not in the configured priority list in this order.

Providers are constructed once from configuration (see
``providers.build_default_registry``) and never mutated afterwards.

Example Usage:
    registry = ProviderRegistry([CoinGeckoProvider(), YahooProvider()])
    await registry.initialize_all()

    provider = registry.get_provider("yahoo")
    quotes = await provider.fetch_quotes(["AAPL"], "USD")

    await registry.shutdown_all()
"""

from typing import Dict, Iterable, List

from core.errors import UnknownProviderError
from core.logging import get_logger
from core.provider_interface import ProviderInterface
from core.schemas import Capability, ProviderInfo

logger = get_logger(__name__)


class ProviderRegistry:
    """
    Registry of provider instances keyed by id.

    Attributes:
        providers: Mapping of provider id to instance, in registry order
    """

    def __init__(self, providers: Iterable[ProviderInterface]):
        self.providers: Dict[str, ProviderInterface] = {}
        for provider in providers:
            if provider.id in self.providers:
                raise ValueError(f"Duplicate provider id: {provider.id}")
            self.providers[provider.id] = provider

        logger.debug(f"ProviderRegistry created with: {', '.join(self.providers) or 'none'}")

    # ============================================
    # Provider Retrieval Methods
    # ============================================

    def get_provider(self, provider_id: str) -> ProviderInterface:
        """
        Get a provider by id (case-insensitive).

        Raises:
            UnknownProviderError: If no provider has this id

        Example:
            >>> registry.get_provider("Yahoo")
            <YahooProvider(id='yahoo')>
        """
        key = provider_id.strip().lower()
        if key not in self.providers:
            available = ", ".join(self.providers.keys())
            raise UnknownProviderError(
                f"Provider '{provider_id}' is not supported. Available providers: {available}"
            )
        return self.providers[key]

    def list_providers(self) -> List[str]:
        """Provider ids in registry order."""
        return list(self.providers.keys())

    def __iter__(self):
        return iter(self.providers.values())

    # ============================================
    # Descriptions
    # ============================================

    def describe(self) -> List[ProviderInfo]:
        """ProviderInfo for every registered provider, in registry order."""
        return [
            ProviderInfo(
                id=provider.id,
                name=provider.name,
                capabilities=[c for c in Capability if provider.supports(c)],
                available=provider.available,
                batches_quotes=provider.batches_quotes,
                max_hourly_window_days=(
                    provider.max_hourly_window.days if provider.max_hourly_window else None
                ),
            )
            for provider in self.providers.values()
        ]

    # ============================================
    # Lifecycle Management
    # ============================================

    async def initialize_all(self) -> None:
        """
        Initialize every registered provider.

        A provider that fails to initialize is logged and skipped; its calls
        will fail and be handled by fallback.
        """
        logger.info("Initializing providers...")
        for provider_id, provider in self.providers.items():
            try:
                await provider.initialize()
                logger.debug(f"✓ {provider.name} initialized")
            except Exception as e:
                logger.error(f"✗ Failed to initialize {provider_id}: {e}")
        logger.info(f"Providers initialized: {', '.join(self.providers)}")

    async def shutdown_all(self) -> None:
        """Shutdown every provider; errors are logged so all get a chance to close."""
        for provider_id, provider in self.providers.items():
            try:
                await provider.shutdown()
            except Exception as e:
                logger.error(f"✗ Error shutting down {provider_id}: {e}")
        logger.info("All providers shut down")

    async def health_check_all(self) -> Dict[str, bool]:
        health_status = {}
        for provider_id, provider in self.providers.items():
            try:
                health_status[provider_id] = await provider.health_check()
            except Exception as e:
                logger.error(f"Health check failed for {provider_id}: {e}")
                health_status[provider_id] = False
        return health_status

    # ============================================
    # Utility Methods
    # ============================================

    def __repr__(self) -> str:
        return f"<ProviderRegistry(providers={list(self.providers.keys())})>"

    def __len__(self) -> int:
        return len(self.providers)
