"""
Provider Interface - Abstract Contract for All Price Providers

This module defines the abstract base class that every data-source adapter
must implement. The engine (FallbackResolver, SearchMerger, ConversionEngine)
only ever talks to ProviderInterface, never to a concrete adapter, so adding
a provider never touches the orchestration code.

Capabilities System:
    Each provider declares a fixed set of capabilities at class level:

        capabilities = frozenset({Capability.SPOT_QUOTE, Capability.HISTORY})

    The set never changes at runtime. Operations a provider does not declare
    fail with UnsupportedCapabilityError before any network call.

Batching:
    Providers with a multi-symbol endpoint (``batches_quotes = True``) send all
    symbols of one logical request in a single call. Providers without one
    issue one call per symbol through ``_quotes_per_symbol``, which runs the
    calls concurrently under the worker budget and re-assembles the results
    in input order.

Example:
    class CoinGeckoProvider(ProviderInterface):
        id = "coingecko"
        name = "CoinGecko"
        capabilities = frozenset({Capability.SPOT_QUOTE, Capability.HISTORY, Capability.SEARCH})
        batches_quotes = True
        max_hourly_window = timedelta(days=90)

        async def fetch_quotes(self, symbols, currency):
            ...

    provider = registry.get_provider("coingecko")
    quotes = await provider.fetch_quotes(["BTC", "ETH"], "USD")
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional, Sequence

from core.chart import auto_sampling
from core.errors import NotFoundError, UnsupportedCapabilityError
from core.schemas import Capability, PriceHistory, Quote, Sampling, SearchResult
from core.utils.concurrency import gather_bounded


class ProviderInterface(ABC):
    """
    Abstract Base Class for Price Providers

    Class Attributes:
        id: Unique provider identifier (lowercase, e.g. "coingecko")
        name: Human-readable name (e.g. "CoinGecko")
        capabilities: Capabilities this provider supports
        batches_quotes: True if fetch_quotes uses one call for all symbols
        max_hourly_window: Longest window served with hourly sampling
                           (None = hourly sampling unsupported)

    Abstract Methods:
        - fetch_quotes: Spot quotes for a batch of symbols

    Optional Methods (default raises UnsupportedCapabilityError):
        - fetch_history: Historical series for one symbol
        - search: Ticker search

    Lifecycle Methods:
        - initialize / shutdown / health_check
    """

    # ============================================
    # Class Attributes (must be set by subclasses)
    # ============================================

    id: str
    name: str
    capabilities: FrozenSet[Capability] = frozenset()
    batches_quotes: bool = False
    max_hourly_window: Optional[timedelta] = None

    def __init__(self, max_concurrency: int = 8):
        self.max_concurrency = max_concurrency

    @property
    def available(self) -> bool:
        """False when the provider cannot be used (e.g. credential missing)."""
        return True

    @property
    def unavailable_reason(self) -> Optional[str]:
        return None

    # ============================================
    # Capability Methods
    # ============================================

    @abstractmethod
    async def fetch_quotes(self, symbols: Sequence[str], currency: str) -> List[Quote]:
        """
        Fetch spot quotes for ``symbols`` in ``currency``.

        Args:
            symbols: Non-empty ordered sequence of symbols
            currency: Quote currency code (uppercase)

        Returns:
            One Quote per symbol, in input order

        Raises:
            NotFoundError: With ``symbols`` set to every symbol the provider
                could not resolve. No partial result is returned.
            ProviderError: Any other provider failure
        """
        ...

    async def fetch_history(
        self,
        symbol: str,
        currency: str,
        start: datetime,
        end: datetime,
        sampling: Sampling,
    ) -> PriceHistory:
        """
        Fetch raw history for one symbol covering ``[start, end]``.

        ``sampling`` is always concrete (hourly or daily). Points may be
        unsorted or slightly outside the window; ChartNormalizer cleans them.
        """
        raise UnsupportedCapabilityError(f"{self.name} does not provide price history", self.id)

    async def search(self, query: str, limit: int) -> List[SearchResult]:
        """Search tickers, ordered by the provider's own relevance."""
        raise UnsupportedCapabilityError(f"{self.name} does not provide ticker search", self.id)

    # ============================================
    # Lifecycle Methods
    # ============================================

    async def initialize(self) -> None:
        """Open network resources. Called by ProviderRegistry.initialize_all()."""
        pass

    async def shutdown(self) -> None:
        """Release network resources. Must not raise."""
        pass

    async def health_check(self) -> bool:
        return self.available

    # ============================================
    # Helper Methods
    # ============================================

    def supports(self, capability: Capability) -> bool:
        """
        Check if this provider declares ``capability``.

        Example:
            >>> if provider.supports(Capability.SEARCH):
            ...     results = await provider.search("apple", 10)
        """
        return capability in self.capabilities

    def check_history_support(self, start: datetime, end: datetime, sampling: Sampling) -> None:
        """
        Raise UnsupportedCapabilityError if this provider cannot serve the
        requested sampling for ``[start, end]``. Never touches the network.
        """
        if not self.supports(Capability.HISTORY):
            raise UnsupportedCapabilityError(f"{self.name} does not provide price history", self.id)
        if sampling == Sampling.AUTO:
            raise ValueError("sampling must be resolved before checking provider support")
        if sampling == Sampling.HOURLY:
            if self.max_hourly_window is None:
                raise UnsupportedCapabilityError(
                    f"{self.name} does not provide hourly history", self.id
                )
            if end - start > self.max_hourly_window:
                raise UnsupportedCapabilityError(
                    f"{self.name} serves hourly history for at most "
                    f"{self.max_hourly_window.days} days",
                    self.id,
                )

    def history_sampling(self, requested: Sampling, start: datetime, end: datetime) -> Sampling:
        """
        Concrete sampling this provider uses for a history request.

        ``auto`` prefers hourly for short windows and degrades to daily when
        this provider cannot serve hourly for ``[start, end]``. An explicit
        sampling is kept, and rejected if this provider cannot serve it.

        Raises:
            UnsupportedCapabilityError: No history, or an explicit sampling
                this provider cannot serve for the window

        Example:
            >>> stooq.history_sampling(Sampling.AUTO, now - timedelta(days=1), now)
            <Sampling.DAILY: 'daily'>
        """
        if requested != Sampling.AUTO:
            self.check_history_support(start, end, requested)
            return requested

        self.check_history_support(start, end, Sampling.DAILY)
        if auto_sampling(start, end) == Sampling.HOURLY and self._serves_hourly(start, end):
            return Sampling.HOURLY
        return Sampling.DAILY

    def _serves_hourly(self, start: datetime, end: datetime) -> bool:
        return self.max_hourly_window is not None and end - start <= self.max_hourly_window

    def _assemble_quotes(self, symbols: Sequence[str], found: Dict[str, Quote]) -> List[Quote]:
        """
        Order ``found`` (keyed by uppercase request symbol) by ``symbols``.

        Raises:
            NotFoundError: If any requested symbol is missing from ``found``
        """
        missing = [s.upper() for s in symbols if s.upper() not in found]
        if missing:
            raise NotFoundError(
                f"Unknown symbol(s): {', '.join(missing)}", self.id, symbols=missing
            )
        return [found[s.upper()] for s in symbols]

    async def _quotes_per_symbol(
        self,
        symbols: Sequence[str],
        fetch_one: Callable[[str], Awaitable[Optional[Quote]]],
    ) -> List[Quote]:
        """
        One concurrent call per symbol, joined before judging the batch.

        ``fetch_one`` returns None (or raises NotFoundError) for a symbol the
        provider cannot resolve. Any other failure is re-raised after all
        calls have finished; otherwise unresolved symbols are reported
        together in a single NotFoundError.
        """
        results = await gather_bounded(symbols, fetch_one, self.max_concurrency)

        found: Dict[str, Quote] = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, NotFoundError) or result is None:
                continue
            if isinstance(result, BaseException):
                raise result
            found[symbol.upper()] = result

        return self._assemble_quotes(symbols, found)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(id='{self.id}')>"
