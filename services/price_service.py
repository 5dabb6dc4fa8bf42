"""
Price Service

Request-level facade over the engine. It owns the provider lifecycle, turns
a PriceRequest into engine calls and returns response models ready to be
rendered.

Responsibilities:
    - build the registry, fiat-rate provider, cache and engine components
      from a Settings instance
    - expand "@group" symbol tokens
    - route quote / chart / search / convert requests
    - open provider sessions on initialize() and close them on shutdown()

Usage:
    async with PriceService(settings) as service:
        response = await service.quote(["BTC", "ETH"], currency="EUR")
        charts = await service.chart(["AAPL"], ChartWindowRequest(preset="6M"))
        results = await service.search("apple")
        outcomes = await service.convert("100usd", ["BTC", "EUR"])
"""

from datetime import datetime
from typing import Callable, List, Optional, Sequence, Union

from core.chart import ChartNormalizer, ChartWindow
from core.config import Settings, TTLTable
from core.conversion import ConversionEngine, parse_conversion_token
from core.errors import (
    AllProvidersFailedError,
    EmptyRequestError,
    NotFoundError,
    UnknownSymbolGroupError,
    UnsupportedCapabilityError,
)
from core.fallback import FallbackResolver
from core.fiat import is_known_fiat
from core.logging import get_logger
from core.operations import fiat_history_operation, history_operation, quotes_operation
from core.provider_registry import ProviderRegistry
from core.schemas import (
    Capability,
    ChartSeriesOutcome,
    ChartWindowRequest,
    ConversionOutcome,
    ErrorDetail,
    PriceRequest,
    ProviderInfo,
    QuoteResponse,
    Sampling,
    SearchResponse,
)
from core.search import SearchMerger
from core.utils.concurrency import gather_bounded
from core.utils.time import current_utc_datetime
from providers import build_default_registry, build_fiat_provider
from storage.cache import FileCache, NullCache, ResponseCache

logger = get_logger(__name__)

GROUP_PREFIX = "@"


class PriceService:
    """
    Attributes:
        settings: Configuration the service was built from
        registry: Asset providers
        fiat_provider: Reference-rate provider
        cache: Response cache shared by every provider
        resolver: FallbackResolver
        normalizer: ChartNormalizer
        conversion: ConversionEngine
        searcher: SearchMerger
    """

    def __init__(
        self,
        settings: Settings,
        registry: Optional[ProviderRegistry] = None,
        cache: Optional[ResponseCache] = None,
        fiat_provider=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.clock = clock or current_utc_datetime
        self.registry = registry if registry is not None else build_default_registry(settings)
        self.fiat_provider = fiat_provider if fiat_provider is not None else build_fiat_provider(settings)
        self.cache = cache if cache is not None else self._build_cache(settings)

        workers = settings.max_concurrent_requests
        self.resolver = FallbackResolver(
            self.registry,
            self.cache,
            TTLTable.from_settings(settings),
            priority=settings.provider_order_list,
        )
        self.normalizer = ChartNormalizer(clock=self.clock)
        self.conversion = ConversionEngine(self.resolver, self.fiat_provider, workers, clock=self.clock)
        self.searcher = SearchMerger(self.resolver, workers)

    def _build_cache(self, settings: Settings) -> ResponseCache:
        if not settings.cache_enabled:
            logger.info("Response cache disabled")
            return NullCache(clock=self.clock)
        logger.info(f"Response cache at {settings.cache_path}")
        return FileCache(settings.cache_path, clock=self.clock)

    # ============================================
    # Lifecycle
    # ============================================

    async def initialize(self) -> None:
        await self.registry.initialize_all()
        await self.fiat_provider.initialize()

    async def shutdown(self) -> None:
        await self.registry.shutdown_all()
        try:
            await self.fiat_provider.shutdown()
        except Exception as e:
            logger.error(f"Error shutting down {self.fiat_provider.id}: {e}")

    async def __aenter__(self) -> "PriceService":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    # ============================================
    # Symbol Groups
    # ============================================

    def expand_symbol_groups(self, symbols: Sequence[str]) -> List[str]:
        """
        Replace every "@name" token by the configured group's symbols, in place.

        Raises:
            UnknownSymbolGroupError: "@name" is not configured
            EmptyRequestError: No symbols remain after expansion

        Example:
            >>> # symbol_groups = {"majors": ["BTC", "ETH"]}
            >>> service.expand_symbol_groups(["@Majors", "SOL"])
            ['BTC', 'ETH', 'SOL']
        """
        expanded: List[str] = []
        for token in symbols:
            token = token.strip()
            if not token:
                continue
            if not token.startswith(GROUP_PREFIX):
                expanded.append(token)
                continue

            name = token[len(GROUP_PREFIX):].strip().lower()
            if name not in self.settings.symbol_groups:
                known = ", ".join(sorted(self.settings.symbol_groups)) or "none"
                raise UnknownSymbolGroupError(f"Unknown symbol group '{token}'. Configured groups: {known}")
            members = self.settings.symbol_groups[name]
            if not members:
                raise EmptyRequestError(f"Symbol group '{token}' is empty")
            expanded.extend(members)

        if not expanded:
            raise EmptyRequestError("No symbols requested")
        return expanded

    def _currency(self, currency: Optional[str]) -> str:
        return (currency or self.settings.default_currency).strip().upper()

    # ============================================
    # Quotes
    # ============================================

    async def quote(
        self,
        symbols: Sequence[str],
        currency: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> QuoteResponse:
        """
        Spot quotes for every symbol, all served by one provider.

        Raises:
            ConfigError: Bad symbols, groups or provider
            AllProvidersFailedError: No candidate could serve the whole batch
        """
        symbols = self.expand_symbol_groups(symbols)
        candidates = self.resolver.resolve_candidates(Capability.SPOT_QUOTE, provider)
        result = await self.resolver.run(candidates, quotes_operation(symbols, self._currency(currency)))
        return QuoteResponse(
            quotes=result.value,
            provider=result.provider_id,
            from_cache=result.from_cache,
            attempts=result.attempts,
        )

    # ============================================
    # Charts
    # ============================================

    async def chart(
        self,
        symbols: Sequence[str],
        window: Optional[ChartWindowRequest] = None,
        currency: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> List[ChartSeriesOutcome]:
        """
        One normalized series per symbol, in input order.

        Each symbol runs its own fallback chain; a failed symbol is reported
        in its outcome and does not affect the others. When every symbol is
        a fiat code the request is a reference-rate chart (first code is the
        base, the rest are targets).

        ``auto`` sampling is settled per provider: a provider without hourly
        data for the window serves it daily instead of failing.

        Raises:
            ConfigError: Bad symbols, window or provider
            UnsupportedCapabilityError: Hourly fiat chart, or an explicit
                provider that cannot serve an explicitly requested sampling
        """
        symbols = self.expand_symbol_groups(symbols)
        window = window or ChartWindowRequest()
        resolved = self.normalizer.resolve(window)

        if all(is_known_fiat(s) for s in symbols):
            return await self._fiat_chart(symbols, window, resolved)

        currency = self._currency(currency)
        candidates = self.resolver.resolve_candidates(Capability.HISTORY, provider)
        if provider:
            candidates[0].history_sampling(resolved.sampling, resolved.start, resolved.end)

        async def chart_one(symbol: str) -> ChartSeriesOutcome:
            operation = history_operation(symbol, currency, resolved.start, resolved.end, resolved.sampling)
            result = await self.resolver.run(candidates, operation)
            return ChartSeriesOutcome(
                symbol=symbol.upper(),
                history=self.normalizer.normalize_history(result.value, resolved),
                attempts=result.attempts,
            )

        results = await gather_bounded(symbols, chart_one, self.settings.max_concurrent_requests)

        outcomes: List[ChartSeriesOutcome] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, AllProvidersFailedError):
                outcomes.append(
                    ChartSeriesOutcome(
                        symbol=symbol.upper(),
                        error=ErrorDetail.from_exception(result),
                        attempts=result.attempts,
                    )
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes.append(result)
        return outcomes

    async def _fiat_chart(
        self, symbols: Sequence[str], window: ChartWindowRequest, resolved: ChartWindow
    ) -> List[ChartSeriesOutcome]:
        base = symbols[0].strip().upper()
        targets = list(dict.fromkeys(s.strip().upper() for s in symbols[1:] if s.strip().upper() != base))
        if not targets:
            raise EmptyRequestError(f"A fiat chart needs at least one target currency besides {base}")
        if window.sampling == Sampling.HOURLY:
            raise UnsupportedCapabilityError(
                "Fiat reference rates are published daily; hourly charts are not available",
                self.fiat_provider.id,
            )

        daily = ChartWindow(start=resolved.start, end=resolved.end, sampling=Sampling.DAILY)
        operation = fiat_history_operation(base, targets, daily.start, daily.end)
        try:
            result = await self.resolver.run([self.fiat_provider], operation)
        except AllProvidersFailedError as e:
            detail = ErrorDetail.from_exception(e)
            return [ChartSeriesOutcome(symbol=t, error=detail, attempts=e.attempts) for t in targets]

        outcomes = []
        for target in targets:
            history = result.value.get(target)
            if history is None:
                missing = NotFoundError(f"No reference rates for {target}", self.fiat_provider.id, symbols=[target])
                outcomes.append(
                    ChartSeriesOutcome(symbol=target, error=ErrorDetail.from_exception(missing), attempts=result.attempts)
                )
                continue
            outcomes.append(
                ChartSeriesOutcome(
                    symbol=target,
                    history=self.normalizer.normalize_history(history, daily),
                    attempts=result.attempts,
                )
            )
        return outcomes

    # ============================================
    # Search
    # ============================================

    async def search(self, query: str, limit: int = 10, provider: Optional[str] = None) -> SearchResponse:
        """
        Raises:
            EmptyRequestError: Blank query
            AllProvidersFailedError: Every search provider failed
        """
        query = (query or "").strip()
        if not query:
            raise EmptyRequestError("Search query must not be empty")

        candidates = self.resolver.resolve_candidates(Capability.SEARCH, provider)
        merged = await self.searcher.search(query, limit, candidates)
        return SearchResponse(
            query=query,
            results=merged.results,
            providers=merged.providers,
            attempts=merged.attempts,
        )

    # ============================================
    # Conversion
    # ============================================

    async def convert(
        self,
        source: str,
        targets: Sequence[str],
        provider: Optional[str] = None,
    ) -> List[ConversionOutcome]:
        """
        Convert ``source`` (e.g. "100usd") into each target, in input order.

        Raises:
            ConfigError: Bad token, groups or provider
        """
        parsed = parse_conversion_token(source)
        return await self.conversion.convert(parsed, self.expand_symbol_groups(targets), provider)

    # ============================================
    # Dispatch
    # ============================================

    async def handle(
        self, request: PriceRequest
    ) -> Union[QuoteResponse, SearchResponse, List[ChartSeriesOutcome], List[ConversionOutcome]]:
        """Route a normalized PriceRequest to the matching operation."""
        if request.operation == "quote":
            return await self.quote(request.symbols, request.currency, request.provider)
        if request.operation == "chart":
            return await self.chart(request.symbols, request.window, request.currency, request.provider)
        if request.operation == "search":
            return await self.search(request.search_query or "", request.search_limit, request.provider)
        if not request.conversion_source:
            raise EmptyRequestError("Conversion requires a source amount, e.g. 100usd")
        return await self.convert(request.conversion_source, request.symbols, request.provider)

    def list_providers(self) -> List[ProviderInfo]:
        return self.registry.describe()
