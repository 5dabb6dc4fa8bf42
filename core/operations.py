"""
Provider Operations

A ProviderOperation describes one logical provider call independently of
which provider ends up serving it:

    id          operation id, used in cache keys, TTL lookup and logs
    params      parameters that identify the request (normalized into the cache key)
    invoke      coroutine running the call against a given provider
    encode      result -> JSON payload stored in the cache
    decode      cached payload -> result (ValueError if the payload does not fit)
    bind        optional per-candidate specialization, run before cache or
                network; may raise ProviderError (e.g. unsupported sampling)

The FallbackResolver runs the same operation against each candidate in
turn, so the cache key always carries the id of the provider that produced
the payload.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from core.chart import auto_sampling
from core.errors import ParseError
from core.provider_interface import ProviderInterface
from core.schemas import Capability, PriceHistory, Quote, Sampling, SearchResult
from core.utils.time import floor_datetime
from storage.cache import CacheKey

_SAMPLING_STEP = {
    Sampling.HOURLY: timedelta(hours=1),
    Sampling.DAILY: timedelta(days=1),
}


@dataclass(frozen=True)
class ProviderOperation:
    id: str
    capability: Optional[Capability]
    params: Mapping[str, Any]
    invoke: Callable[[Any], Awaitable[Any]]
    encode: Callable[[Any], Any]
    decode: Callable[[Any], Any]
    bind: Optional[Callable[[Any], "ProviderOperation"]] = field(default=None)

    def cache_key(self, provider_id: str) -> CacheKey:
        return CacheKey.build(provider_id, self.id, self.params)

    def for_provider(self, provider) -> "ProviderOperation":
        """The operation as ``provider`` will run it."""
        return self.bind(provider) if self.bind is not None else self


# ============================================
# Spot Quotes
# ============================================

def quotes_operation(
    symbols: Sequence[str], currency: str, require_currency: bool = False
) -> ProviderOperation:
    """
    Batch quote lookup. The cached payload is keyed by the sorted symbol set;
    decoding re-assembles it in this request's symbol order.

    With ``require_currency`` every quote must be denominated in
    ``currency``. Providers that report the listing currency instead (Yahoo,
    Stooq) then fail the attempt with ParseError, and a cached entry in
    another currency is ignored.
    """
    symbols = list(symbols)
    currency = currency.upper()

    def check_currency(quotes: List[Quote], provider_id: str) -> List[Quote]:
        mismatched = [q for q in quotes if q.currency.upper() != currency]
        if require_currency and mismatched:
            quote = mismatched[0]
            raise ParseError(f"{quote.symbol} is quoted in {quote.currency}, not {currency}", provider_id)
        return quotes

    async def invoke(provider: ProviderInterface) -> List[Quote]:
        return check_currency(await provider.fetch_quotes(symbols, currency), provider.id)

    def decode(payload: Any) -> List[Quote]:
        by_symbol = {q.symbol: q for q in (Quote.model_validate(item) for item in payload)}
        missing = [s for s in symbols if s.upper() not in by_symbol]
        if missing:
            raise ValueError(f"cached quotes lack {', '.join(missing)}")
        quotes = [by_symbol[s.upper()] for s in symbols]
        if require_currency and any(q.currency.upper() != currency for q in quotes):
            raise ValueError(f"cached quotes are not in {currency}")
        return quotes

    return ProviderOperation(
        id="quotes",
        capability=Capability.SPOT_QUOTE,
        params={"symbols": symbols, "currency": currency},
        invoke=invoke,
        encode=lambda quotes: [q.model_dump(mode="json") for q in quotes],
        decode=decode,
    )


# ============================================
# History
# ============================================

def history_operation(
    symbol: str,
    currency: str,
    start: datetime,
    end: datetime,
    sampling: Sampling,
) -> ProviderOperation:
    """
    History for one symbol.

    ``sampling`` may be ``auto``; each candidate binds it to the concrete
    sampling it serves (ProviderInterface.history_sampling), so the cache key
    and the provider call always carry hourly or daily. An explicit sampling
    a candidate cannot serve fails that attempt before cache or network.
    """

    def bind(provider: ProviderInterface) -> ProviderOperation:
        return _history_call(symbol, currency, start, end, provider.history_sampling(sampling, start, end))

    preferred = auto_sampling(start, end) if sampling == Sampling.AUTO else sampling
    return replace(_history_call(symbol, currency, start, end, preferred), bind=bind)


def _history_call(
    symbol: str,
    currency: str,
    start: datetime,
    end: datetime,
    sampling: Sampling,
) -> ProviderOperation:
    """
    History with concrete ``sampling``. The cache key floors the window to
    the sampling step so "now"-anchored windows requested moments apart
    share one entry.
    """
    step = _SAMPLING_STEP[sampling]
    return ProviderOperation(
        id=f"history_{sampling.value}",
        capability=Capability.HISTORY,
        params={
            "symbol": symbol,
            "currency": currency,
            "start": floor_datetime(start, step),
            "end": floor_datetime(end, step),
            "sampling": sampling,
        },
        invoke=lambda provider: provider.fetch_history(symbol, currency.upper(), start, end, sampling),
        encode=lambda history: history.model_dump(mode="json"),
        decode=PriceHistory.model_validate,
    )


# ============================================
# Search
# ============================================

def search_operation(query: str, limit: int) -> ProviderOperation:
    return ProviderOperation(
        id="search",
        capability=Capability.SEARCH,
        params={"query": query, "limit": limit},
        invoke=lambda provider: provider.search(query.strip(), limit),
        encode=lambda results: [r.model_dump(mode="json") for r in results],
        decode=lambda payload: [SearchResult.model_validate(item) for item in payload],
    )


# ============================================
# Fiat Reference Rates
# ============================================

def fiat_rates_operation(base: str, targets: Sequence[str]) -> ProviderOperation:
    """Latest reference rates: 1 ``base`` = rate ``target``."""
    base = base.upper()
    targets = [t.upper() for t in targets]

    def decode(payload: Any) -> Dict[str, Decimal]:
        return {code: Decimal(value) for code, value in payload.items()}

    return ProviderOperation(
        id="fiat_rates",
        capability=None,
        params={"base": base, "targets": targets},
        invoke=lambda provider: provider.fetch_rates(base, targets),
        encode=lambda rates: {code: str(value) for code, value in rates.items()},
        decode=decode,
    )


def fiat_history_operation(
    base: str,
    targets: Sequence[str],
    start: datetime,
    end: datetime,
) -> ProviderOperation:
    """Daily reference-rate history, one PriceHistory per target."""
    base = base.upper()
    targets = [t.upper() for t in targets]
    day = _SAMPLING_STEP[Sampling.DAILY]

    def decode(payload: Any) -> Dict[str, PriceHistory]:
        return {code: PriceHistory.model_validate(item) for code, item in payload.items()}

    return ProviderOperation(
        id="fiat_history",
        capability=None,
        params={
            "base": base,
            "targets": targets,
            "start": floor_datetime(start, day),
            "end": floor_datetime(end, day),
        },
        invoke=lambda provider: provider.fetch_rate_history(base, targets, start, end),
        encode=lambda histories: {code: h.model_dump(mode="json") for code, h in histories.items()},
        decode=decode,
    )
