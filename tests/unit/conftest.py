"""
Shared fixtures and in-test provider doubles.

FakeProvider implements ProviderInterface without any network access and
counts every call, so tests can assert how often a provider was hit.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

import pytest

from core.config import Settings, TTLTable
from core.errors import NotFoundError
from core.provider_interface import ProviderInterface
from core.schemas import Capability, ChartPoint, PriceHistory, Quote, Sampling, SearchResult
from storage.cache import MemoryCache

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)

ALL_CAPABILITIES = frozenset({Capability.SPOT_QUOTE, Capability.HISTORY, Capability.SEARCH})


class FakeProvider(ProviderInterface):
    """Configurable provider double with call counters."""

    def __init__(
        self,
        provider_id: str,
        prices: Optional[Dict[str, str]] = None,
        capabilities=ALL_CAPABILITIES,
        error: Optional[Exception] = None,
        available: bool = True,
        search_results: Optional[List[SearchResult]] = None,
        history_points: Optional[List[ChartPoint]] = None,
        max_hourly_window: Optional[timedelta] = timedelta(days=90),
        batches_quotes: bool = True,
        quote_currency: Optional[str] = None,
    ):
        super().__init__(max_concurrency=4)
        self.id = provider_id
        self.name = provider_id.title()
        self.capabilities = frozenset(capabilities)
        self.prices = {k.upper(): v for k, v in (prices or {}).items()}
        self.error = error
        self._available = available
        self.search_results = search_results or []
        self.history_points = history_points
        self.max_hourly_window = max_hourly_window
        self.batches_quotes = batches_quotes
        self.quote_currency = quote_currency

        self.quote_calls = 0
        self.history_calls = 0
        self.search_calls = 0
        self.requested: List[List[str]] = []
        self.initialized = False
        self.closed = False

    @property
    def available(self) -> bool:
        return self._available

    @property
    def unavailable_reason(self) -> Optional[str]:
        return None if self._available else "missing API key"

    async def initialize(self) -> None:
        self.initialized = True

    async def shutdown(self) -> None:
        self.closed = True

    async def fetch_quotes(self, symbols, currency):
        self.quote_calls += 1
        self.requested.append(list(symbols))
        if self.error:
            raise self.error
        found = {
            s.upper(): Quote(
                symbol=s,
                name=f"{s.upper()} Name",
                price=Decimal(self.prices[s.upper()]),
                currency=self.quote_currency or currency,
                provider=self.id,
                timestamp=NOW,
            )
            for s in symbols
            if s.upper() in self.prices
        }
        return self._assemble_quotes(symbols, found)

    async def fetch_history(self, symbol, currency, start, end, sampling):
        self.history_calls += 1
        if self.error:
            raise self.error
        if symbol.upper() not in self.prices:
            raise NotFoundError(f"unknown {symbol}", self.id, symbols=[symbol.upper()])

        points = self.history_points
        if points is None:
            step = timedelta(hours=1) if sampling == Sampling.HOURLY else timedelta(days=1)
            points = []
            ts = start
            price = float(self.prices[symbol.upper()])
            while ts <= end:
                points.append(ChartPoint(timestamp=ts, price=price))
                ts += step
        return PriceHistory(
            symbol=symbol,
            name=symbol,
            currency=currency,
            provider=self.id,
            sampling=sampling,
            start=start,
            end=end,
            points=points,
        )

    async def search(self, query, limit):
        self.search_calls += 1
        if self.error:
            raise self.error
        return self.search_results[:limit]


class FakeFiatProvider:
    """Reference-rate double (1 base = rate target)."""

    id = "frankfurter"
    name = "Frankfurter"
    available = True

    def __init__(
        self,
        rates: Optional[Dict[str, str]] = None,
        error: Optional[Exception] = None,
        rejected: Sequence[str] = (),
    ):
        self.rates = {k.upper(): Decimal(v) for k, v in (rates or {}).items()}
        self.error = error
        self.rejected = {c.upper() for c in rejected}
        self.requested: List[List[str]] = []
        self.rate_calls = 0
        self.history_calls = 0
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def shutdown(self) -> None:
        self.closed = True

    async def health_check(self) -> bool:
        return True

    async def fetch_rates(self, base, targets):
        self.rate_calls += 1
        self.requested.append(list(targets))
        if self.error:
            raise self.error
        refused = [t for t in targets if t in self.rejected]
        if refused:
            raise NotFoundError("HTTP 404 on /latest", self.id, symbols=refused)
        return {t: self.rates[t] for t in targets if t in self.rates}

    async def fetch_rate_history(self, base, targets, start, end):
        self.history_calls += 1
        if self.error:
            raise self.error
        histories = {}
        for target in targets:
            if target not in self.rates:
                continue
            points = []
            day = start.replace(hour=0, minute=0, second=0)
            while day <= end:
                points.append(ChartPoint(timestamp=day, price=float(self.rates[target])))
                day += timedelta(days=1)
            histories[target] = PriceHistory(
                symbol=f"{base}/{target}",
                currency=target,
                provider=self.id,
                sampling=Sampling.DAILY,
                start=start,
                end=end,
                points=points,
            )
        return histories


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def memory_cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        default_currency="USD",
        provider_order="",
        cache_dir=str(tmp_path / "cache"),
        max_concurrent_requests=4,
        symbol_groups={"Majors": ["BTC", "ETH"], "empty": []},
    )


@pytest.fixture
def ttl_table(test_settings):
    return TTLTable.from_settings(test_settings)
