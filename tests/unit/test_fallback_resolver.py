"""
Unit Tests for FallbackResolver

These tests verify that the FallbackResolver:
- Orders candidates by priority, then registry order, skipping incapable
  and unavailable providers
- Treats an explicit provider as the only candidate (no fallback)
- Tries candidates sequentially and records every attempt
- Serves fresh cache entries without calling the provider

Run with:
    pytest tests/unit/test_fallback_resolver.py -v
"""

from datetime import timedelta

import pytest

from core.errors import (
    AllProvidersFailedError,
    NetworkError,
    ProviderLacksCapabilityError,
    ProviderUnavailableError,
    RateLimitedError,
    UnknownProviderError,
)
from core.fallback import FallbackResolver
from core.operations import history_operation, quotes_operation
from core.provider_registry import ProviderRegistry
from core.schemas import Capability, Sampling
from storage.cache import MemoryCache

from tests.unit.conftest import NOW, FakeProvider


def _resolver(providers, cache, ttl_table, priority=()):
    return FallbackResolver(ProviderRegistry(providers), cache, ttl_table, priority=priority)


class TestCandidateResolution:

    def test_registry_order_without_priority(self, memory_cache, ttl_table):
        resolver = _resolver([FakeProvider("a"), FakeProvider("b")], memory_cache, ttl_table)
        assert [p.id for p in resolver.resolve_candidates(Capability.SPOT_QUOTE)] == ["a", "b"]

    def test_priority_first_then_remaining_registry_order(self, memory_cache, ttl_table):
        providers = [FakeProvider("a"), FakeProvider("b"), FakeProvider("c")]
        resolver = _resolver(providers, memory_cache, ttl_table, priority=["c", "a"])
        assert [p.id for p in resolver.resolve_candidates(Capability.SPOT_QUOTE)] == ["c", "a", "b"]

    def test_skips_incapable_and_unavailable(self, memory_cache, ttl_table):
        providers = [
            FakeProvider("a", capabilities={Capability.SPOT_QUOTE}),
            FakeProvider("b", available=False),
            FakeProvider("c"),
        ]
        resolver = _resolver(providers, memory_cache, ttl_table, priority=["b"])
        assert [p.id for p in resolver.resolve_candidates(Capability.SEARCH)] == ["c"]

    def test_explicit_provider_is_only_candidate(self, memory_cache, ttl_table):
        resolver = _resolver([FakeProvider("a"), FakeProvider("b")], memory_cache, ttl_table)
        assert [p.id for p in resolver.resolve_candidates(Capability.SPOT_QUOTE, "B")] == ["b"]

    def test_explicit_unknown_provider(self, memory_cache, ttl_table):
        resolver = _resolver([FakeProvider("a")], memory_cache, ttl_table)
        with pytest.raises(UnknownProviderError):
            resolver.resolve_candidates(Capability.SPOT_QUOTE, "nope")

    def test_explicit_provider_lacking_capability(self, memory_cache, ttl_table):
        resolver = _resolver([FakeProvider("a", capabilities={Capability.SPOT_QUOTE})], memory_cache, ttl_table)
        with pytest.raises(ProviderLacksCapabilityError):
            resolver.resolve_candidates(Capability.SEARCH, "a")

    def test_explicit_unavailable_provider(self, memory_cache, ttl_table):
        resolver = _resolver([FakeProvider("a", available=False)], memory_cache, ttl_table)
        with pytest.raises(ProviderUnavailableError):
            resolver.resolve_candidates(Capability.SPOT_QUOTE, "a")

    def test_no_capable_provider_at_all(self, memory_cache, ttl_table):
        resolver = _resolver([FakeProvider("a", capabilities={Capability.SPOT_QUOTE})], memory_cache, ttl_table)
        with pytest.raises(ProviderUnavailableError):
            resolver.resolve_candidates(Capability.HISTORY)

    def test_unknown_id_in_priority_list(self, memory_cache, ttl_table):
        resolver = _resolver([FakeProvider("a")], memory_cache, ttl_table, priority=["ghost"])
        with pytest.raises(UnknownProviderError):
            resolver.resolve_candidates(Capability.SPOT_QUOTE)


class TestSequentialFallback:

    @pytest.mark.asyncio
    async def test_first_success_wins_and_later_candidates_untouched(self, memory_cache, ttl_table):
        a = FakeProvider("a", prices={"BTC": "100"})
        b = FakeProvider("b", prices={"BTC": "200"})
        resolver = _resolver([a, b], memory_cache, ttl_table)

        result = await resolver.run([a, b], quotes_operation(["BTC"], "USD"))

        assert result.provider_id == "a"
        assert b.quote_calls == 0
        assert [(x.provider, x.outcome) for x in result.attempts] == [("a", "success")]

    @pytest.mark.asyncio
    async def test_batch_level_fallback_on_partial_miss(self, memory_cache, ttl_table):
        a = FakeProvider("a", prices={"BTC": "100"})
        b = FakeProvider("b", prices={"BTC": "101", "AAPL": "190"})
        resolver = _resolver([a, b], memory_cache, ttl_table)

        result = await resolver.run([a, b], quotes_operation(["BTC", "AAPL"], "USD"))

        assert result.provider_id == "b"
        assert [q.provider for q in result.value] == ["b", "b"]
        assert [q.symbol for q in result.value] == ["BTC", "AAPL"]
        assert b.requested == [["BTC", "AAPL"]]
        assert result.attempts[0].outcome == "not_found"

    @pytest.mark.asyncio
    async def test_all_failed_lists_every_attempt_in_order(self, memory_cache, ttl_table):
        a = FakeProvider("a", error=NetworkError("timeout", "a"))
        b = FakeProvider("b", error=RateLimitedError("429", "b"))
        resolver = _resolver([a, b], memory_cache, ttl_table)

        with pytest.raises(AllProvidersFailedError) as exc_info:
            await resolver.run([a, b], quotes_operation(["BTC"], "USD"))

        assert exc_info.value.reasons == [("a", "network"), ("b", "rate_limited")]
        assert a.quote_calls == 1 and b.quote_calls == 1

    @pytest.mark.asyncio
    async def test_unsupported_sampling_recorded_without_network(self, memory_cache, ttl_table):
        no_hourly = FakeProvider("a", prices={"BTC": "1"}, max_hourly_window=None)
        hourly = FakeProvider("b", prices={"BTC": "1"})
        resolver = _resolver([no_hourly, hourly], memory_cache, ttl_table)

        operation = history_operation("BTC", "USD", NOW - timedelta(days=2), NOW, Sampling.HOURLY)
        result = await resolver.run([no_hourly, hourly], operation)

        assert result.provider_id == "b"
        assert no_hourly.history_calls == 0
        assert result.attempts[0].outcome == "unsupported_capability"

    @pytest.mark.asyncio
    async def test_auto_sampling_bound_per_candidate(self, memory_cache, ttl_table):
        daily_only = FakeProvider("stooq", prices={"AAPL": "190"}, max_hourly_window=None)
        resolver = _resolver([daily_only], memory_cache, ttl_table)

        operation = history_operation("AAPL", "USD", NOW - timedelta(days=1), NOW, Sampling.AUTO)
        result = await resolver.run([daily_only], operation)

        assert result.provider_id == "stooq"
        assert result.value.sampling == Sampling.DAILY
        assert daily_only.history_calls == 1
        assert [a.outcome for a in result.attempts] == ["success"]

    @pytest.mark.asyncio
    async def test_auto_sampling_cached_under_bound_sampling(self, memory_cache, ttl_table):
        hourly = FakeProvider("a", prices={"BTC": "1"})
        resolver = _resolver([hourly], memory_cache, ttl_table)
        start = NOW - timedelta(days=1)

        await resolver.run([hourly], history_operation("BTC", "USD", start, NOW, Sampling.AUTO))
        again = await resolver.run([hourly], history_operation("BTC", "USD", start, NOW, Sampling.HOURLY))

        assert again.from_cache is True
        assert hourly.history_calls == 1

    @pytest.mark.asyncio
    async def test_quote_in_other_currency_falls_back(self, memory_cache, ttl_table):
        listing = FakeProvider("yahoo", prices={"AAPL": "200"}, quote_currency="USD")
        converting = FakeProvider("b", prices={"AAPL": "185"})
        resolver = _resolver([listing, converting], memory_cache, ttl_table)

        result = await resolver.run(
            [listing, converting], quotes_operation(["AAPL"], "EUR", require_currency=True)
        )

        assert result.provider_id == "b"
        assert result.value[0].currency == "EUR"
        assert [a.outcome for a in result.attempts] == ["parse", "success"]

    @pytest.mark.asyncio
    async def test_cached_quote_in_other_currency_ignored(self, memory_cache, ttl_table):
        listing = FakeProvider("yahoo", prices={"AAPL": "200"}, quote_currency="USD")
        resolver = _resolver([listing], memory_cache, ttl_table)

        await resolver.run([listing], quotes_operation(["AAPL"], "EUR"))
        with pytest.raises(AllProvidersFailedError) as exc_info:
            await resolver.run([listing], quotes_operation(["AAPL"], "EUR", require_currency=True))

        assert exc_info.value.reasons == [("yahoo", "parse")]
        assert listing.quote_calls == 2


class TestCaching:

    @pytest.mark.asyncio
    async def test_fresh_entry_served_without_provider_call(self, memory_cache, ttl_table):
        a = FakeProvider("a", prices={"BTC": "100", "ETH": "5"})
        resolver = _resolver([a], memory_cache, ttl_table)

        first = await resolver.run([a], quotes_operation(["BTC", "ETH"], "usd"))
        second = await resolver.run([a], quotes_operation(["eth", "btc"], "USD"))

        assert a.quote_calls == 1
        assert first.from_cache is False
        assert second.from_cache is True
        assert second.attempts[0].cached is True
        assert [q.symbol for q in second.value] == ["ETH", "BTC"]
        assert second.value[1].price == first.value[0].price

    @pytest.mark.asyncio
    async def test_stale_entry_triggers_new_call(self, ttl_table):
        now = [NOW]
        cache = MemoryCache(clock=lambda: now[0])
        a = FakeProvider("a", prices={"BTC": "100"})
        resolver = _resolver([a], cache, ttl_table)

        await resolver.run([a], quotes_operation(["BTC"], "USD"))
        now[0] = NOW + timedelta(seconds=ttl_table.ttl_for("a", "quotes"))
        await resolver.run([a], quotes_operation(["BTC"], "USD"))

        assert a.quote_calls == 2

    @pytest.mark.asyncio
    async def test_cache_is_per_provider(self, memory_cache, ttl_table):
        a = FakeProvider("a", prices={"BTC": "100"})
        b = FakeProvider("b", prices={"BTC": "200"})
        resolver = _resolver([a, b], memory_cache, ttl_table)

        await resolver.run([a], quotes_operation(["BTC"], "USD"))
        result = await resolver.run([b, a], quotes_operation(["BTC"], "USD"))

        assert result.provider_id == "b"
        assert b.quote_calls == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, memory_cache, ttl_table):
        a = FakeProvider("a", error=NetworkError("down", "a"))
        resolver = _resolver([a], memory_cache, ttl_table)

        for _ in range(2):
            with pytest.raises(AllProvidersFailedError):
                await resolver.run([a], quotes_operation(["BTC"], "USD"))

        assert a.quote_calls == 2
        assert len(memory_cache) == 0
