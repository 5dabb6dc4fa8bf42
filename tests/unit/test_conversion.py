"""
Unit Tests for the Conversion Engine

These tests verify:
- Conversion token parsing (amount + fiat code)
- Asset targets: amount / price, rate = price, 6 decimals
- Fiat targets: amount * fx (2 decimals), rate = 1 / fx (6 decimals)
- Per-target failures do not abort the other targets

Run with:
    pytest tests/unit/test_conversion.py -v
"""

from decimal import Decimal

import pytest

from core.conversion import ConversionEngine, ConversionSource, parse_conversion_token
from core.errors import (
    EmptyRequestError,
    InvalidConversionTokenError,
    InvalidFiatCodeError,
    NetworkError,
    UnknownProviderError,
)
from core.fallback import FallbackResolver
from core.fiat import KNOWN_FIAT
from core.provider_registry import ProviderRegistry

from tests.unit.conftest import FakeFiatProvider, FakeProvider


def _engine(providers, fiat, memory_cache, ttl_table, clock):
    resolver = FallbackResolver(ProviderRegistry(providers), memory_cache, ttl_table)
    return ConversionEngine(resolver, fiat, max_concurrency=4, clock=clock)


class TestParseToken:

    @pytest.mark.parametrize(
        "token,amount,currency",
        [
            ("100usd", Decimal("100"), "USD"),
            ("3.5EUR", Decimal("3.5"), "EUR"),
            (".5gbp", Decimal("0.5"), "GBP"),
            (" 20jpy ", Decimal("20"), "JPY"),
        ],
    )
    def test_valid_tokens(self, token, amount, currency):
        assert parse_conversion_token(token) == ConversionSource(amount=amount, currency=currency)

    @pytest.mark.parametrize("code", sorted(KNOWN_FIAT))
    def test_every_fiat_code_in_any_case(self, code):
        for spelled in (code.lower(), code.upper(), code[0].lower() + code[1:], code.title()):
            parsed = parse_conversion_token(f"12.5{spelled}")
            assert parsed == ConversionSource(amount=Decimal("12.5"), currency=code)

    @pytest.mark.parametrize("token", ["", "usd", "100", "100 usd", "1e3usd", "abc"])
    def test_malformed_tokens(self, token):
        with pytest.raises(InvalidConversionTokenError):
            parse_conversion_token(token)

    @pytest.mark.parametrize("token", ["0usd", "-5usd", "0.0eur"])
    def test_non_positive_amounts(self, token):
        with pytest.raises(InvalidConversionTokenError):
            parse_conversion_token(token)

    @pytest.mark.parametrize("token", ["1inch", "3btc", "100xyz"])
    def test_unknown_fiat_suffix(self, token):
        with pytest.raises(InvalidFiatCodeError):
            parse_conversion_token(token)


class TestAssetTargets:

    @pytest.mark.asyncio
    async def test_amount_and_rate_for_asset(self, memory_cache, ttl_table, clock):
        provider = FakeProvider("a", prices={"BTC": "96420.1"})
        engine = _engine([provider], FakeFiatProvider(), memory_cache, ttl_table, clock)

        [outcome] = await engine.convert(parse_conversion_token("100usd"), ["btc"])

        assert outcome.ok
        assert outcome.result.target_amount == Decimal("0.001037")
        assert outcome.result.rate == Decimal("96420.1")
        assert outcome.result.source_currency == "USD"
        assert outcome.result.provider == "a"

    @pytest.mark.asyncio
    async def test_duplicate_targets_fetch_once(self, memory_cache, ttl_table, clock):
        provider = FakeProvider("a", prices={"ETH": "2000"})
        engine = _engine([provider], FakeFiatProvider(), memory_cache, ttl_table, clock)

        outcomes = await engine.convert(parse_conversion_token("1000usd"), ["ETH", "eth"])

        assert [o.target for o in outcomes] == ["ETH", "ETH"]
        assert outcomes[0].result.target_amount == Decimal("0.500000")
        assert provider.quote_calls == 1

    @pytest.mark.asyncio
    async def test_quote_in_listing_currency_is_not_used(self, memory_cache, ttl_table, clock):
        listing = FakeProvider("yahoo", prices={"AAPL": "200"}, quote_currency="USD")
        engine = _engine([listing], FakeFiatProvider(), memory_cache, ttl_table, clock)

        [outcome] = await engine.convert(parse_conversion_token("100eur"), ["AAPL"])

        assert outcome.ok is False
        assert outcome.error.kind == "all_providers_failed"
        assert outcome.error.attempts[0].outcome == "parse"

    @pytest.mark.asyncio
    async def test_listing_currency_falls_back_to_next_provider(self, memory_cache, ttl_table, clock):
        listing = FakeProvider("yahoo", prices={"AAPL": "200"}, quote_currency="USD")
        converting = FakeProvider("b", prices={"AAPL": "185"})
        engine = _engine([listing, converting], FakeFiatProvider(), memory_cache, ttl_table, clock)

        [outcome] = await engine.convert(parse_conversion_token("370eur"), ["AAPL"])

        assert outcome.result.provider == "b"
        assert outcome.result.rate == Decimal("185")
        assert outcome.result.target_amount == Decimal("2.000000")

    @pytest.mark.asyncio
    async def test_explicit_unknown_provider_fails_whole_request(self, memory_cache, ttl_table, clock):
        engine = _engine([FakeProvider("a")], FakeFiatProvider(), memory_cache, ttl_table, clock)
        with pytest.raises(UnknownProviderError):
            await engine.convert(parse_conversion_token("1usd"), ["BTC"], provider="nope")


class TestFiatTargets:

    @pytest.mark.asyncio
    async def test_amount_and_inverse_rate_for_fiat(self, memory_cache, ttl_table, clock):
        fiat = FakeFiatProvider(rates={"EUR": "0.9215"})
        engine = _engine([FakeProvider("a")], fiat, memory_cache, ttl_table, clock)

        [outcome] = await engine.convert(parse_conversion_token("100usd"), ["EUR"])

        assert outcome.result.target_amount == Decimal("92.15")
        assert outcome.result.rate == Decimal("1.085187")
        assert outcome.result.target_name == "Euro"
        assert outcome.result.provider == "frankfurter"

    @pytest.mark.asyncio
    async def test_same_currency_needs_no_lookup(self, memory_cache, ttl_table, clock):
        fiat = FakeFiatProvider()
        engine = _engine([FakeProvider("a")], fiat, memory_cache, ttl_table, clock)

        [outcome] = await engine.convert(parse_conversion_token("42usd"), ["usd"])

        assert outcome.result.target_amount == Decimal("42")
        assert outcome.result.rate == Decimal("1")
        assert fiat.rate_calls == 0

    @pytest.mark.asyncio
    async def test_fiat_targets_share_one_lookup(self, memory_cache, ttl_table, clock):
        fiat = FakeFiatProvider(rates={"EUR": "0.9", "GBP": "0.8"})
        engine = _engine([FakeProvider("a")], fiat, memory_cache, ttl_table, clock)

        outcomes = await engine.convert(parse_conversion_token("10usd"), ["EUR", "GBP"])

        assert [o.result.target_amount for o in outcomes] == [Decimal("9.00"), Decimal("8.00")]
        assert fiat.rate_calls == 1

    @pytest.mark.asyncio
    async def test_missing_rate_is_not_found(self, memory_cache, ttl_table, clock):
        fiat = FakeFiatProvider(rates={"EUR": "0.9"})
        engine = _engine([FakeProvider("a")], fiat, memory_cache, ttl_table, clock)

        outcomes = await engine.convert(parse_conversion_token("10usd"), ["EUR", "TRY"])

        assert outcomes[0].ok
        assert outcomes[1].error.kind == "not_found"

    @pytest.mark.asyncio
    async def test_rejected_code_does_not_fail_other_targets(self, memory_cache, ttl_table, clock):
        fiat = FakeFiatProvider(rates={"EUR": "0.9215"}, rejected=["NGN"])
        engine = _engine([FakeProvider("a")], fiat, memory_cache, ttl_table, clock)

        outcomes = await engine.convert(parse_conversion_token("100usd"), ["EUR", "NGN"])

        assert [o.target for o in outcomes] == ["EUR", "NGN"]
        assert outcomes[0].result.target_amount == Decimal("92.15")
        assert outcomes[1].error.kind == "all_providers_failed"
        assert outcomes[1].error.attempts[0].outcome == "not_found"
        assert fiat.requested[0] == ["EUR", "NGN"]
        assert sorted(fiat.requested[1:]) == [["EUR"], ["NGN"]]


class TestMixedTargets:

    @pytest.mark.asyncio
    async def test_failures_are_per_target_and_order_is_kept(self, memory_cache, ttl_table, clock):
        provider = FakeProvider("a", prices={"BTC": "50000"})
        fiat = FakeFiatProvider(error=NetworkError("down", "frankfurter"))
        engine = _engine([provider], fiat, memory_cache, ttl_table, clock)

        outcomes = await engine.convert(parse_conversion_token("100usd"), ["EUR", "BTC", "NOPE"])

        assert [o.target for o in outcomes] == ["EUR", "BTC", "NOPE"]
        assert outcomes[0].error.kind == "all_providers_failed"
        assert outcomes[1].result.target_amount == Decimal("0.002000")
        assert outcomes[2].error.kind == "all_providers_failed"
        assert outcomes[2].error.attempts[0].outcome == "not_found"

    @pytest.mark.asyncio
    async def test_no_targets(self, memory_cache, ttl_table, clock):
        engine = _engine([FakeProvider("a")], FakeFiatProvider(), memory_cache, ttl_table, clock)
        with pytest.raises(EmptyRequestError):
            await engine.convert(parse_conversion_token("1usd"), [" ", ""])
