"""
CoinGecko REST API Client

Async client for the public CoinGecko v3 API (no key required).

API Documentation:
    https://docs.coingecko.com/v3.0.1/reference/introduction

Endpoints Used:
    GET /simple/price                  - batched spot prices (all symbols in one call)
    GET /coins/{id}/market_chart/range - price history between two timestamps
    GET /search                        - coin search

Symbol Resolution:
    CoinGecko addresses coins by API id ("bitcoin"), not ticker ("BTC").
    Common tickers are mapped explicitly; anything else is sent as its
    lowercase form, which matches the id of many coins.

Usage:
    async with CoinGeckoAPIClient() as client:
        quotes = await client.get_quotes(["BTC", "ETH"], "USD")
        history = await client.get_history("BTC", "USD", start, end, Sampling.DAILY)
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.errors import NotFoundError, ParseError
from core.schemas import ChartPoint, PriceHistory, Quote, Sampling, SearchResult
from core.utils.time import current_utc_datetime, datetime_to_timestamp, floor_datetime, to_utc_datetime
from providers.http_client import PARSE_ERRORS, ProviderHTTPClient

COIN_IDS: Dict[str, Tuple[str, str]] = {
    "btc": ("bitcoin", "Bitcoin"),
    "bitcoin": ("bitcoin", "Bitcoin"),
    "eth": ("ethereum", "Ethereum"),
    "ethereum": ("ethereum", "Ethereum"),
    "usdt": ("tether", "Tether"),
    "tether": ("tether", "Tether"),
    "bnb": ("binancecoin", "BNB"),
    "sol": ("solana", "Solana"),
    "solana": ("solana", "Solana"),
    "xrp": ("ripple", "XRP"),
    "ripple": ("ripple", "XRP"),
    "usdc": ("usd-coin", "USDC"),
    "ada": ("cardano", "Cardano"),
    "cardano": ("cardano", "Cardano"),
    "doge": ("dogecoin", "Dogecoin"),
    "dogecoin": ("dogecoin", "Dogecoin"),
    "dot": ("polkadot", "Polkadot"),
    "polkadot": ("polkadot", "Polkadot"),
    "matic": ("matic-network", "Polygon"),
    "polygon": ("matic-network", "Polygon"),
    "ltc": ("litecoin", "Litecoin"),
    "litecoin": ("litecoin", "Litecoin"),
    "avax": ("avalanche-2", "Avalanche"),
    "avalanche": ("avalanche-2", "Avalanche"),
    "link": ("chainlink", "Chainlink"),
    "chainlink": ("chainlink", "Chainlink"),
    "atom": ("cosmos", "Cosmos"),
    "cosmos": ("cosmos", "Cosmos"),
    "uni": ("uniswap", "Uniswap"),
    "uniswap": ("uniswap", "Uniswap"),
    "xlm": ("stellar", "Stellar"),
    "stellar": ("stellar", "Stellar"),
    "shib": ("shiba-inu", "Shiba Inu"),
    "trx": ("tron", "TRON"),
    "tron": ("tron", "TRON"),
    "ton": ("the-open-network", "Toncoin"),
    "pepe": ("pepe", "Pepe"),
    "near": ("near", "NEAR"),
    "apt": ("aptos", "Aptos"),
    "aptos": ("aptos", "Aptos"),
    "arb": ("arbitrum", "Arbitrum"),
    "arbitrum": ("arbitrum", "Arbitrum"),
    "op": ("optimism", "Optimism"),
    "optimism": ("optimism", "Optimism"),
    "sui": ("sui", "Sui"),
    "xmr": ("monero", "Monero"),
    "monero": ("monero", "Monero"),
}


def resolve_coin(symbol: str) -> Tuple[str, str]:
    """
    Map a ticker to (CoinGecko id, display name).

    Example:
        >>> resolve_coin("BTC")
        ('bitcoin', 'Bitcoin')
        >>> resolve_coin("kas")
        ('kas', 'Kas')
    """
    lower = symbol.strip().lower()
    if lower in COIN_IDS:
        return COIN_IDS[lower]
    return lower, lower.capitalize()


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except ArithmeticError:
        return None
    return result if result.is_finite() else None


class CoinGeckoAPIClient(ProviderHTTPClient):
    """
    Async HTTP client for the CoinGecko API.

    All methods return normalized schemas.
    """

    PROVIDER_ID = "coingecko"
    BASE_URL = "https://api.coingecko.com/api/v3"

    # ============================================
    # Spot Prices
    # ============================================

    async def get_quotes(self, symbols: Sequence[str], currency: str) -> Dict[str, Quote]:
        """
        Fetch spot quotes for all symbols with a single /simple/price call.

        Returns:
            Quotes keyed by uppercase request symbol. Symbols CoinGecko does
            not know are absent.

        CoinGecko Endpoint:
            GET /simple/price?ids=bitcoin,ethereum&vs_currencies=usd
                &include_24hr_change=true&include_market_cap=true

        Response Format:
            {"bitcoin": {"usd": 96420.1, "usd_24h_change": 1.4, "usd_market_cap": 1.9e12}}
        """
        resolved = {s.upper(): resolve_coin(s) for s in symbols}
        ids = sorted({coin_id for coin_id, _ in resolved.values()})
        cur = currency.lower()

        data = await self._get(
            "/simple/price",
            {
                "ids": ",".join(ids),
                "vs_currencies": cur,
                "include_24hr_change": "true",
                "include_market_cap": "true",
            },
        )
        if not isinstance(data, dict):
            raise ParseError("Unexpected /simple/price response", self.PROVIDER_ID)

        now = current_utc_datetime()
        quotes: Dict[str, Quote] = {}
        for symbol, (coin_id, display_name) in resolved.items():
            coin = data.get(coin_id)
            if not isinstance(coin, dict):
                continue
            price = _decimal(coin.get(cur))
            if price is None:
                continue
            change = coin.get(f"{cur}_24h_change")
            try:
                quotes[symbol] = Quote(
                    symbol=symbol,
                    name=display_name,
                    price=price,
                    change_24h=float(change) if isinstance(change, (int, float)) else None,
                    market_cap=_decimal(coin.get(f"{cur}_market_cap")),
                    currency=currency,
                    provider=self.PROVIDER_ID,
                    timestamp=now,
                )
            except PARSE_ERRORS as e:
                raise ParseError(f"Malformed /simple/price entry for {coin_id}: {e}", self.PROVIDER_ID) from e

        self.logger.debug(f"CoinGecko resolved {len(quotes)}/{len(resolved)} symbols")
        return quotes

    # ============================================
    # History
    # ============================================

    async def get_history(
        self,
        symbol: str,
        currency: str,
        start: datetime,
        end: datetime,
        sampling: Sampling,
    ) -> PriceHistory:
        """
        Fetch price history between ``start`` and ``end``.

        CoinGecko picks the granularity from the range (5-minutely up to a
        day, hourly up to 90 days, daily beyond); points are thinned to one
        per hour or per day to match ``sampling``.

        CoinGecko Endpoint:
            GET /coins/{id}/market_chart/range?vs_currency=usd&from=<s>&to=<s>

        Response Format:
            {"prices": [[1704067200000, 42280.2], ...],
             "total_volumes": [[1704067200000, 1.2e10], ...]}
        """
        coin_id, display_name = resolve_coin(symbol)
        data = await self._get(
            f"/coins/{coin_id}/market_chart/range",
            {
                "vs_currency": currency.lower(),
                "from": datetime_to_timestamp(start),
                "to": datetime_to_timestamp(end),
            },
        )
        if not isinstance(data, dict) or not isinstance(data.get("prices"), list):
            raise ParseError(f"Unexpected market_chart response for {symbol}", self.PROVIDER_ID)

        points: List[ChartPoint] = []
        try:
            volumes = {
                int(item[0]): item[1]
                for item in data.get("total_volumes") or []
                if isinstance(item, list) and len(item) >= 2
            }
            for ts_ms, price in data["prices"]:
                if price is None:
                    continue
                points.append(
                    ChartPoint(
                        timestamp=to_utc_datetime(ts_ms),
                        price=float(price),
                        volume=volumes.get(int(ts_ms)),
                    )
                )
        except PARSE_ERRORS as e:
            raise ParseError(f"Malformed price point for {symbol}: {e}", self.PROVIDER_ID) from e

        if not points:
            raise NotFoundError(f"No history for {symbol}", self.PROVIDER_ID, symbols=[symbol.upper()])

        step = timedelta(hours=1) if sampling == Sampling.HOURLY else timedelta(days=1)
        return PriceHistory(
            symbol=symbol,
            name=display_name,
            currency=currency,
            provider=self.PROVIDER_ID,
            sampling=sampling,
            start=start,
            end=end,
            points=thin_points(points, step),
        )

    # ============================================
    # Search
    # ============================================

    async def search(self, query: str, limit: int) -> List[SearchResult]:
        """
        CoinGecko Endpoint:
            GET /search?query=bitcoin

        Response Format:
            {"coins": [{"id": "bitcoin", "name": "Bitcoin", "symbol": "BTC",
                        "market_cap_rank": 1}, ...], "exchanges": [...], ...}
        """
        data = await self._get("/search", {"query": query})
        coins = data.get("coins") if isinstance(data, dict) else None
        if not isinstance(coins, list):
            raise ParseError("Unexpected /search response", self.PROVIDER_ID)

        results = []
        try:
            for coin in coins:
                if not isinstance(coin, dict):
                    continue
                symbol = str(coin.get("symbol") or "").strip()
                if not symbol:
                    continue
                results.append(
                    SearchResult(
                        symbol=symbol,
                        name=coin.get("name") or symbol.upper(),
                        exchange=None,
                        asset_type="crypto",
                        providers=[self.PROVIDER_ID],
                    )
                )
                if len(results) >= limit:
                    break
        except PARSE_ERRORS as e:
            raise ParseError(f"Malformed /search entry: {e}", self.PROVIDER_ID) from e
        return results


def thin_points(points: List[ChartPoint], step: timedelta) -> List[ChartPoint]:
    """Keep the first point of every ``step`` bucket (input order)."""
    seen = set()
    thinned = []
    for point in points:
        bucket = floor_datetime(point.timestamp, step)
        if bucket in seen:
            continue
        seen.add(bucket)
        thinned.append(point)
    return thinned
