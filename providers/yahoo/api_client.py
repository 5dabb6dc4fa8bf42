"""
Yahoo Finance API Client

Async client for the unofficial Yahoo Finance JSON endpoints (no key).

Endpoints Used:
    GET /v8/finance/chart/{symbol}  - latest quote (range=5d) and history
    GET /v1/finance/search          - ticker search

Chart Response Format:
    {"chart": {"result": [{"meta": {"currency": "USD", "longName": "Apple Inc.",
                                    "regularMarketPrice": 231.4,
                                    "chartPreviousClose": 229.9},
                           "timestamp": [1704067200, ...],
                           "indicators": {"quote": [{"close": [185.6, null, ...]}]}}],
               "error": null}}
"""

import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.errors import NotFoundError, ParseError
from core.schemas import ChartPoint, PriceHistory, Quote, Sampling, SearchResult
from core.utils.time import current_utc_datetime, datetime_to_timestamp, to_utc_datetime
from providers.http_client import PARSE_ERRORS, ProviderHTTPClient

YAHOO_BASE_URL = "https://query2.finance.yahoo.com"


def percent_change(previous: Optional[float], current: float) -> Optional[float]:
    """
    Percentage change from ``previous`` to ``current``.

    Returns None when ``previous`` is missing, non-finite or ~0.
    """
    if previous is None or not math.isfinite(previous) or abs(previous) <= 1e-12:
        return None
    return (current - previous) / previous * 100


def parse_search_quotes(payload: Any, limit: int, provider_id: str) -> List[SearchResult]:
    """
    Parse a /v1/finance/search body into SearchResults.

    Response Format:
        {"quotes": [{"symbol": "AAPL", "shortname": "Apple Inc.",
                     "longname": "Apple Inc.", "exchDisp": "NASDAQ",
                     "typeDisp": "Equity"}, ...]}
    """
    quotes = payload.get("quotes") if isinstance(payload, dict) else None
    if not isinstance(quotes, list):
        raise ParseError("Unexpected search response", provider_id)

    results = []
    try:
        for item in quotes:
            if not isinstance(item, dict):
                continue
            symbol = (item.get("symbol") or "").strip()
            if not symbol:
                continue
            results.append(
                SearchResult(
                    symbol=symbol,
                    name=item.get("longname") or item.get("shortname") or symbol,
                    exchange=item.get("exchDisp"),
                    asset_type=item.get("typeDisp"),
                    providers=[provider_id],
                )
            )
            if len(results) >= limit:
                break
    except PARSE_ERRORS as e:
        raise ParseError(f"Malformed search entry: {e}", provider_id) from e
    return results


class YahooAPIClient(ProviderHTTPClient):
    """Async HTTP client for Yahoo Finance."""

    PROVIDER_ID = "yahoo"
    BASE_URL = YAHOO_BASE_URL

    async def _chart(self, symbol: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Fetch /v8/finance/chart/{symbol} and return the first result."""
        payload = await self._get(f"/v8/finance/chart/{symbol}", params)
        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            raise ParseError(f"Unexpected chart response for {symbol}", self.PROVIDER_ID)

        error = chart.get("error")
        if isinstance(error, dict) and error.get("description"):
            raise NotFoundError(f"Yahoo Finance: {error['description']}", self.PROVIDER_ID, symbols=[symbol])

        results = chart.get("result") or []
        if not results:
            raise NotFoundError(f"No chart data for {symbol}", self.PROVIDER_ID, symbols=[symbol])
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise ParseError(f"Unexpected chart result for {symbol}", self.PROVIDER_ID)
        return results[0]

    @staticmethod
    def _closes(result: Dict[str, Any]) -> List[Optional[float]]:
        quotes = (result.get("indicators") or {}).get("quote") or [{}]
        return quotes[0].get("close") or []

    # ============================================
    # Spot Prices
    # ============================================

    async def get_quote(self, symbol: str, currency: str) -> Optional[Quote]:
        """
        Latest quote for one symbol.

        The price is ``meta.regularMarketPrice`` (or the last close); the
        24h change is measured against ``meta.chartPreviousClose`` (or the
        previous close). The quote currency is the listing currency Yahoo
        reports, falling back to ``currency``.

        Returns:
            None if Yahoo has no usable price for the symbol
        """
        symbol_upper = symbol.upper()
        result = await self._chart(symbol_upper, {"range": "5d", "interval": "1d"})
        try:
            meta = result.get("meta") or {}

            closes = [c for c in self._closes(result) if isinstance(c, (int, float)) and math.isfinite(c)]
            price = meta.get("regularMarketPrice")
            if not isinstance(price, (int, float)) or not math.isfinite(price):
                if not closes:
                    return None
                price = closes[-1]

            change = percent_change(meta.get("chartPreviousClose"), price)
            if change is None and len(closes) >= 2:
                change = percent_change(closes[-2], price)

            return Quote(
                symbol=symbol_upper,
                name=meta.get("longName") or meta.get("shortName") or symbol_upper,
                price=Decimal(str(price)),
                change_24h=change,
                currency=meta.get("currency") or currency,
                provider=self.PROVIDER_ID,
                timestamp=current_utc_datetime(),
            )
        except PARSE_ERRORS as e:
            raise ParseError(f"Malformed chart meta for {symbol_upper}: {e}", self.PROVIDER_ID) from e

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
        Yahoo Endpoint:
            GET /v8/finance/chart/{symbol}?period1=<s>&period2=<s>&interval=1h|1d
        """
        symbol_upper = symbol.upper()
        result = await self._chart(
            symbol_upper,
            {
                "period1": datetime_to_timestamp(start),
                "period2": datetime_to_timestamp(end),
                "interval": "1h" if sampling == Sampling.HOURLY else "1d",
            },
        )
        points: List[ChartPoint] = []
        try:
            meta = result.get("meta") or {}
            volumes = ((result.get("indicators") or {}).get("quote") or [{}])[0].get("volume") or []
            name = meta.get("longName") or meta.get("shortName") or symbol_upper
            listing_currency = meta.get("currency") or currency

            for i, (ts, close) in enumerate(zip(result.get("timestamp") or [], self._closes(result))):
                if close is None:
                    continue
                try:
                    points.append(
                        ChartPoint(
                            timestamp=to_utc_datetime(ts),
                            price=float(close),
                            volume=volumes[i] if i < len(volumes) else None,
                        )
                    )
                except (TypeError, ValueError):
                    continue
        except PARSE_ERRORS as e:
            raise ParseError(f"Malformed chart data for {symbol_upper}: {e}", self.PROVIDER_ID) from e

        if not points:
            raise NotFoundError(f"No history for {symbol_upper}", self.PROVIDER_ID, symbols=[symbol_upper])

        return PriceHistory(
            symbol=symbol_upper,
            name=name,
            currency=listing_currency,
            provider=self.PROVIDER_ID,
            sampling=sampling,
            start=start,
            end=end,
            points=points,
        )

    # ============================================
    # Search
    # ============================================

    async def search(self, query: str, limit: int) -> List[SearchResult]:
        """
        Yahoo Endpoint:
            GET /v1/finance/search?q=apple&quotesCount=10&newsCount=0
        """
        payload = await self._get(
            "/v1/finance/search",
            {"q": query, "quotesCount": limit, "newsCount": 0},
        )
        return parse_search_quotes(payload, limit, self.PROVIDER_ID)
