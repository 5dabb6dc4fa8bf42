"""
CoinMarketCap REST API Client

Async client for the CoinMarketCap Pro API. Every call needs an API key,
sent as the ``X-CMC_PRO_API_KEY`` header.

API Documentation:
    https://coinmarketcap.com/api/documentation/v1/

Endpoints Used:
    GET /cryptocurrency/quotes/latest      - batched spot quotes by symbol
    GET /cryptocurrency/quotes/historical  - historical quotes for one symbol

Response Envelope:
    {"status": {"error_code": 0, "error_message": null, ...},
     "data": {...}}

    A non-empty ``status.error_message`` is an error even on HTTP 200.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from core.errors import AuthError, NetworkError, NotFoundError, ParseError
from core.schemas import ChartPoint, PriceHistory, Quote, Sampling
from core.utils.time import current_utc_datetime
from providers.http_client import PARSE_ERRORS, ProviderHTTPClient


class CoinMarketCapAPIClient(ProviderHTTPClient):
    """
    Async HTTP client for the CoinMarketCap Pro API.

    Attributes:
        api_key: Pro API key (required for every endpoint)
    """

    PROVIDER_ID = "cmc"
    BASE_URL = "https://pro-api.coinmarketcap.com/v1"

    def __init__(self, api_key: str, timeout: float = 10, base_url: Optional[str] = None):
        super().__init__(timeout=timeout, base_url=base_url, headers={"X-CMC_PRO_API_KEY": api_key})
        self.api_key = api_key

    def _check_status(self, payload: Any, path: str) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ParseError(f"Unexpected response from {path}", self.PROVIDER_ID)

        status = payload.get("status") or {}
        message = status.get("error_message") if isinstance(status, dict) else None
        if message:
            if "api key" in message.lower():
                raise AuthError(message, self.PROVIDER_ID)
            raise NetworkError(f"CoinMarketCap: {message}", self.PROVIDER_ID)

        data = payload.get("data")
        if data is None:
            raise ParseError(f"Missing data in response from {path}", self.PROVIDER_ID)
        return data

    # ============================================
    # Spot Prices
    # ============================================

    async def get_quotes(self, symbols: Sequence[str], currency: str) -> Dict[str, Quote]:
        """
        Fetch quotes for all symbols in one call.

        CoinMarketCap Endpoint:
            GET /cryptocurrency/quotes/latest?symbol=BTC,ETH&convert=USD

        Response Format:
            {"data": {"BTC": {"name": "Bitcoin", "symbol": "BTC",
                              "quote": {"USD": {"price": 96420.1,
                                                "percent_change_24h": 1.4,
                                                "market_cap": 1.9e12}}}}}

        ``data[SYMBOL]`` is an array when the ticker is shared by several
        coins; the first entry (highest rank) is used.
        """
        wanted = [s.upper() for s in symbols]
        convert = currency.upper()
        path = "/cryptocurrency/quotes/latest"

        data = self._check_status(
            await self._get(path, {"symbol": ",".join(dict.fromkeys(wanted)), "convert": convert}),
            path,
        )

        if not isinstance(data, dict):
            raise ParseError(f"Unexpected data in response from {path}", self.PROVIDER_ID)

        now = current_utc_datetime()
        quotes: Dict[str, Quote] = {}
        for symbol in wanted:
            coin = data.get(symbol)
            if isinstance(coin, list):
                coin = coin[0] if coin else None
            if not isinstance(coin, dict):
                continue

            try:
                quote = (coin.get("quote") or {}).get(convert)
                if not isinstance(quote, dict) or quote.get("price") is None:
                    continue
                quotes[symbol] = Quote(
                    symbol=symbol,
                    name=coin.get("name") or symbol,
                    price=Decimal(str(quote["price"])),
                    change_24h=quote.get("percent_change_24h"),
                    market_cap=Decimal(str(quote["market_cap"])) if quote.get("market_cap") is not None else None,
                    currency=convert,
                    provider=self.PROVIDER_ID,
                    timestamp=now,
                )
            except PARSE_ERRORS as e:
                raise ParseError(f"Malformed quote for {symbol}: {e}", self.PROVIDER_ID) from e

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
        CoinMarketCap Endpoint:
            GET /cryptocurrency/quotes/historical?symbol=BTC&convert=USD
                &time_start=<iso>&time_end=<iso>&interval=hourly|daily

        Response Format:
            {"data": {"symbol": "BTC", "name": "Bitcoin",
                      "quotes": [{"timestamp": "2024-01-01T00:00:00.000Z",
                                  "quote": {"USD": {"price": 42280.2, "volume_24h": 1.2e10}}}]}}

        ``data`` may also be keyed by symbol, holding an object or an array.
        """
        symbol_upper = symbol.upper()
        convert = currency.upper()
        path = "/cryptocurrency/quotes/historical"

        data = self._check_status(
            await self._get(
                path,
                {
                    "symbol": symbol_upper,
                    "convert": convert,
                    "time_start": start.isoformat(),
                    "time_end": end.isoformat(),
                    "interval": "hourly" if sampling == Sampling.HOURLY else "daily",
                },
            ),
            path,
        )

        payload = _history_payload(data, symbol_upper)
        if payload is None:
            raise NotFoundError(f"No history for {symbol_upper}", self.PROVIDER_ID, symbols=[symbol_upper])

        points: List[ChartPoint] = []
        try:
            for item in payload.get("quotes") or []:
                quote = (item.get("quote") or {}).get(convert) or {}
                price = quote.get("price")
                stamp = item.get("timestamp")
                if price is None or not stamp:
                    continue
                try:
                    points.append(
                        ChartPoint(
                            timestamp=datetime.fromisoformat(stamp.replace("Z", "+00:00")),
                            price=float(price),
                            volume=quote.get("volume_24h"),
                        )
                    )
                except (TypeError, ValueError):
                    self.logger.debug(f"Skipping malformed CoinMarketCap point for {symbol_upper}: {item}")
        except PARSE_ERRORS as e:
            raise ParseError(f"Malformed history for {symbol_upper}: {e}", self.PROVIDER_ID) from e

        if not points:
            raise NotFoundError(f"No history for {symbol_upper}", self.PROVIDER_ID, symbols=[symbol_upper])

        return PriceHistory(
            symbol=payload.get("symbol") or symbol_upper,
            name=payload.get("name") or symbol_upper,
            currency=convert,
            provider=self.PROVIDER_ID,
            sampling=sampling,
            start=start,
            end=end,
            points=points,
        )


def _history_payload(data: Any, symbol_upper: str) -> Optional[Dict[str, Any]]:
    if not isinstance(data, dict):
        return None
    if "quotes" in data:
        return data

    by_symbol = data.get(symbol_upper)
    if isinstance(by_symbol, list):
        by_symbol = by_symbol[0] if by_symbol else None
    if isinstance(by_symbol, dict) and "quotes" in by_symbol:
        return by_symbol
    return None
