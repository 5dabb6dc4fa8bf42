"""
Stooq API Client

Async client for Stooq's CSV endpoints (stocks, ETFs, indices; no key).

Endpoints Used:
    GET /q/l/?s=<sym>&i=d        - latest daily bar
        CSV rows: Symbol,Date,Time,Open,High,Low,Close,Volume
        e.g.      AAPL.US,2024-06-03,22:00:09,192.9,194.99,192.52,194.03,50080539
        Unknown symbols come back as ``AAPLX.US,N/D,N/D,...``
    GET /q/d/l/?s=<sym>&i=d      - daily history
        CSV with header: Date,Open,High,Low,Close,Volume

Stooq has no search endpoint; ticker search goes to Yahoo Finance's search
API instead (see ``search_base_url``).

Symbol Normalization:
    Stooq wants lowercase symbols with a market suffix. Symbols without a
    dot are assumed to be US listings: ``AAPL`` -> ``aapl.us``.
"""

import csv
import io
import math
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from core.errors import NotFoundError
from core.schemas import ChartPoint, PriceHistory, Quote, Sampling, SearchResult
from core.utils.time import current_utc_datetime, parse_utc_date
from providers.http_client import ProviderHTTPClient
from providers.yahoo.api_client import YAHOO_BASE_URL, parse_search_quotes, percent_change


def normalize_symbol(symbol: str) -> str:
    """
    Example:
        >>> normalize_symbol("AAPL")
        'aapl.us'
        >>> normalize_symbol("CDR.PL")
        'cdr.pl'
    """
    lowered = symbol.strip().lower()
    return lowered if "." in lowered else f"{lowered}.us"


def currency_for_symbol(normalized: str, fallback: str) -> str:
    return "USD" if normalized.endswith(".us") else fallback


def _number(value: str) -> Optional[float]:
    try:
        parsed = float(value.strip())
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


class StooqAPIClient(ProviderHTTPClient):
    """
    Attributes:
        search_base_url: Host serving ticker search (Yahoo Finance)
    """

    PROVIDER_ID = "stooq"
    BASE_URL = "https://stooq.com"

    def __init__(
        self,
        timeout: float = 10,
        base_url: Optional[str] = None,
        search_base_url: Optional[str] = None,
    ):
        super().__init__(timeout=timeout, base_url=base_url)
        self.search_base_url = (search_base_url or YAHOO_BASE_URL).rstrip("/")

    async def get_quote(self, symbol: str, currency: str) -> Optional[Quote]:
        """
        Latest close for one symbol; the 24h change is close vs. open of
        the same bar.

        Returns:
            None if Stooq has no data for the symbol
        """
        normalized = normalize_symbol(symbol)
        body = await self._get("/q/l/", {"s": normalized, "i": "d"}, expect="text")

        wanted = normalized.upper()
        for row in csv.reader(io.StringIO(body)):
            if len(row) < 7 or row[0].strip().upper() != wanted or row[1].strip() == "N/D":
                continue
            close = _number(row[6])
            if close is None:
                continue
            open_ = _number(row[3])
            display = symbol.strip().upper()
            return Quote(
                symbol=display,
                name=display,
                price=Decimal(row[6].strip()),
                change_24h=percent_change(open_, close),
                currency=currency_for_symbol(normalized, currency),
                provider=self.PROVIDER_ID,
                timestamp=current_utc_datetime(),
            )
        return None

    async def get_history(
        self,
        symbol: str,
        currency: str,
        start: datetime,
        end: datetime,
        sampling: Sampling,
    ) -> PriceHistory:
        """
        Daily closes, each stamped at 00:00 UTC of its trading day.

        Stooq Endpoint:
            GET /q/d/l/?s=aapl.us&i=d&d1=20240101&d2=20240630
        """
        normalized = normalize_symbol(symbol)
        body = await self._get(
            "/q/d/l/",
            {
                "s": normalized,
                "i": "d",
                "d1": start.strftime("%Y%m%d"),
                "d2": end.strftime("%Y%m%d"),
            },
            expect="text",
        )

        points: List[ChartPoint] = []
        for row in csv.reader(io.StringIO(body)):
            if len(row) < 5 or row[0].strip() == "Date":
                continue
            close = _number(row[4])
            if close is None:
                continue
            try:
                stamp = parse_utc_date(row[0])
            except ValueError:
                continue
            volume = _number(row[5]) if len(row) > 5 else None
            points.append(ChartPoint(timestamp=stamp, price=close, volume=volume))

        display = symbol.strip().upper()
        if not points:
            raise NotFoundError(f"No history for {display}", self.PROVIDER_ID, symbols=[display])

        return PriceHistory(
            symbol=display,
            name=display,
            currency=currency_for_symbol(normalized, currency),
            provider=self.PROVIDER_ID,
            sampling=sampling,
            start=start,
            end=end,
            points=points,
        )

    async def search(self, query: str, limit: int) -> List[SearchResult]:
        payload = await self._get(
            "/v1/finance/search",
            {"q": query, "quotesCount": limit, "newsCount": 0},
            base_url=self.search_base_url,
        )
        return parse_search_quotes(payload, limit, self.PROVIDER_ID)
