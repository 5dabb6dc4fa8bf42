"""
Normalized Data Schemas

This module defines Pydantic models for every value the engine produces or
accepts. Regardless of which provider the data comes from (CoinGecko, Yahoo
Finance, Stooq, ...), it gets normalized into these schemas so API consumers
work with one consistent shape.

Models:
    - Quote: Spot price of one asset in one quote currency
    - ChartPoint / PriceHistory: Normalized historical series
    - SearchResult: Ticker search hit, merged across providers
    - ConversionResult / ConversionOutcome: Amount conversion per target
    - AttemptRecord: One FallbackResolver attempt (provider + outcome)
    - CacheEntry: Persisted provider payload with fetch time and TTL
    - PriceRequest / ChartWindowRequest: Normalized inbound request
    - ProviderInfo, QuoteResponse, SearchResponse, ChartSeriesOutcome

Value objects are immutable (frozen); they are built per request and have
no persistent identity.
"""

import math
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.utils.time import ensure_utc


# ============================================
# Enumerations
# ============================================

class Capability(str, Enum):
    """A function a provider can perform. Declared once, never changes."""

    SPOT_QUOTE = "spot_quote"
    HISTORY = "history"
    SEARCH = "search"


class Sampling(str, Enum):
    """Chart granularity. AUTO is resolved from the window length."""

    AUTO = "auto"
    HOURLY = "hourly"
    DAILY = "daily"


class ValueModel(BaseModel):
    """Base for immutable value objects."""

    model_config = ConfigDict(frozen=True)


# ============================================
# Quote Schema
# ============================================

class Quote(ValueModel):
    """
    Spot Quote Model

    Attributes:
        symbol: Asset symbol in uppercase (e.g., "BTC", "AAPL")
        name: Display name (e.g., "Bitcoin", "Apple Inc.")
        price: Price in the quote currency
        change_24h: 24h change in percent (optional)
        market_cap: Market capitalization in the quote currency (optional)
        currency: Quote currency code in uppercase (e.g., "USD")
        provider: Source provider identifier
        timestamp: Observation time in UTC

    A Quote is never built without both a price and a currency.

    Example:
        >>> Quote(symbol="btc", name="Bitcoin", price=Decimal("96420.1"),
        ...       currency="usd", provider="coingecko",
        ...       timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc))
    """

    symbol: str = Field(..., min_length=1, examples=["BTC", "AAPL"])
    name: str = Field(default="", description="Display name")
    price: Decimal = Field(..., description="Price in quote currency")
    change_24h: Optional[float] = Field(default=None, description="24h change (%)")
    market_cap: Optional[Decimal] = Field(default=None, description="Market capitalization")
    currency: str = Field(..., min_length=1, examples=["USD", "EUR"])
    provider: str = Field(..., description="Source provider identifier")
    timestamp: datetime = Field(..., description="Observation time (UTC)")

    @field_validator("symbol", "currency")
    @classmethod
    def validate_upper(cls, v: str) -> str:
        """Ensure symbol and currency are uppercase"""
        return v.strip().upper()

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("price must be a finite number")
        return v

    @field_validator("change_24h")
    @classmethod
    def validate_change(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not math.isfinite(v):
            return None
        return v

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "symbol": "BTC",
                "name": "Bitcoin",
                "price": "96420.1",
                "change_24h": 1.42,
                "market_cap": "1908000000000",
                "currency": "USD",
                "provider": "coingecko",
                "timestamp": "2024-01-01T12:00:00Z",
            }
        }
    )


# ============================================
# Chart Schemas
# ============================================

class ChartPoint(ValueModel):
    """
    One point of a price series.

    Timestamps are UTC with second precision. Within a normalized series
    timestamps are strictly increasing and lie inside the requested window.
    """

    timestamp: datetime
    price: float
    volume: Optional[float] = None

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class PriceHistory(ValueModel):
    """Normalized series for one symbol from one provider."""

    symbol: str
    name: str = ""
    currency: str
    provider: str
    sampling: Sampling
    start: datetime
    end: datetime
    points: List[ChartPoint] = Field(default_factory=list)

    @field_validator("symbol", "currency")
    @classmethod
    def validate_upper(cls, v: str) -> str:
        return v.strip().upper()


# ============================================
# Search Schema
# ============================================

class SearchResult(ValueModel):
    """
    Ticker search hit.

    ``providers`` lists every provider that reported this symbol, in the
    order they were merged. Within a merged response there is exactly one
    SearchResult per symbol.
    """

    symbol: str
    name: str = ""
    exchange: Optional[str] = None
    asset_type: Optional[str] = None
    providers: List[str] = Field(default_factory=list)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        return v.strip().upper()


# ============================================
# Fallback / Error Reporting
# ============================================

class AttemptRecord(ValueModel):
    """
    One FallbackResolver attempt.

    Attributes:
        provider: Candidate provider id
        outcome: "success" or the failure kind (e.g. "network", "not_found")
        detail: Failure message (optional)
        cached: True when the result came from a fresh cache entry
    """

    provider: str
    outcome: str
    detail: Optional[str] = None
    cached: bool = False


class ErrorDetail(ValueModel):
    """Serializable error report for per-target / per-symbol outcomes."""

    kind: str
    message: str
    attempts: List[AttemptRecord] = Field(default_factory=list)

    @classmethod
    def from_exception(cls, exc: Exception) -> "ErrorDetail":
        return cls(
            kind=getattr(exc, "kind", "error"),
            message=str(exc),
            attempts=list(getattr(exc, "attempts", [])),
        )


# ============================================
# Conversion Schemas
# ============================================

class ConversionResult(ValueModel):
    """
    Result of converting an amount of fiat into one target.

    ``rate`` is always expressed as units of the source currency per one
    target unit.

    Example:
        100 USD -> BTC at 96420.1 USD/BTC gives target_amount 0.001037, rate 96420.1
    """

    source_amount: Decimal
    source_currency: str
    target_symbol: str
    target_name: str = ""
    target_amount: Decimal
    rate: Decimal
    provider: str
    timestamp: datetime


class ConversionOutcome(ValueModel):
    """Per-target conversion outcome: exactly one of result / error is set."""

    target: str
    result: Optional[ConversionResult] = None
    error: Optional[ErrorDetail] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class ChartSeriesOutcome(ValueModel):
    """Per-symbol chart outcome: exactly one of history / error is set."""

    symbol: str
    history: Optional[PriceHistory] = None
    error: Optional[ErrorDetail] = None
    attempts: List[AttemptRecord] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.history is not None


# ============================================
# Cache Entry
# ============================================

class CacheEntry(BaseModel):
    """
    Persisted provider payload.

    An entry is fresh iff ``now - fetched_at < ttl_seconds``. A stale entry
    is never served but is not deleted either; the next successful call
    overwrites it. An entry stamped in the future (clock skew) is stale.
    """

    key: str
    payload: Any
    fetched_at: datetime
    ttl_seconds: int = Field(..., ge=0)

    @field_validator("fetched_at")
    @classmethod
    def validate_fetched_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def is_fresh(self, now: datetime) -> bool:
        age = ensure_utc(now) - self.fetched_at
        return timedelta(0) <= age < timedelta(seconds=self.ttl_seconds)


# ============================================
# Requests
# ============================================

def _coerce_window_bound(v: Any) -> Optional[Union[datetime, date]]:
    # A bare YYYY-MM-DD stays a date; the normalizer expands it to a day boundary.
    if v is None or isinstance(v, datetime):
        return v
    if isinstance(v, date):
        return v
    if isinstance(v, str):
        raw = v.strip()
        if len(raw) == 10:
            return date.fromisoformat(raw)
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    raise ValueError(f"Invalid window bound: {v!r}")


class ChartWindowRequest(ValueModel):
    """
    Chart window as requested.

    Attributes:
        preset: 1D, 5D, 1M, 6M, YTD, 1Y, 5Y or ALL (ignored when start is given)
        start: Explicit start (date = 00:00:00 UTC of that day)
        end: Explicit end (date = 23:59:59 UTC of that day, default now)
        sampling: auto, hourly or daily
    """

    preset: str = "1M"
    start: Optional[Union[datetime, date]] = None
    end: Optional[Union[datetime, date]] = None
    sampling: Sampling = Sampling.AUTO

    @field_validator("preset")
    @classmethod
    def validate_preset(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("start", "end", mode="plain")
    @classmethod
    def validate_bound(cls, v: Any) -> Optional[Union[datetime, date]]:
        return _coerce_window_bound(v)


class PriceRequest(ValueModel):
    """
    Normalized inbound request.

    ``symbols`` may contain "@group" tokens; they are expanded by
    PriceService before the engine sees the request.
    """

    operation: Literal["quote", "chart", "search", "convert"]
    symbols: List[str] = Field(default_factory=list)
    currency: Optional[str] = None
    provider: Optional[str] = None
    window: ChartWindowRequest = Field(default_factory=ChartWindowRequest)
    search_query: Optional[str] = None
    search_limit: int = Field(default=10, ge=1, le=50)
    conversion_source: Optional[str] = None

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip().lower()


# ============================================
# Responses
# ============================================

class ProviderInfo(ValueModel):
    id: str
    name: str
    capabilities: List[Capability]
    available: bool
    batches_quotes: bool = False
    max_hourly_window_days: Optional[int] = None


class QuoteResponse(ValueModel):
    """Quotes in request order, all from one provider."""

    quotes: List[Quote]
    provider: str
    from_cache: bool = False
    attempts: List[AttemptRecord] = Field(default_factory=list)


class SearchResponse(ValueModel):
    query: str
    results: List[SearchResult]
    providers: List[str] = Field(default_factory=list, description="Providers that answered")
    attempts: List[AttemptRecord] = Field(default_factory=list)
