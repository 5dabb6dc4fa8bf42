"""
FastAPI Application - Multi-Provider Price API

Provides unified REST access to prices for crypto assets, equities and fiat
currencies, with provider fallback and a shared response cache.

Providers (registry order):
    - CoinGecko
    - CoinMarketCap (needs COINMARKETCAP_API_KEY)
    - Yahoo Finance
    - Stooq
    - Frankfurter (fiat reference rates only)

Features:
    - Spot quotes with batch-level provider fallback
    - Historical charts (presets or explicit windows, hourly/daily sampling)
    - Ticker search merged across providers
    - Fiat amount conversion into assets and other fiat currencies

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8000

Docs:
    - Swagger: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from core.config import settings, validate_configuration
from core.errors import AllProvidersFailedError, ConfigError, ProviderError, UnsupportedCapabilityError
from core.logging import logger, setup_logging
from core.schemas import (
    ChartSeriesOutcome,
    ChartWindowRequest,
    ConversionOutcome,
    ProviderInfo,
    QuoteResponse,
    Sampling,
    SearchResponse,
)
from services.price_service import PriceService

API_VERSION = "0.1.0"


# ============================================
# Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the PriceService on startup and close provider sessions on shutdown."""
    setup_logging(settings.log_level)
    logger.info("=== Application Starting ===")
    try:
        validate_configuration(settings)
        service = PriceService(settings)
        await service.initialize()
        app.state.service = service
        logger.info("=== Started Successfully ===")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    try:
        yield
    finally:
        logger.info("=== Shutting Down ===")
        await service.shutdown()
        logger.info("=== Shutdown Complete ===")


# ============================================
# FastAPI Application
# ============================================

app = FastAPI(
    title="pricedesk Price API",
    description=(
        "Prices for crypto assets, equities and fiat currencies across several "
        "data providers, with automatic fallback.\n\n"
        "## REST Endpoints\n"
        "- `GET /quotes?symbols=BTC,ETH&currency=USD` - Spot quotes\n"
        "- `GET /chart?symbols=AAPL&range=6M` - Historical series per symbol\n"
        "- `GET /search?q=apple` - Ticker search across providers\n"
        "- `GET /convert?amount=100usd&to=BTC,EUR` - Amount conversion\n"
        "- `GET /providers` - Providers and their capabilities\n"
        "- `GET /health` - Health check\n\n"
        "Every data endpoint accepts `provider` to pin one provider "
        "(no fallback). Symbol lists accept `@group` tokens for configured "
        "symbol groups."
    ),
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_service(request: Request) -> PriceService:
    """Dependency returning the PriceService created by the lifespan."""
    return request.app.state.service


def _split(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


# ============================================
# System Endpoints
# ============================================

@app.get("/", tags=["System"])
async def root(service: PriceService = Depends(get_service)):
    """API information and configured providers."""
    return {
        "name": "pricedesk Price API",
        "version": API_VERSION,
        "status": "operational",
        "docs": "/docs",
        "providers": service.registry.list_providers(),
    }


@app.get("/health", tags=["System"])
async def health_check(service: PriceService = Depends(get_service)):
    """Health check - reports every provider's availability."""
    health = await service.registry.health_check_all()
    health[service.fiat_provider.id] = await service.fiat_provider.health_check()
    return {
        "status": "healthy" if all(health.values()) else "degraded",
        "providers": health,
    }


@app.get("/providers", response_model=List[ProviderInfo], tags=["System"])
async def list_providers(service: PriceService = Depends(get_service)):
    """List providers with capabilities and availability, in registry order."""
    return service.list_providers()


# ============================================
# Price Endpoints
# ============================================

@app.get("/quotes", response_model=QuoteResponse, tags=["Prices"])
async def get_quotes(
    symbols: str = Query(..., description="Comma-separated symbols or @groups (e.g. BTC,ETH)"),
    currency: Optional[str] = Query(default=None, description="Quote currency (default from config)"),
    provider: Optional[str] = Query(default=None, description="Pin one provider (no fallback)"),
    service: PriceService = Depends(get_service),
):
    """
    Spot quotes, all from one provider.

    Example:
        GET /quotes?symbols=BTC,ETH&currency=EUR
    """
    return await service.quote(_split(symbols), currency, provider)


@app.get("/chart", response_model=List[ChartSeriesOutcome], tags=["Prices"])
async def get_chart(
    symbols: str = Query(..., description="Comma-separated symbols; all-fiat lists chart reference rates"),
    range_: str = Query(default="1M", alias="range", description="1D, 5D, 1M, 6M, YTD, 1Y, 5Y or ALL"),
    start: Optional[str] = Query(default=None, description="Start date (YYYY-MM-DD) or ISO datetime"),
    end: Optional[str] = Query(default=None, description="End date (YYYY-MM-DD) or ISO datetime"),
    sampling: Sampling = Query(default=Sampling.AUTO, description="auto, hourly or daily"),
    currency: Optional[str] = Query(default=None),
    provider: Optional[str] = Query(default=None),
    service: PriceService = Depends(get_service),
):
    """
    One normalized series per symbol; failed symbols carry an error.

    Example:
        GET /chart?symbols=BTC,AAPL&range=5D
        GET /chart?symbols=USD,EUR,GBP&start=2024-01-01&end=2024-03-31
    """
    try:
        window = ChartWindowRequest(preset=range_, start=start, end=end, sampling=sampling)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid chart window: {e.errors()[0]['msg']}")
    return await service.chart(_split(symbols), window, currency, provider)


@app.get("/search", response_model=SearchResponse, tags=["Prices"])
async def search_tickers(
    q: str = Query(..., description="Search text (name or ticker)"),
    limit: int = Query(default=10, ge=1, le=50),
    provider: Optional[str] = Query(default=None),
    service: PriceService = Depends(get_service),
):
    """Ticker search merged across search-capable providers."""
    return await service.search(q, limit, provider)


@app.get("/convert", response_model=List[ConversionOutcome], tags=["Prices"])
async def convert_amount(
    amount: str = Query(..., description="Amount with fiat code, e.g. 100usd"),
    to: str = Query(..., description="Comma-separated targets (assets and/or fiat codes)"),
    provider: Optional[str] = Query(default=None, description="Pin one provider for asset quotes"),
    service: PriceService = Depends(get_service),
):
    """
    Example:
        GET /convert?amount=100usd&to=BTC,ETH,EUR
    """
    return await service.convert(amount, _split(to), provider)


# ============================================
# Error Handlers
# ============================================

@app.exception_handler(ConfigError)
async def config_error_handler(request: Request, exc: ConfigError):
    return JSONResponse(status_code=400, content={"error": exc.kind, "detail": exc.message})


@app.exception_handler(UnsupportedCapabilityError)
async def unsupported_handler(request: Request, exc: UnsupportedCapabilityError):
    return JSONResponse(
        status_code=422,
        content={"error": exc.kind, "detail": exc.message, "provider": exc.provider},
    )


@app.exception_handler(AllProvidersFailedError)
async def all_failed_handler(request: Request, exc: AllProvidersFailedError):
    return JSONResponse(
        status_code=502,
        content={
            "error": exc.kind,
            "detail": str(exc),
            "attempts": [a.model_dump() for a in exc.attempts],
        },
    )


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error(f"Provider error: {exc}")
    return JSONResponse(
        status_code=502,
        content={"error": exc.kind, "detail": exc.message, "provider": exc.provider},
    )


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Handle 404 errors."""
    return JSONResponse(status_code=404, content={"detail": "Not found", "path": str(request.url)})
