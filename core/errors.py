"""
Error Taxonomy

Every failure the engine can report is one of four families:

    ProviderError            One provider call failed. Recovered by the
                             FallbackResolver (advance to the next candidate).
        AuthError                missing/invalid credential
        RateLimitedError         HTTP 429 or provider quota message
        NotFoundError            unknown symbols / no search matches
        NetworkError             transport failure, timeout, 5xx
        ParseError               malformed or unexpected response body
        UnsupportedCapabilityError
                                 provider cannot serve this request shape
                                 (e.g. hourly sampling on a daily-only source)

    ConfigError              Invalid request or configuration. Fatal; raised
                             before any network activity.

    CacheError               Unreadable/corrupt cache entry or cache I/O
                             failure. Never leaves storage.cache.

    AllProvidersFailedError  Every fallback candidate failed. Carries one
                             AttemptRecord per attempted candidate.

Each error exposes a stable ``kind`` string used in attempt logs and in
the HTTP error bodies.
"""

from typing import List, Optional, Sequence

from core.schemas import AttemptRecord


class PriceDeskError(Exception):
    """Base class for all errors raised by the engine."""

    kind: str = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


# ============================================
# Provider Errors (recoverable via fallback)
# ============================================

class ProviderError(PriceDeskError):
    """A single provider call failed."""

    kind = "provider"

    def __init__(self, message: str = "", provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider

    def __str__(self) -> str:
        prefix = f"{self.provider}: " if self.provider else ""
        return f"{prefix}{self.message or self.kind}"


class AuthError(ProviderError):
    kind = "auth"


class RateLimitedError(ProviderError):
    kind = "rate_limited"


class NotFoundError(ProviderError):
    """
    The provider could not resolve some symbols (or had no search matches).

    Attributes:
        symbols: Unresolved symbols (uppercase), in request order
        query: Search query that produced no matches
    """

    kind = "not_found"

    def __init__(
        self,
        message: str = "",
        provider: Optional[str] = None,
        symbols: Sequence[str] = (),
        query: Optional[str] = None,
    ):
        super().__init__(message, provider)
        self.symbols = tuple(symbols)
        self.query = query


class NetworkError(ProviderError):
    kind = "network"


class ParseError(ProviderError):
    kind = "parse"


class UnsupportedCapabilityError(ProviderError):
    kind = "unsupported_capability"


# ============================================
# Configuration Errors (fatal, no network)
# ============================================

class ConfigError(PriceDeskError):
    kind = "config"


class UnknownProviderError(ConfigError):
    kind = "unknown_provider"


class ProviderLacksCapabilityError(ConfigError):
    """An explicitly requested provider does not declare the capability."""

    kind = "unsupported_capability"


class ProviderUnavailableError(ConfigError):
    """The provider exists but cannot be used (e.g. credential missing)."""

    kind = "unavailable"


class InvalidFiatCodeError(ConfigError):
    kind = "invalid_fiat_code"


class InvalidConversionTokenError(ConfigError):
    kind = "invalid_conversion_token"


class InvalidChartWindowError(ConfigError):
    kind = "invalid_chart_window"


class UnknownSymbolGroupError(ConfigError):
    kind = "unknown_symbol_group"


class EmptyRequestError(ConfigError):
    kind = "empty_request"


# ============================================
# Cache Errors (always recovered inside storage.cache)
# ============================================

class CacheError(PriceDeskError):
    kind = "cache"


class CacheCorruptError(CacheError):
    kind = "cache_corrupt"


class CacheIOError(CacheError):
    kind = "cache_io"


# ============================================
# Aggregate Failure
# ============================================

class AllProvidersFailedError(PriceDeskError):
    """
    Every fallback candidate failed.

    Attributes:
        operation: Operation id (e.g. "quotes", "history_daily")
        attempts: One AttemptRecord per attempted candidate, in attempt order
    """

    kind = "all_providers_failed"

    def __init__(self, operation: str, attempts: List[AttemptRecord]):
        self.operation = operation
        self.attempts = list(attempts)
        summary = "; ".join(f"{a.provider}: {a.outcome}" for a in self.attempts) or "no candidates"
        super().__init__(f"All providers failed for {operation} ({summary})")

    @property
    def reasons(self) -> List[tuple]:
        """(provider id, failure kind) pairs in attempt order."""
        return [(a.provider, a.outcome) for a in self.attempts]
