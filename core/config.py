"""
Configuration Management Module

This module handles loading, validating, and providing access to application
configuration from environment variables (.env file) and an optional TOML file.

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from environment, .env and pricedesk.toml
- Converts comma-separated strings to lists (provider order, CORS origins)
- Resolves the on-disk cache directory (XDG aware)
- Exposes the per-(provider, operation) cache TTL table

Precedence (highest first):
    constructor arguments > environment > .env > pricedesk.toml > defaults

The TOML file defaults to ``./pricedesk.toml``; set PRICEDESK_CONFIG_FILE to
point somewhere else.

Usage:
    from core.config import settings

    print(settings.default_currency)
    print(settings.provider_order_list)  # ["coingecko", "yahoo"]

Engine components never import ``settings`` directly. They receive the values
they need from PriceService, which is built from a Settings instance.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple, Type

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

CONFIG_FILE_ENV = "PRICEDESK_CONFIG_FILE"
DEFAULT_CONFIG_FILE = "pricedesk.toml"


class Settings(BaseSettings):
    """
    Application Settings

    Attributes:
        default_currency: Quote currency used when a request names none
        provider_order: Comma-separated provider priority (e.g. "coingecko,yahoo")
        coinmarketcap_api_key: CoinMarketCap credential (provider unavailable without it)
        symbol_groups: Named symbol lists, referenced in requests as "@name"
        cache_dir: Cache directory override (empty = XDG cache dir)
        cache_enabled: Disable to bypass the response cache entirely
        request_timeout: Upper bound on every provider HTTP call (seconds)
        max_concurrent_requests: Worker budget for concurrent provider calls
        *_cache_ttl: Default TTL per operation family (seconds)
        cache_ttl_overrides: TTL per "<provider>.<operation>" pair
        log_level: Logging level
        app_host / app_port: HTTP server bind address
        cors_origins: Comma-separated list of allowed CORS origins
    """

    # ============================================
    # Request Defaults
    # ============================================

    default_currency: str = Field(
        default="USD",
        description="Quote currency used when a request does not specify one"
    )

    provider_order: str = Field(
        default="",
        description="Comma-separated provider priority list (empty = registry order)"
    )

    symbol_groups: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Named symbol groups, expanded from '@name' tokens"
    )

    # ============================================
    # Provider Credentials
    # ============================================

    coinmarketcap_api_key: str = Field(
        default="",
        description="CoinMarketCap API key (provider is unavailable without it)"
    )

    # ============================================
    # Caching Configuration
    # ============================================

    cache_dir: str = Field(
        default="",
        description="Cache directory (empty = $XDG_CACHE_HOME/pricedesk)"
    )

    cache_enabled: bool = Field(
        default=True,
        description="Use the on-disk response cache"
    )

    quote_cache_ttl: int = Field(default=30, description="Spot quote TTL (seconds)")
    hourly_history_cache_ttl: int = Field(default=3600, description="Hourly history TTL (seconds)")
    daily_history_cache_ttl: int = Field(default=43200, description="Daily history TTL (seconds)")
    search_cache_ttl: int = Field(default=600, description="Search TTL (seconds)")
    fiat_rate_cache_ttl: int = Field(default=3600, description="Fiat reference rate TTL (seconds)")

    cache_ttl_overrides: Dict[str, int] = Field(
        default_factory=dict,
        description="TTL overrides keyed '<provider>.<operation>' (e.g. 'yahoo.quotes')"
    )

    # ============================================
    # Rate Limiting & Performance
    # ============================================

    request_timeout: float = Field(
        default=10,
        description="HTTP request timeout in seconds"
    )

    max_concurrent_requests: int = Field(
        default=8,
        description="Maximum concurrent outbound provider calls per request"
    )

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8000,
        description="FastAPI server port"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        toml_file=DEFAULT_CONFIG_FILE,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        toml_file = os.environ.get(CONFIG_FILE_ENV) or DEFAULT_CONFIG_FILE
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            file_secret_settings,
        )

    # ============================================
    # Custom Validators and Properties
    # ============================================

    @field_validator("default_currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("symbol_groups")
    @classmethod
    def _normalize_groups(cls, value: Dict[str, List[str]]) -> Dict[str, List[str]]:
        return {
            name.strip().lower(): [s.strip() for s in symbols if s.strip()]
            for name, symbols in value.items()
        }

    @property
    def provider_order_list(self) -> List[str]:
        """
        Convert the comma-separated provider order to a list of ids.

        Example:
            >>> Settings(provider_order="Yahoo, coingecko").provider_order_list
            ['yahoo', 'coingecko']
        """
        return [p.strip().lower() for p in self.provider_order.split(",") if p.strip()]

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Convert comma-separated CORS origins string to a list.

        Example:
            >>> settings.cors_origins_list
            ['http://localhost:3000', 'http://localhost:5173']
        """
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def cache_path(self) -> Path:
        """
        Resolved cache directory.

        Uses ``cache_dir`` when set, otherwise ``$XDG_CACHE_HOME/pricedesk``
        falling back to ``~/.cache/pricedesk``.
        """
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        base = os.environ.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
        return Path(base) / "pricedesk"


# ============================================
# Cache TTL Table
# ============================================

@dataclass(frozen=True)
class TTLTable:
    """
    Cache TTL per (provider, operation) pair, in seconds.

    Operation ids: quotes, history_hourly, history_daily, search,
    fiat_rates, fiat_history.
    """

    defaults: Dict[str, int]
    overrides: Dict[str, int] = field(default_factory=dict)
    fallback: int = 60

    @classmethod
    def from_settings(cls, settings: Settings) -> "TTLTable":
        return cls(
            defaults={
                "quotes": settings.quote_cache_ttl,
                "history_hourly": settings.hourly_history_cache_ttl,
                "history_daily": settings.daily_history_cache_ttl,
                "search": settings.search_cache_ttl,
                "fiat_rates": settings.fiat_rate_cache_ttl,
                "fiat_history": settings.daily_history_cache_ttl,
            },
            overrides={k.strip().lower(): v for k, v in settings.cache_ttl_overrides.items()},
        )

    def ttl_for(self, provider_id: str, operation_id: str) -> int:
        override = self.overrides.get(f"{provider_id}.{operation_id}")
        if override is not None:
            return override
        return self.defaults.get(operation_id, self.fallback)


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings) -> None:
    """
    Validate critical configuration settings on application startup.

    Raises:
        ValueError: If a setting is invalid
    """
    from core.fiat import is_known_fiat
    from core.logging import logger

    if not is_known_fiat(config.default_currency):
        raise ValueError(
            f"Invalid DEFAULT_CURRENCY: '{config.default_currency}'. "
            f"Must be a supported fiat code"
        )

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    if config.request_timeout <= 0:
        raise ValueError(f"REQUEST_TIMEOUT must be positive, got {config.request_timeout}")

    if config.max_concurrent_requests < 1:
        raise ValueError(
            f"MAX_CONCURRENT_REQUESTS must be at least 1, got {config.max_concurrent_requests}"
        )

    for key, ttl in config.cache_ttl_overrides.items():
        if "." not in key:
            raise ValueError(f"Invalid cache TTL override key '{key}'. Expected '<provider>.<operation>'")
        if ttl < 0:
            raise ValueError(f"Cache TTL override '{key}' must not be negative")

    logger.info("Configuration validated successfully")
    logger.info(f"Default currency: {config.default_currency}")
    logger.info(f"Provider order: {', '.join(config.provider_order_list) or '(registry order)'}")
    logger.info(f"Cache: {config.cache_path if config.cache_enabled else 'disabled'}")
    logger.info(f"Server: {config.app_host}:{config.app_port}")
    logger.info(f"Log level: {config.log_level.upper()}")
