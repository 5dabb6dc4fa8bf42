"""
Provider HTTP Client Base

Shared aiohttp plumbing for every provider API client:
- one ClientSession per client, opened/closed via ``async with``
- a fixed total timeout on every request
- request/response logging
- mapping of HTTP and transport failures onto the ProviderError taxonomy

Status mapping:
    401, 403            -> AuthError
    404                 -> NotFoundError
    429                 -> RateLimitedError
    other non-2xx       -> NetworkError
    timeout / transport -> NetworkError
    undecodable body    -> ParseError

Requests are not retried; the FallbackResolver moves on to the next provider
instead.

Usage:
    class YahooAPIClient(ProviderHTTPClient):
        PROVIDER_ID = "yahoo"
        BASE_URL = "https://query2.finance.yahoo.com"

    async with YahooAPIClient(timeout=10) as client:
        data = await client._get("/v8/finance/chart/AAPL", {"range": "5d"})
"""

import asyncio
import time
from typing import Any, Dict, Optional

import aiohttp

from core.errors import AuthError, NetworkError, NotFoundError, ParseError, RateLimitedError
from core.logging import get_logger, log_api_request, log_api_response

USER_AGENT = "pricedesk/0.1.0"

# Raised by payload parsing on unexpected shapes; api clients turn these into ParseError.
PARSE_ERRORS = (TypeError, ValueError, KeyError, IndexError, AttributeError, ArithmeticError)


class ProviderHTTPClient:
    """
    Base async HTTP client.

    Attributes:
        PROVIDER_ID: Provider id used in errors and logs
        BASE_URL: Default API base URL
        base_url: Effective base URL (overridable for tests/mirrors)
        timeout: Total timeout per request in seconds
        session: aiohttp ClientSession (None until entered)
    """

    PROVIDER_ID = ""
    BASE_URL = ""

    def __init__(
        self,
        timeout: float = 10,
        base_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self.headers = {"User-Agent": USER_AGENT, **(headers or {})}
        self.logger = get_logger(self.__class__.__module__)
        self.session: Optional[aiohttp.ClientSession] = None

    # ============================================
    # Context Manager for Session Management
    # ============================================

    async def __aenter__(self):
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.headers,
            )
            self.logger.debug(f"{self.__class__.__name__} session created")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.debug(f"{self.__class__.__name__} session closed")

    # ============================================
    # HTTP Request Handler
    # ============================================

    async def _get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        expect: str = "json",
        base_url: Optional[str] = None,
    ) -> Any:
        """
        GET ``path`` and return the decoded body.

        Args:
            path: Endpoint path appended to the base URL
            params: Query parameters
            headers: Extra request headers
            expect: "json" (decoded JSON) or "text" (raw body)
            base_url: Use another host for this call (e.g. Stooq's search)

        Raises:
            ProviderError: See module docstring for the mapping
            RuntimeError: If the session has not been opened
        """
        if not self.session:
            raise RuntimeError("Client session not initialized. Use 'async with' statement.")

        url = f"{(base_url or self.base_url).rstrip('/')}{path}"
        provider = self.PROVIDER_ID
        log_api_request(provider, path, params)
        started = time.monotonic()

        try:
            async with self.session.get(url, params=params, headers=headers) as resp:
                log_api_response(provider, path, resp.status, time.monotonic() - started)

                if resp.status in (401, 403):
                    raise AuthError(f"HTTP {resp.status} on {path}", provider)
                if resp.status == 404:
                    raise NotFoundError(f"HTTP 404 on {path}", provider)
                if resp.status == 429:
                    raise RateLimitedError(f"HTTP 429 on {path}", provider)
                if not 200 <= resp.status < 300:
                    body = await resp.text()
                    raise NetworkError(f"HTTP {resp.status} on {path}: {body[:200]}", provider)

                try:
                    if expect == "text":
                        return await resp.text()
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise ParseError(f"Undecodable response from {path}: {e}", provider) from e

        except asyncio.TimeoutError as e:
            raise NetworkError(f"Timeout after {self.timeout}s on {path}", provider) from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Request failed on {path}: {e}", provider) from e
