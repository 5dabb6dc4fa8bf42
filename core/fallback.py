"""
Fallback Resolver

Chooses which providers may serve a request and drives them one at a time.

Candidate list:
    1. An explicit provider id makes that provider the only candidate. If it
       lacks the capability or is unavailable the request fails immediately
       with a ConfigError; there is no fallback.
    2. Otherwise the configured priority list is filtered to providers that
       support the capability and are available, then every remaining
       capable and available provider is appended in registry order.
       Duplicates keep their first position.

Execution:
    Candidates are tried strictly sequentially; candidate k+1 never starts
    before candidate k has failed. Before each network call the cache is
    consulted under that candidate's key, and a fresh hit short-circuits the
    call. Any ProviderError advances to the next candidate with the whole
    request (batch-level fallback). When every candidate fails,
    AllProvidersFailedError lists every attempt in order.

    Stale cache entries are never used as a last resort.

Example:
    resolver = FallbackResolver(registry, cache, ttl_table, priority=["yahoo"])
    candidates = resolver.resolve_candidates(Capability.SPOT_QUOTE)
    result = await resolver.run(candidates, quotes_operation(["AAPL"], "USD"))
    print(result.provider_id, [a.outcome for a in result.attempts])
"""

from dataclasses import dataclass, field
from decimal import InvalidOperation
from typing import Any, List, Optional, Sequence, Tuple

from core.config import TTLTable
from core.errors import (
    AllProvidersFailedError,
    ProviderError,
    ProviderLacksCapabilityError,
    ProviderUnavailableError,
)
from core.logging import get_logger, log_fallback_attempt
from core.operations import ProviderOperation
from core.provider_interface import ProviderInterface
from core.provider_registry import ProviderRegistry
from core.schemas import AttemptRecord, Capability
from storage.cache import ResponseCache

logger = get_logger(__name__)

_DECODE_ERRORS = (ValueError, TypeError, KeyError, AttributeError, InvalidOperation)


@dataclass
class FallbackResult:
    """Outcome of a successful fallback run."""

    value: Any
    provider_id: str
    from_cache: bool = False
    attempts: List[AttemptRecord] = field(default_factory=list)


class FallbackResolver:
    """
    Attributes:
        registry: Registry of all providers (defines registry order)
        cache: Response cache consulted before every provider call
        ttl_table: TTL per (provider, operation)
        priority: Configured provider priority (ids)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: ResponseCache,
        ttl_table: TTLTable,
        priority: Sequence[str] = (),
    ):
        self.registry = registry
        self.cache = cache
        self.ttl_table = ttl_table
        self.priority = [p.strip().lower() for p in priority if p.strip()]

    # ============================================
    # Candidate Resolution
    # ============================================

    def resolve_candidates(
        self, capability: Capability, explicit: Optional[str] = None
    ) -> List[ProviderInterface]:
        """
        Ordered candidate list for ``capability``.

        Raises:
            UnknownProviderError: Explicit or configured id is not registered
            ProviderLacksCapabilityError: Explicit provider lacks the capability
            ProviderUnavailableError: Explicit provider unavailable, or no
                provider at all can serve the capability
        """
        if explicit:
            provider = self.registry.get_provider(explicit)
            if not provider.supports(capability):
                raise ProviderLacksCapabilityError(
                    f"Provider '{provider.id}' does not support {capability.value}"
                )
            if not provider.available:
                reason = provider.unavailable_reason or "not available"
                raise ProviderUnavailableError(f"Provider '{provider.id}' is {reason}")
            return [provider]

        ordered = [self.registry.get_provider(pid) for pid in self.priority]
        ordered.extend(self.registry)

        candidates: List[ProviderInterface] = []
        seen = set()
        for provider in ordered:
            if provider.id in seen:
                continue
            seen.add(provider.id)
            if provider.supports(capability) and provider.available:
                candidates.append(provider)

        if not candidates:
            raise ProviderUnavailableError(f"No available provider supports {capability.value}")

        logger.debug(f"Candidates for {capability.value}: {', '.join(p.id for p in candidates)}")
        return candidates

    # ============================================
    # Execution
    # ============================================

    async def run(
        self, candidates: Sequence[ProviderInterface], operation: ProviderOperation
    ) -> FallbackResult:
        """
        Try ``operation`` against each candidate until one succeeds.

        Raises:
            AllProvidersFailedError: Every candidate failed
        """
        attempts: List[AttemptRecord] = []

        for provider in candidates:
            try:
                value, cached = await self.call_with_cache(provider, operation)
            except ProviderError as e:
                attempts.append(AttemptRecord(provider=provider.id, outcome=e.kind, detail=e.message))
                log_fallback_attempt(operation.id, provider.id, e.kind, e.message)
                continue

            attempts.append(AttemptRecord(provider=provider.id, outcome="success", cached=cached))
            log_fallback_attempt(operation.id, provider.id, "cache_hit" if cached else "success")
            return FallbackResult(
                value=value, provider_id=provider.id, from_cache=cached, attempts=attempts
            )

        error = AllProvidersFailedError(operation.id, attempts)
        logger.error(str(error))
        raise error

    async def call_with_cache(
        self, provider: ProviderInterface, operation: ProviderOperation
    ) -> Tuple[Any, bool]:
        """
        One candidate attempt: bind the operation to the candidate, cache
        read, provider call, cache write.

        Returns:
            (value, served_from_cache)

        Raises:
            ProviderError: Binding or the provider call failed
        """
        operation = operation.for_provider(provider)

        key = operation.cache_key(provider.id)
        payload = await self.cache.get(key)
        if payload is not None:
            try:
                return operation.decode(payload), True
            except _DECODE_ERRORS as e:
                logger.debug(f"Discarding undecodable cache entry {key}: {e}")

        value = await operation.invoke(provider)
        await self.cache.put(
            key, operation.encode(value), self.ttl_table.ttl_for(provider.id, operation.id)
        )
        return value, False
