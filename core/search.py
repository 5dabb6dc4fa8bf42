"""
Search Merger

Ticker search is multi-source: the query goes to every Search-capable
candidate concurrently (bounded by the worker budget), and the answers are
merged by uppercase symbol.

Merge rules:
    - candidates are merged in candidate order, not completion order
    - the first provider reporting a symbol supplies its name, exchange and
      asset type; later providers only add their id to ``providers``
    - the merged list keeps the order of first appearance and is truncated
      to ``limit``

If every candidate fails the search raises AllProvidersFailedError. If at
least one answers, the merged (possibly empty) list is returned together
with the failed attempts.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from core.errors import AllProvidersFailedError, ProviderError
from core.fallback import FallbackResolver
from core.logging import get_logger
from core.operations import search_operation
from core.provider_interface import ProviderInterface
from core.schemas import AttemptRecord, SearchResult
from core.utils.concurrency import gather_bounded

logger = get_logger(__name__)


@dataclass
class MergedSearch:
    results: List[SearchResult]
    providers: List[str] = field(default_factory=list)
    attempts: List[AttemptRecord] = field(default_factory=list)


def merge_search_results(
    responses: Iterable[Tuple[str, Sequence[SearchResult]]], limit: int
) -> List[SearchResult]:
    """
    Merge per-provider result lists (given in candidate order).

    Example:
        >>> merged = merge_search_results(
        ...     [("yahoo", [SearchResult(symbol="AAPL", name="Apple Inc.")]),
        ...      ("stooq", [SearchResult(symbol="aapl", name="APPLE")])],
        ...     limit=10,
        ... )
        >>> merged[0].providers
        ['yahoo', 'stooq']
    """
    merged: Dict[str, SearchResult] = {}
    contributors: Dict[str, List[str]] = {}

    for provider_id, results in responses:
        for result in results:
            symbol = result.symbol.upper()
            if symbol not in merged:
                merged[symbol] = result
                contributors[symbol] = []
            if provider_id not in contributors[symbol]:
                contributors[symbol].append(provider_id)

    combined = [
        result.model_copy(update={"providers": contributors[symbol]})
        for symbol, result in merged.items()
    ]
    return combined[:max(0, limit)]


class SearchMerger:
    """
    Attributes:
        resolver: Provides candidates and the cached per-provider call
        max_concurrency: Worker budget for the fan-out
    """

    def __init__(self, resolver: FallbackResolver, max_concurrency: int = 8):
        self.resolver = resolver
        self.max_concurrency = max_concurrency

    async def search(
        self, query: str, limit: int, candidates: Sequence[ProviderInterface]
    ) -> MergedSearch:
        """
        Fan ``query`` out to ``candidates`` and merge the answers.

        Raises:
            AllProvidersFailedError: Every candidate failed
        """
        operation = search_operation(query, limit)

        outcomes = await gather_bounded(
            candidates,
            lambda provider: self.resolver.call_with_cache(provider, operation),
            self.max_concurrency,
        )

        responses: List[Tuple[str, Sequence[SearchResult]]] = []
        attempts: List[AttemptRecord] = []
        for provider, outcome in zip(candidates, outcomes):
            if isinstance(outcome, ProviderError):
                logger.warning(f"Search via {provider.id} failed: {outcome}")
                attempts.append(AttemptRecord(provider=provider.id, outcome=outcome.kind, detail=outcome.message))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results, cached = outcome
                attempts.append(AttemptRecord(provider=provider.id, outcome="success", cached=cached))
                responses.append((provider.id, results))

        if not responses:
            raise AllProvidersFailedError(operation.id, attempts)

        merged = merge_search_results(responses, limit)
        logger.info(f"Search '{query}': {len(merged)} result(s) from {', '.join(p for p, _ in responses)}")
        return MergedSearch(results=merged, providers=[p for p, _ in responses], attempts=attempts)
