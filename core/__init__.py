"""
Core Package

Contains the provider-agnostic engine including:
- ProviderInterface: Abstract base class defining the contract for all price providers
- ProviderRegistry: Registry of configured providers and their lifecycle
- FallbackResolver: Candidate ordering and sequential provider fallback
- ChartNormalizer, ConversionEngine, SearchMerger: request semantics on top of the resolver
- Schemas: Pydantic models for normalized data (Quote, PriceHistory, SearchResult, ...)

Nothing in this layer knows about a concrete provider; adding a data source never touches it.
"""
