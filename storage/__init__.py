"""
Storage Package

Handles the provider response cache.

Current implementation:
- FileCache: one JSON file per (provider, operation, parameters) key, atomic writes
- MemoryCache: in-process cache, used in tests and short-lived tools
- NullCache: caching disabled

Callers depend on ResponseCache only, so the backing store can change freely.
"""
