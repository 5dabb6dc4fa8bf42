"""
Response Cache

A read-through / write-through store of provider payloads keyed by
``(provider id, operation id, normalized parameters)``.

Key normalization makes equivalent logical requests collide:
    - symbol lists are de-duplicated, uppercased and sorted
    - currency codes are uppercased
    - search queries are stripped and case-folded
    - datetimes become epoch seconds, enums their value

File layout (FileCache):
    <cache_dir>/<provider>/<sha256(canonical key)>.json

    {
      "key": "<canonical key>",
      "payload": <provider payload, JSON>,
      "fetched_at": "2024-01-01T12:00:00Z",
      "ttl_seconds": 30
    }

Writes go to a temporary file in the same directory followed by an atomic
``os.replace``, so concurrent readers (including other processes) only ever
see the old or the new entry, never a partial one. Last writer wins.

Unreadable, corrupt or mismatched entries are treated as a miss and are
overwritten by the next successful provider call. Cache errors never leave
this module.

Usage:
    cache = FileCache(settings.cache_path)
    key = CacheKey.build("coingecko", "quotes", {"symbols": ["eth", "BTC"], "currency": "usd"})

    payload = await cache.get(key)
    if payload is None:
        payload = await fetch()
        await cache.put(key, payload, ttl_seconds=30)
"""

import asyncio
import hashlib
import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from core.errors import CacheCorruptError, CacheError, CacheIOError
from core.logging import get_logger
from core.schemas import CacheEntry
from core.utils.time import current_utc_datetime, datetime_to_timestamp

logger = get_logger(__name__)

Clock = Callable[[], datetime]

_SYMBOL_LIST_PARAMS = {"symbols", "targets"}
_UPPER_PARAMS = {"symbol", "currency", "base"}


# ============================================
# Cache Keys
# ============================================

def _normalize_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return datetime_to_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value


def normalize_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Canonical form of request parameters.

    Example:
        >>> normalize_params({"symbols": ["eth", "BTC", "btc"], "currency": "usd"})
        {'currency': 'USD', 'symbols': ['BTC', 'ETH']}
    """
    normalized: Dict[str, Any] = {}
    for name, value in params.items():
        if name in _SYMBOL_LIST_PARAMS:
            value = sorted({str(v).strip().upper() for v in value})
        elif name in _UPPER_PARAMS and isinstance(value, str):
            value = value.strip().upper()
        elif name == "query" and isinstance(value, str):
            value = value.strip().casefold()
        normalized[name] = _normalize_value(value)
    return dict(sorted(normalized.items()))


@dataclass(frozen=True)
class CacheKey:
    """Identity of one cacheable provider response."""

    provider: str
    operation: str
    params: Tuple[Tuple[str, Any], ...]

    @classmethod
    def build(cls, provider: str, operation: str, params: Mapping[str, Any]) -> "CacheKey":
        normalized = normalize_params(params)
        return cls(
            provider=provider,
            operation=operation,
            params=tuple((k, _freeze(v)) for k, v in normalized.items()),
        )

    @property
    def canonical(self) -> str:
        body = {
            "provider": self.provider,
            "operation": self.operation,
            "params": {k: _thaw(v) for k, v in self.params},
        }
        return json.dumps(body, sort_keys=True, separators=(",", ":"))

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.canonical.encode("utf-8")).hexdigest()

    def __str__(self) -> str:
        return f"{self.provider}:{self.operation}:{self.digest[:12]}"


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


# ============================================
# Cache Interface
# ============================================

class ResponseCache(ABC):
    """Minimal async cache contract used by the FallbackResolver."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock: Clock = clock or current_utc_datetime

    @abstractmethod
    async def get(self, key: CacheKey) -> Optional[Any]:
        """Return the payload of a fresh entry, or None on miss/stale/corrupt."""
        ...

    @abstractmethod
    async def put(self, key: CacheKey, payload: Any, ttl_seconds: int) -> None:
        """Replace the entry for ``key``. Never raises."""
        ...

    def _fresh_payload(self, key: CacheKey, entry: Optional[CacheEntry]) -> Optional[Any]:
        if entry is None:
            return None
        if entry.key != key.canonical:
            logger.debug(f"Cache key mismatch for {key}, ignoring entry")
            return None
        if not entry.is_fresh(self.clock()):
            logger.debug(f"Cache stale: {key}")
            return None
        logger.debug(f"Cache hit: {key}")
        return entry.payload


class NullCache(ResponseCache):
    """Cache that never stores anything (cache disabled)."""

    async def get(self, key: CacheKey) -> Optional[Any]:
        return None

    async def put(self, key: CacheKey, payload: Any, ttl_seconds: int) -> None:
        return None


class MemoryCache(ResponseCache):
    """Process-local cache, used in tests and for ephemeral services."""

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, key: CacheKey) -> Optional[Any]:
        return self._fresh_payload(key, self._entries.get(key.canonical))

    async def put(self, key: CacheKey, payload: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        # Round-trip through JSON so hits behave exactly like FileCache hits.
        stored = json.loads(json.dumps(payload))
        self._entries[key.canonical] = CacheEntry(
            key=key.canonical, payload=stored, fetched_at=self.clock(), ttl_seconds=ttl_seconds
        )

    def __len__(self) -> int:
        return len(self._entries)


# ============================================
# File Cache
# ============================================

class FileCache(ResponseCache):
    """
    Filesystem cache shared across processes.

    Attributes:
        directory: Root cache directory (created on first write)
    """

    def __init__(self, directory: Path, clock: Optional[Clock] = None):
        super().__init__(clock)
        self.directory = Path(directory)

    def path_for(self, key: CacheKey) -> Path:
        provider_dir = re.sub(r"[^A-Za-z0-9_-]", "_", key.provider)
        return self.directory / provider_dir / f"{key.digest}.json"

    async def get(self, key: CacheKey) -> Optional[Any]:
        try:
            entry = await asyncio.to_thread(self._read, self.path_for(key))
        except CacheError as e:
            logger.debug(f"Cache read failed for {key}, treating as miss: {e}")
            return None
        return self._fresh_payload(key, entry)

    async def put(self, key: CacheKey, payload: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        try:
            entry = CacheEntry(
                key=key.canonical, payload=payload, fetched_at=self.clock(), ttl_seconds=ttl_seconds
            )
            await asyncio.to_thread(self._write, self.path_for(key), entry)
        except CacheError as e:
            logger.debug(f"Cache write failed for {key}: {e}")

    # ============================================
    # Blocking I/O (run in a worker thread)
    # ============================================

    @staticmethod
    def _read(path: Path) -> Optional[CacheEntry]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CacheIOError(f"Cannot read {path}: {e}") from e

        try:
            return CacheEntry.model_validate_json(raw)
        except ValueError as e:
            raise CacheCorruptError(f"Corrupt cache entry {path}: {e}") from e

    @staticmethod
    def _write(path: Path, entry: CacheEntry) -> None:
        try:
            body = entry.model_dump_json()
        except ValueError as e:
            raise CacheCorruptError(f"Payload is not serializable: {e}") from e

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
        except OSError as e:
            raise CacheIOError(f"Cannot create cache file in {path.parent}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(body)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise CacheIOError(f"Cannot write {path}: {e}") from e
