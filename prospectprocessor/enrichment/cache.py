"""Generic TTL cache for lookup responses.

One :class:`TTLCache` implementation backs both live caches of the pipeline:

- IPInfo ASN/organization responses keyed by IP address (24 hour TTL)
- Firmographic organization records keyed by domain (7 day TTL)

The TTL is fixed per cache instance. Expiry is evaluated at read time as
``now - cached_at >= ttl``; expired entries are reported as misses but left in
place until the next successful fetch overwrites them. Reads never extend an
entry's lifetime.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generic, Optional, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from prospectprocessor.db.models import CacheEntry

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

Clock = Callable[[], datetime]

IPINFO_CACHE_TTL = timedelta(hours=24)
FIRMOGRAPHIC_CACHE_TTL = timedelta(days=7)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class CachedEntity(Generic[K, V]):
    """A cached value and the moment it was stored."""

    key: K
    value: V
    cached_at: datetime


class CacheBackend(Protocol[K, V]):
    """Storage used by :class:`TTLCache`."""

    def load(self, key: K) -> Optional[CachedEntity[K, V]]: ...

    def store(self, entity: CachedEntity[K, V]) -> None: ...


class MemoryCacheBackend(Generic[K, V]):
    """Process-local backend; values are deep-copied in and out."""

    def __init__(self) -> None:
        self._entries: Dict[K, CachedEntity[K, V]] = {}

    def load(self, key: K) -> Optional[CachedEntity[K, V]]:
        entity = self._entries.get(key)
        if entity is None:
            return None
        return CachedEntity(entity.key, copy.deepcopy(entity.value), entity.cached_at)

    def store(self, entity: CachedEntity[K, V]) -> None:
        self._entries[entity.key] = CachedEntity(entity.key, copy.deepcopy(entity.value), entity.cached_at)

    def __len__(self) -> int:
        return len(self._entries)


class DatabaseCacheBackend:
    """``cache_entries`` table backend for string keys and JSON values.

    Database failures degrade to a cache miss on read and a skipped store on
    write; the caller always falls through to the live lookup.
    """

    def __init__(self, session_factory: sessionmaker[Session], namespace: str) -> None:
        self.session_factory = session_factory
        self.namespace = namespace

    def load(self, key: str) -> Optional[CachedEntity[str, Any]]:
        try:
            with self.session_factory() as session:
                row = session.get(CacheEntry, (self.namespace, key))
                if row is None:
                    return None
                return CachedEntity(key, copy.deepcopy(row.value), _as_utc(row.cached_at))
        except SQLAlchemyError as e:
            logger.warning(f"Cache read failed for {self.namespace}:{key}: {e}")
            return None

    def store(self, entity: CachedEntity[str, Any]) -> None:
        try:
            with self.session_factory() as session, session.begin():
                session.merge(
                    CacheEntry(
                        namespace=self.namespace,
                        cache_key=entity.key,
                        value=entity.value,
                        cached_at=entity.cached_at,
                    )
                )
        except SQLAlchemyError as e:
            logger.warning(f"Cache write failed for {self.namespace}:{entity.key}: {e}")


class TTLCache(Generic[K, V]):
    """Key/value cache with a single, instance-wide time-to-live.

    Example:
        >>> cache: TTLCache[str, dict] = TTLCache(ttl=FIRMOGRAPHIC_CACHE_TTL, name="firmographic")
        >>> cache.set("acme.com", {"name": "Acme"})
        >>> cache.get("acme.com")
        {'name': 'Acme'}
    """

    def __init__(
        self,
        ttl: timedelta | float,
        backend: Optional[CacheBackend[K, V]] = None,
        clock: Clock = utc_now,
        name: str = "cache",
    ) -> None:
        self.ttl = ttl if isinstance(ttl, timedelta) else timedelta(seconds=ttl)
        if self.ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self.backend: CacheBackend[K, V] = backend if backend is not None else MemoryCacheBackend()
        self.clock = clock
        self.name = name
        self.stats: Dict[str, int] = {"hits": 0, "misses": 0, "expired": 0, "stores": 0}

    def get(self, key: K) -> Optional[V]:
        """Return the cached value, or None when absent or expired."""
        entity = self.backend.load(key)
        if entity is None:
            self.stats["misses"] += 1
            return None
        if self.clock() - entity.cached_at >= self.ttl:
            self.stats["misses"] += 1
            self.stats["expired"] += 1
            logger.debug(f"{self.name} cache entry expired for {key}")
            return None
        self.stats["hits"] += 1
        return entity.value

    def set(self, key: K, value: V) -> None:
        """Store ``value`` with ``cached_at = now``, replacing any prior entry."""
        self.backend.store(CachedEntity(key, value, self.clock()))
        self.stats["stores"] += 1

    def snapshot(self) -> Dict[str, int]:
        """Return a copy of the hit/miss counters."""
        return dict(self.stats)


__all__ = [
    "CacheBackend",
    "CachedEntity",
    "DatabaseCacheBackend",
    "FIRMOGRAPHIC_CACHE_TTL",
    "IPINFO_CACHE_TTL",
    "MemoryCacheBackend",
    "TTLCache",
    "utc_now",
]
