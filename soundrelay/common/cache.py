"""In-memory TTL caches.

Expired entries are treated as absent and evicted on read; ``sweep`` drops
the rest in bulk and is run periodically by the proxy.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from soundrelay.common.models import ResolvedStream, SourceKind

V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[V]):
    """Key -> value store where every entry carries its own expiry."""

    def __init__(
        self,
        name: str,
        default_ttl: float,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, _Entry[V]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: str, value: V, ttl: Optional[float] = None) -> float:
        """Store ``value`` and return its absolute expiry timestamp."""
        lifetime = self.default_ttl if ttl is None else ttl
        expires_at = self._clock() + lifetime
        with self._lock:
            self._entries[key] = _Entry(value, expires_at)
        return expires_at

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def sweep(self) -> int:
        """Evict every expired entry, returning how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.expires_at > self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        with self._lock:
            return {
                "keys": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
            }


class StreamCache(TTLCache[ResolvedStream]):
    """Resolved-stream cache whose TTL depends on where the stream came from.

    Two instances exist: the proxy's shared tier and the player's session
    tier. The session tier uses shorter TTLs so it never outlives an entry
    the proxy has already dropped.
    """

    def __init__(
        self,
        name: str,
        primary_ttl: float,
        fallback_ttl: float,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(name, default_ttl=primary_ttl, clock=clock)
        self.primary_ttl = primary_ttl
        self.fallback_ttl = fallback_ttl

    def ttl_for(self, stream: ResolvedStream) -> float:
        if stream.source_kind is SourceKind.PRIMARY:
            return self.primary_ttl
        return self.fallback_ttl

    def get(self, key: str) -> Optional[ResolvedStream]:
        stream = super().get(key)
        return stream.as_cached() if stream is not None else None

    def set(self, key: str, value: ResolvedStream, ttl: Optional[float] = None) -> float:
        return super().set(key, value, self.ttl_for(value) if ttl is None else ttl)

    def now(self) -> float:
        return self._clock()
