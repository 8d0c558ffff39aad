"""Internal in-memory response cache with per-entry TTL."""

from __future__ import annotations

import copy
import json
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

#: Default entry lifetime in seconds.
DEFAULT_CACHE_TTL: float = 300.0


def build_cache_key(method: str, path: str, payload: Mapping[str, Any] | None) -> str:
    """Deterministic key from method, path and request payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str) if payload else ""
    return f"{method.upper()}_{path}_{canonical}"


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


class ResponseCache:
    """Keyed cache of parsed response bodies.

    Entries expire lazily: an expired entry is dropped the next time it is
    looked up, or when :meth:`clear_expired` runs.
    """

    def __init__(
        self,
        *,
        default_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            self._evictions += 1
            entry = None
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, *, ttl: float | None = None) -> None:
        lifetime = self.default_ttl if ttl is None else ttl
        self._entries[key] = _CacheEntry(value=copy.deepcopy(value), expires_at=self._clock() + lifetime)

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.expires_at > self._clock()

    def remove(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def clear_expired(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
            del self._entries[key]
            self._evictions += 1

    def get_stats(self) -> dict[str, Any]:
        self.clear_expired()
        lookups = self._hits + self._misses
        return {
            "total_entries": len(self._entries),
            "keys": list(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": self._hits / lookups if lookups else 0.0,
        }
