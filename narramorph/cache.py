"""Bounded, fingerprint-keyed memoization."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
import hashlib
import json
import logging
from typing import Any, Callable, Hashable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


def fingerprint(*parts: Any) -> str:
    """Deterministic digest of JSON-representable parts."""
    payload = json.dumps(parts, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:20]


class FingerprintCache:
    """LRU cache with hit/miss counters.

    Entries are never mutated once stored, so a key that changes in any
    component is simply a miss.
    """

    def __init__(self, name: str, capacity: int = 100):
        if capacity < 1:
            raise ValueError(f"Cache {name} needs a positive capacity")
        self.name = name
        self.capacity = capacity
        self._entries: OrderedDict[Hashable, Any] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get(self, key: Hashable, default: Any = None) -> Any:
        value = self._entries.get(key, _MISSING)
        if value is _MISSING:
            self.misses += 1
            return default
        self.hits += 1
        self._entries.move_to_end(key)
        return value

    def put(self, key: Hashable, value: Any) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
            self.evictions += 1

    def get_or_compute(self, key: Hashable, compute: Callable[[], T]) -> T:
        value = self.get(key, _MISSING)
        if value is _MISSING:
            value = compute()
            self.put(key, value)
        return value

    def reset(self) -> None:
        self._entries.clear()
        self.hits = self.misses = self.evictions = 0

    def stats(self) -> dict[str, int]:
        return {
            "size": len(self._entries),
            "capacity": self.capacity,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
        }


@dataclass
class EngineCaches:
    """One cache per computation kind, owned by a single engine."""

    conditions: FingerprintCache
    rules: FingerprintCache
    master: FingerprintCache
    analysis: FingerprintCache
    selectors: FingerprintCache

    @classmethod
    def from_policy(cls, policy: Any) -> EngineCaches:
        return cls(
            conditions=FingerprintCache("conditions", policy.condition_cache_size),
            rules=FingerprintCache("rules", policy.rule_cache_size),
            master=FingerprintCache("master", policy.master_cache_size),
            analysis=FingerprintCache("analysis", policy.analysis_cache_size),
            selectors=FingerprintCache("selectors", policy.selector_cache_size),
        )

    def all(self) -> list[FingerprintCache]:
        return [self.conditions, self.rules, self.master, self.analysis, self.selectors]

    def reset(self) -> None:
        for cache in self.all():
            cache.reset()
        logger.debug("Engine caches reset")

    def stats(self) -> dict[str, dict[str, int]]:
        return {cache.name: cache.stats() for cache in self.all()}
