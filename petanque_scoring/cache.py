from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
import json
import logging
from threading import Lock, RLock
import time
from typing import Any, Literal

from pydantic import BaseModel

from . import config
from .exceptions import CacheError

logger = logging.getLogger(__name__)

EvictionPolicy = Literal["lru", "lfu", "fifo"]

_MB = 1024 * 1024


@dataclass
class CacheConfig:
    max_size: int = 1000
    ttl_seconds: float = 300.0
    max_memory_bytes: int = int(config.CACHE_MAX_MEMORY_MB * _MB)
    eviction_policy: EvictionPolicy = "lru"
    cleanup_interval: float = 60.0

    def __post_init__(self) -> None:
        if self.max_size <= 0:
            raise ValueError("max_size must be positive")
        if self.max_memory_bytes <= 0:
            raise ValueError("max_memory_bytes must be positive")
        if self.eviction_policy not in ("lru", "lfu", "fifo"):
            raise ValueError(f"unknown eviction policy {self.eviction_policy!r}")


@dataclass
class CacheMetrics:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0
    memory_usage: int = 0
    hit_rate: float = 0.0
    average_age: float = 0.0
    oldest_entry_age: float = 0.0
    newest_entry_age: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _Entry:
    value: Any
    created_at: float
    expires_at: float
    last_access: float
    size: int
    hits: int = 0


def estimate_size(key: Any, value: Any) -> int:
    """Rough memory footprint in bytes, based on the serialized form."""

    try:
        if isinstance(value, BaseModel):
            payload = value.model_dump_json()
        else:
            payload = json.dumps(value, default=str)
        return len(repr(key).encode()) + len(payload.encode())
    except (TypeError, ValueError) as exc:
        raise CacheError(
            f"cannot estimate size of cache value: {exc}",
            operation="estimate_size",
        ) from exc


class Cache:
    """An in-memory TTL cache with size/memory caps and a pluggable eviction policy.

    Expired entries are treated as misses and dropped when touched; a sweep
    of all expired entries also runs from ``set`` every ``cleanup_interval``
    seconds. All access is guarded by a per-instance lock.
    """

    def __init__(
        self,
        cache_config: CacheConfig | None = None,
        *,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = cache_config or CacheConfig()
        self._clock = clock
        self._lock = RLock()
        self._store: OrderedDict[Any, _Entry] = OrderedDict()
        self._memory = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._last_sweep = clock()

    def get(self, key: Any, default: Any = None) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return default
            if entry.expires_at <= now:
                self._remove(key)
                self._expirations += 1
                self._misses += 1
                return default
            entry.hits += 1
            entry.last_access = now
            if self.config.eviction_policy == "lru":
                self._store.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: Any, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.config.ttl_seconds if ttl_seconds is None else ttl_seconds
        size = estimate_size(key, value)
        if size > self.config.max_memory_bytes:
            raise CacheError(
                f"entry of {size} bytes exceeds the {self.config.max_memory_bytes} byte limit "
                f"of cache {self.name!r}",
                operation="set",
                context={"cache": self.name},
            )
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.config.cleanup_interval:
                self._sweep(now)
            if key in self._store:
                self._remove(key)
            if ttl <= 0:
                return
            while self._store and (
                len(self._store) >= self.config.max_size
                or self._memory + size > self.config.max_memory_bytes
            ):
                self._evict_one()
            self._store[key] = _Entry(
                value=value,
                created_at=now,
                expires_at=now + ttl,
                last_access=now,
                size=size,
            )
            self._memory += size

    def has(self, key: Any) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return False
            if entry.expires_at <= now:
                self._remove(key)
                self._expirations += 1
                return False
            return True

    def delete(self, key: Any) -> bool:
        with self._lock:
            if key not in self._store:
                return False
            self._remove(key)
            return True

    def invalidate_matching(self, ids: Iterable[Any]) -> int:
        """Drop tuple keys whose first element is one of ``ids``."""
        wanted = {i for i in ids if i}
        if not wanted:
            return 0
        with self._lock:
            keys_to_remove = [
                key
                for key in self._store
                if isinstance(key, tuple) and key and key[0] in wanted
            ]
            for key in keys_to_remove:
                self._remove(key)
            return len(keys_to_remove)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._memory = 0

    def cleanup_expired(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get_metrics(self) -> CacheMetrics:
        now = self._clock()
        with self._lock:
            total = self._hits + self._misses
            ages = [now - entry.created_at for entry in self._store.values()]
            return CacheMetrics(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                size=len(self._store),
                memory_usage=self._memory,
                hit_rate=round(self._hits / total * 100, 2) if total else 0.0,
                average_age=sum(ages) / len(ages) if ages else 0.0,
                oldest_entry_age=max(ages) if ages else 0.0,
                newest_entry_age=min(ages) if ages else 0.0,
            )

    def reset_metrics(self) -> None:
        with self._lock:
            self._hits = self._misses = self._evictions = self._expirations = 0

    # Internal helpers; callers hold the lock.

    def _remove(self, key: Any) -> None:
        entry = self._store.pop(key)
        self._memory -= entry.size

    def _sweep(self, now: float) -> int:
        expired = [key for key, entry in self._store.items() if entry.expires_at <= now]
        for key in expired:
            self._remove(key)
        self._expirations += len(expired)
        self._last_sweep = now
        if expired:
            logger.debug("cache %s: swept %d expired entries", self.name, len(expired))
        return len(expired)

    def _evict_one(self) -> None:
        policy = self.config.eviction_policy
        if policy == "lfu":
            victim = min(
                self._store,
                key=lambda k: (self._store[k].hits, self._store[k].last_access),
            )
        else:
            # lru keeps the store in access order, fifo in insertion order.
            victim = next(iter(self._store))
        self._remove(victim)
        self._evictions += 1


DEFAULT_CACHE_CONFIGS: dict[str, CacheConfig] = {
    "distance": CacheConfig(
        max_size=10_000,
        ttl_seconds=config.DISTANCE_CACHE_TTL,
        eviction_policy="lru",
    ),
    "validation": CacheConfig(
        max_size=1_000,
        ttl_seconds=config.VALIDATION_CACHE_TTL,
        eviction_policy="lfu",
    ),
    "statistics": CacheConfig(
        max_size=500,
        ttl_seconds=config.STATISTICS_CACHE_TTL,
        eviction_policy="lru",
    ),
}


class CacheManager:
    """Owns independently tuned named caches."""

    def __init__(
        self,
        configs: dict[str, CacheConfig] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._configs = dict(DEFAULT_CACHE_CONFIGS)
        if configs:
            self._configs.update(configs)
        self._clock = clock
        self._lock = Lock()
        self._caches: dict[str, Cache] = {}

    def get_cache(self, name: str, cache_config: CacheConfig | None = None) -> Cache:
        with self._lock:
            cache = self._caches.get(name)
            if cache is None:
                cfg = cache_config or self._configs.get(name) or CacheConfig()
                cache = Cache(cfg, name=name, clock=self._clock)
                self._caches[name] = cache
            return cache

    def cache_names(self) -> list[str]:
        with self._lock:
            return list(self._caches)

    def clear_all(self) -> None:
        for cache in self._snapshot():
            cache.clear()

    def cleanup_all(self) -> int:
        return sum(cache.cleanup_expired() for cache in self._snapshot())

    def get_all_metrics(self) -> dict[str, CacheMetrics]:
        return {cache.name: cache.get_metrics() for cache in self._snapshot()}

    def total_memory_usage(self) -> int:
        return sum(m.memory_usage for m in self.get_all_metrics().values())

    def _snapshot(self) -> list[Cache]:
        with self._lock:
            return list(self._caches.values())


_shared_manager: CacheManager | None = None
_shared_lock = Lock()


def get_shared_cache_manager() -> CacheManager:
    """Process-wide manager for hosts that explicitly want engines to share caches."""
    global _shared_manager
    with _shared_lock:
        if _shared_manager is None:
            _shared_manager = CacheManager()
        return _shared_manager
