import pytest

from petanque_scoring.cache import (
    Cache,
    CacheConfig,
    CacheManager,
    estimate_size,
    get_shared_cache_manager,
)
from petanque_scoring.exceptions import CacheError


def test_get_returns_default_on_miss(clock):
    cache = Cache(clock=clock)
    assert cache.get("missing") is None
    assert cache.get("missing", 42) == 42
    assert cache.get_metrics().misses == 2


def test_entries_expire_after_ttl(clock):
    cache = Cache(CacheConfig(ttl_seconds=10), clock=clock)
    cache.set("a", 1)
    clock.advance(9.9)
    assert cache.get("a") == 1

    clock.advance(0.1)
    assert cache.get("a") is None
    metrics = cache.get_metrics()
    assert metrics.expirations == 1
    assert metrics.size == 0


def test_per_entry_ttl_overrides_default(clock):
    cache = Cache(CacheConfig(ttl_seconds=100), clock=clock)
    cache.set("short", 1, ttl_seconds=1)
    cache.set("long", 2)
    clock.advance(2)
    assert not cache.has("short")
    assert cache.has("long")


def test_non_positive_ttl_is_not_stored(clock):
    cache = Cache(clock=clock)
    cache.set("a", 1)
    cache.set("a", 2, ttl_seconds=0)
    assert len(cache) == 0


@pytest.mark.parametrize(
    "policy, evicted",
    [("lru", "b"), ("fifo", "a"), ("lfu", "b")],
    ids=["lru", "fifo", "lfu"],
)
def test_eviction_policies(clock, policy, evicted):
    cache = Cache(CacheConfig(max_size=2, eviction_policy=policy), clock=clock)
    cache.set("a", 1)
    clock.advance(1)
    cache.set("b", 2)
    clock.advance(1)
    cache.get("b")
    cache.get("a")
    cache.get("a")

    cache.set("c", 3)

    assert len(cache) == 2
    assert not cache.has(evicted)
    assert cache.has("c")
    assert cache.get_metrics().evictions == 1


def test_memory_cap_evicts_oldest(clock):
    entry_size = estimate_size("k1", "x" * 20)
    cache = Cache(
        CacheConfig(max_memory_bytes=entry_size * 2, eviction_policy="fifo"), clock=clock
    )
    cache.set("k1", "x" * 20)
    cache.set("k2", "x" * 20)
    cache.set("k3", "x" * 20)

    assert not cache.has("k1")
    assert cache.get_metrics().memory_usage == entry_size * 2


def test_entry_larger_than_memory_cap_raises(clock):
    cache = Cache(CacheConfig(max_memory_bytes=10), name="tiny", clock=clock)
    with pytest.raises(CacheError, match="exceeds the 10 byte limit"):
        cache.set("k", "x" * 100)
    assert len(cache) == 0


def test_unserializable_value_raises_cache_error(clock):
    looped = []
    looped.append(looped)
    with pytest.raises(CacheError, match="cannot estimate size"):
        Cache(clock=clock).set("k", looped)


def test_overwrite_replaces_memory_accounting(clock):
    cache = Cache(clock=clock)
    cache.set("k", "short")
    cache.set("k", "a much longer value than before")
    assert len(cache) == 1
    expected = estimate_size("k", "a much longer value than before")
    assert cache.get_metrics().memory_usage == expected


def test_delete_and_clear(clock):
    cache = Cache(clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.delete("a") is True
    assert cache.delete("a") is False
    cache.clear()
    assert len(cache) == 0
    assert cache.get_metrics().memory_usage == 0


def test_invalidate_matching_drops_tuple_keys_by_subject(clock):
    cache = Cache(clock=clock)
    cache.set(("team1", "team", 3), "stats-1")
    cache.set(("team1", "team", 4), "stats-2")
    cache.set(("team2", "team", 3), "stats-3")
    cache.set("team1", "plain key")

    assert cache.invalidate_matching(["team1"]) == 2
    assert cache.has(("team2", "team", 3))
    assert cache.has("team1")
    assert cache.invalidate_matching([]) == 0


def test_sweep_runs_from_set_after_cleanup_interval(clock):
    cache = Cache(CacheConfig(ttl_seconds=1, cleanup_interval=5), clock=clock)
    cache.set("a", 1)
    clock.advance(6)
    cache.set("b", 2)

    assert len(cache) == 1
    assert cache.get_metrics().expirations == 1


def test_cleanup_expired(clock):
    cache = Cache(CacheConfig(ttl_seconds=1), clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl_seconds=100)
    clock.advance(2)
    assert cache.cleanup_expired() == 1
    assert len(cache) == 1


def test_metrics_and_reset(clock):
    cache = Cache(clock=clock)
    cache.set("a", 1)
    clock.advance(4)
    cache.set("b", 2)
    cache.get("a")
    cache.get("zzz")

    metrics = cache.get_metrics()
    assert metrics.hits == 1
    assert metrics.misses == 1
    assert metrics.hit_rate == 50.0
    assert metrics.oldest_entry_age == 4
    assert metrics.newest_entry_age == 0
    assert metrics.average_age == 2
    assert metrics.as_dict()["size"] == 2

    cache.reset_metrics()
    metrics = cache.get_metrics()
    assert (metrics.hits, metrics.misses, metrics.hit_rate) == (0, 0, 0.0)


@pytest.mark.parametrize(
    "kwargs",
    [{"max_size": 0}, {"max_memory_bytes": 0}, {"eviction_policy": "random"}],
    ids=["size", "memory", "policy"],
)
def test_cache_config_rejects_bad_values(kwargs):
    with pytest.raises(ValueError):
        CacheConfig(**kwargs)


def test_cache_manager_uses_named_defaults(clock):
    manager = CacheManager(clock=clock)
    distance = manager.get_cache("distance")
    assert manager.get_cache("distance") is distance
    assert distance.config.max_size == 10_000
    assert manager.get_cache("validation").config.eviction_policy == "lfu"
    assert manager.get_cache("other").config == CacheConfig()
    assert manager.cache_names() == ["distance", "validation", "other"]


def test_cache_manager_overrides_and_aggregates(clock):
    manager = CacheManager({"statistics": CacheConfig(max_size=3)}, clock=clock)
    stats = manager.get_cache("statistics")
    assert stats.config.max_size == 3

    stats.set("a", 1, ttl_seconds=1)
    manager.get_cache("distance").set("b", 2)
    assert set(manager.get_all_metrics()) == {"statistics", "distance"}
    assert manager.total_memory_usage() > 0

    clock.advance(2)
    assert manager.cleanup_all() == 1
    manager.clear_all()
    assert manager.total_memory_usage() == 0


def test_shared_cache_manager_is_a_singleton():
    assert get_shared_cache_manager() is get_shared_cache_manager()
