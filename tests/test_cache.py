from __future__ import annotations

from collections import Counter
from types import SimpleNamespace

import pytest
import redis

from newsaggregator.cache import (
    CacheManager,
    ContentClass,
    FallbackStore,
    RedisBackend,
    build_key,
    cache_key,
    key_prefix,
)
from newsaggregator.config import CacheSettings, SourceConfig, SourceType
from newsaggregator.errors import BackendUnavailableError


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    def __init__(self, *, failing: bool = False, reachable: bool = True) -> None:
        self.data: dict[str, str] = {}
        self.failing = failing
        self.reachable = reachable
        self.calls: Counter[str] = Counter()

    def ping(self) -> bool:
        self.calls["ping"] += 1
        return self.reachable

    def _check(self, operation: str) -> None:
        self.calls[operation] += 1
        if self.failing:
            raise BackendUnavailableError("connection refused")

    def get(self, key):
        self._check("get")
        return self.data.get(key)

    def set(self, key, value, ttl_seconds=None):
        self._check("set")
        self.data[key] = value

    def delete(self, key):
        self._check("delete")
        self.data.pop(key, None)


def _key(identifier: str = "LocalLLaMA", source_type: SourceType = SourceType.FORUM) -> str:
    return build_key(source_type, identifier)


def test_build_key_is_deterministic_and_ignores_param_order() -> None:
    first = build_key(SourceType.FORUM, "LocalLLaMA", {"sort": "new", "min_score": 5})
    second = build_key(SourceType.FORUM, "LocalLLaMA", {"min_score": 5, "sort": "new"})

    assert first == second
    assert first.startswith("ai_news_cache:content:forum:")
    assert key_prefix(first) == "forum"
    assert first != build_key(SourceType.FORUM, "LocalLLaMA", {"sort": "top"})
    assert first != build_key(SourceType.FORUM, "MachineLearning", {"sort": "new", "min_score": 5})


def test_content_classes_use_disjoint_keys() -> None:
    content = build_key(SourceType.RESEARCH, "cs.AI", content_class=ContentClass.CONTENT)
    derived = build_key(SourceType.RESEARCH, "cs.AI", content_class=ContentClass.DERIVED)

    assert content != derived
    assert ContentClass.CONTENT.ttl == 3 * 24 * 3600
    assert ContentClass.DERIVED.ttl == 3600


def test_cache_key_matches_build_key() -> None:
    source = SourceConfig(source_type=SourceType.VIDEO, identifier="@sentdex", extra_params={"max_age_days": 3})

    assert cache_key(source) == build_key(SourceType.VIDEO, "@sentdex", {"max_age_days": 3})
    assert cache_key(source, namespace="other").startswith("other:")


def test_put_then_get_is_a_hit_until_ttl_expires() -> None:
    clock = FakeClock()
    backend = FakeBackend()
    cache = CacheManager(backend, namespace="test", clock=clock)
    key = _key()

    cache.put(key, [{"title": "hello"}], ttl=60)
    assert cache.get(key) == ([{"title": "hello"}], True)

    clock.advance(60)
    assert cache.get(key)[1] is True

    clock.advance(1)
    assert cache.get(key) == (None, False)
    assert key not in backend.data

    stats = cache.stats()["forum"]
    assert (stats.hits, stats.misses) == (2, 1)


def test_missing_key_counts_as_miss_per_prefix() -> None:
    cache = CacheManager(FakeBackend(), clock=FakeClock())

    cache.get(_key("a"))
    cache.get(_key("b", SourceType.VIDEO))

    stats = cache.stats()
    assert stats["forum"].misses == 1
    assert stats["video"].misses == 1
    assert stats["forum"].hits == 0


def test_backend_failure_is_retried_once_then_falls_back() -> None:
    clock = FakeClock()
    backend = FakeBackend()
    cache = CacheManager(backend, clock=clock)
    key = _key()
    cache.put(key, ["cached"], ttl=3600)

    backend.failing = True
    assert cache.get(key) == (["cached"], True)
    assert backend.calls["get"] == 2
    assert cache.degraded
    assert "get failed twice" in (cache.degraded_reason or "")

    cache.get(key)
    assert backend.calls["get"] == 2


def test_writes_reach_the_fallback_while_degraded() -> None:
    cache = CacheManager(FakeBackend(failing=True), clock=FakeClock())
    key = _key()

    cache.put(key, {"value": 1}, ttl=30)

    assert cache.degraded
    assert cache.get(key) == ({"value": 1}, True)


def test_begin_run_pings_the_backend_again() -> None:
    backend = FakeBackend(failing=True)
    cache = CacheManager(backend, clock=FakeClock())
    cache.get(_key())
    assert cache.degraded

    backend.failing = False
    cache.begin_run()

    assert not cache.degraded
    assert cache.stats() == {}
    assert backend.calls["ping"] == 1


def test_unreadable_entry_is_discarded() -> None:
    backend = FakeBackend()
    cache = CacheManager(backend, clock=FakeClock())
    key = _key()
    backend.data[key] = "not json"

    assert cache.get(key) == (None, False)
    assert key not in backend.data


def test_invalidate_removes_both_tiers() -> None:
    backend = FakeBackend()
    cache = CacheManager(backend, clock=FakeClock())
    key = _key()
    cache.put(key, "payload", ttl=60)

    cache.invalidate(key)

    assert key not in backend.data
    backend.failing = True
    assert cache.get(key) == (None, False)


def test_from_settings_without_url_uses_fallback_only(monkeypatch) -> None:
    monkeypatch.delenv("REDIS_URL", raising=False)

    cache = CacheManager.from_settings(CacheSettings(namespace="local"))

    assert cache.degraded
    assert cache.namespace == "local"
    key = build_key(SourceType.FORUM, "x", namespace="local")
    cache.put(key, [1, 2], ttl=10)
    assert cache.get(key) == ([1, 2], True)


def test_from_settings_marks_unreachable_backend(monkeypatch) -> None:
    backend = FakeBackend(reachable=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.setattr(RedisBackend, "from_url", classmethod(lambda cls, url, socket_timeout=0.5: backend))

    cache = CacheManager.from_settings(CacheSettings(url="redis://unreachable:6379/0"))

    assert cache.degraded
    assert "did not answer PING" in (cache.degraded_reason or "")
    cache.get(_key())
    assert backend.calls["get"] == 0


def test_redis_backend_wraps_client_errors() -> None:
    def broken(*args, **kwargs):
        raise redis.ConnectionError("refused")

    backend = RedisBackend(SimpleNamespace(ping=broken, get=broken, set=broken, delete=broken))

    assert backend.ping() is False
    with pytest.raises(BackendUnavailableError):
        backend.get("key")
    with pytest.raises(BackendUnavailableError):
        backend.set("key", "value", 10)


def test_redis_backend_passes_ttl_to_client() -> None:
    calls = []
    client = SimpleNamespace(set=lambda key, value, ex=None: calls.append((key, value, ex)))

    RedisBackend(client).set("key", "value", 60)

    assert calls == [("key", "value", 60)]


def test_fallback_store_evicts_oldest_writes_per_prefix() -> None:
    clock = FakeClock()
    store = FallbackStore(max_entries=2, max_age=100, clock=clock)
    first, second, third = (_key(name) for name in ("a", "b", "c"))
    other = _key("d", SourceType.VIDEO)

    store.set(first, "1")
    store.set(other, "x")
    clock.advance(1)
    store.set(second, "2")
    store.set(third, "3")

    assert store.get(first) is None
    assert store.get(second) == "2"
    assert store.get(third) == "3"
    assert store.get(other) == "x"
    assert len(store) == 3


def test_fallback_store_drops_entries_older_than_max_age() -> None:
    clock = FakeClock()
    store = FallbackStore(max_entries=10, max_age=100, clock=clock)
    key = _key()
    store.set(key, "value")

    clock.advance(101)

    assert store.get(key) is None


def test_rewriting_a_key_refreshes_its_position() -> None:
    clock = FakeClock()
    store = FallbackStore(max_entries=2, clock=clock)
    first, second, third = (_key(name) for name in ("a", "b", "c"))

    store.set(first, "1")
    store.set(second, "2")
    store.set(first, "1b")
    store.set(third, "3")

    assert store.get(first) == "1b"
    assert store.get(second) is None


def test_fallback_store_keeps_entries_for_their_own_ttl() -> None:
    clock = FakeClock()
    store = FallbackStore(max_entries=10, max_age=100, clock=clock)
    long_lived, default = _key("long"), _key("default")
    store.set(long_lived, "kept", 1000)
    store.set(default, "dropped")

    clock.advance(500)

    assert store.get(long_lived) == "kept"
    assert store.get(default) is None

    clock.advance(501)
    assert store.get(long_lived) is None


def test_history_entries_outlive_the_fallback_max_age_without_a_backend(monkeypatch) -> None:
    monkeypatch.delenv("REDIS_URL", raising=False)
    clock = FakeClock()
    cache = CacheManager.from_settings(CacheSettings(history_days=7), clock=clock)
    key = build_key("history", "2026-10-01", content_class=ContentClass.HISTORY)
    cache.put(key, ["url:abc"], ContentClass.HISTORY.ttl)

    clock.advance(5 * 24 * 3600)

    assert cache.get(key) == (["url:abc"], True)
