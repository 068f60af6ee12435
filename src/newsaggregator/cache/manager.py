"""Two-tier cache with TTL freshness and transparent backend fallback."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Tuple

from newsaggregator.cache.backends import CacheBackend, FallbackStore, RedisBackend
from newsaggregator.cache.keys import DEFAULT_NAMESPACE, key_prefix
from newsaggregator.config import CacheSettings
from newsaggregator.errors import BackendUnavailableError
from newsaggregator.models import CacheCounters

__all__ = ["CacheEntry", "CacheManager"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Any
    stored_at: float
    ttl: int

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl

    def encode(self) -> str:
        return json.dumps(
            {"stored_at": self.stored_at, "ttl": self.ttl, "payload": self.payload},
            ensure_ascii=False,
            default=str,
        )

    @classmethod
    def decode(cls, key: str, raw: str) -> "CacheEntry":
        data = json.loads(raw)
        return cls(key=key, payload=data["payload"], stored_at=float(data["stored_at"]), ttl=int(data["ttl"]))


class CacheManager:
    """Cache-aside store shared by every extraction task of a run.

    Reads and writes go to the primary backend while it is reachable. A
    backend error is retried once; a second failure switches the manager to
    the in-process :class:`FallbackStore` until :meth:`begin_run` pings the
    backend again. Callers never see backend errors: an unreachable backend
    is a routing decision, not a miss.
    """

    def __init__(
        self,
        backend: CacheBackend | None = None,
        fallback: FallbackStore | None = None,
        *,
        namespace: str = DEFAULT_NAMESPACE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._fallback = fallback if fallback is not None else FallbackStore(clock=clock)
        self._clock = clock
        self.namespace = namespace

        self._state_lock = threading.Lock()
        self._available = backend is not None
        self._degraded_reason: str | None = None if backend is not None else "no primary backend configured"

        self._stats_lock = threading.Lock()
        self._counters: Dict[str, CacheCounters] = {}

    @classmethod
    def from_settings(
        cls, settings: CacheSettings, *, clock: Callable[[], float] = time.time
    ) -> "CacheManager":
        """Build the manager from configuration and check the backend with ``PING``."""

        fallback = FallbackStore(
            max_entries=settings.fallback_max_entries,
            max_age=settings.fallback_max_age_seconds,
            clock=clock,
        )
        url = settings.resolved_url()
        if not url:
            logger.info("No cache backend configured, using the in-process store only")
            return cls(None, fallback, namespace=settings.namespace, clock=clock)

        backend = RedisBackend.from_url(url, socket_timeout=settings.socket_timeout)
        manager = cls(backend, fallback, namespace=settings.namespace, clock=clock)
        if not backend.ping():
            manager._mark_unavailable(f"{url} did not answer PING")
        return manager

    @property
    def degraded(self) -> bool:
        with self._state_lock:
            return not self._available

    @property
    def degraded_reason(self) -> str | None:
        with self._state_lock:
            return self._degraded_reason

    def begin_run(self) -> None:
        """Reset counters and give an unavailable backend one new chance."""

        with self._stats_lock:
            self._counters = {}
        if self._backend is None:
            return
        if self.degraded and self._backend.ping():
            with self._state_lock:
                self._available = True
                self._degraded_reason = None
            logger.info("Cache backend reachable again")

    def _mark_unavailable(self, reason: str) -> None:
        with self._state_lock:
            if not self._available:
                return
            self._available = False
            self._degraded_reason = reason
        logger.warning("Cache backend unavailable, serving from the in-process store: %s", reason)

    def _call_backend(self, operation: str, *args: Any) -> Tuple[bool, Any]:
        with self._state_lock:
            available = self._available
        if not available or self._backend is None:
            return False, None

        method = getattr(self._backend, operation)
        error: BackendUnavailableError | None = None
        for attempt in (1, 2):
            try:
                return True, method(*args)
            except BackendUnavailableError as exc:
                error = exc
                logger.debug("Cache backend %s failed (attempt %d): %s", operation, attempt, exc)

        self._mark_unavailable(f"{operation} failed twice: {error}")
        return False, None

    def _record(self, key: str, *, hit: bool) -> None:
        prefix = key_prefix(key)
        with self._stats_lock:
            counters = self._counters.setdefault(prefix, CacheCounters())
            if hit:
                counters.hits += 1
            else:
                counters.misses += 1

    def stats(self) -> Dict[str, CacheCounters]:
        """Return a copy of the hit/miss counters per key prefix."""

        with self._stats_lock:
            return {prefix: counters.model_copy() for prefix, counters in self._counters.items()}

    def get(self, key: str) -> Tuple[Any, bool]:
        """Return ``(payload, True)`` for a fresh entry, ``(None, False)`` otherwise."""

        from_primary, raw = self._call_backend("get", key)
        if not from_primary:
            raw = self._fallback.get(key)

        if raw is None:
            self._record(key, hit=False)
            return None, False

        try:
            entry = CacheEntry.decode(key, raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            self._evict(key, from_primary)
            self._record(key, hit=False)
            return None, False

        if entry.is_expired(self._clock()):
            self._evict(key, from_primary)
            self._record(key, hit=False)
            return None, False

        self._record(key, hit=True)
        return entry.payload, True

    def put(self, key: str, payload: Any, ttl: int) -> None:
        """Store ``payload`` for ``ttl`` seconds, mirroring it into the fallback store."""

        raw = CacheEntry(key=key, payload=payload, stored_at=self._clock(), ttl=int(ttl)).encode()
        self._call_backend("set", key, raw, int(ttl))
        self._fallback.set(key, raw, int(ttl))

    def invalidate(self, key: str) -> None:
        self._call_backend("delete", key)
        self._fallback.delete(key)

    def _evict(self, key: str, from_primary: bool) -> None:
        if from_primary:
            self._call_backend("delete", key)
        self._fallback.delete(key)
