"""Storage tiers used by :class:`~newsaggregator.cache.manager.CacheManager`."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Protocol, Tuple

import redis

from newsaggregator.cache.keys import key_prefix
from newsaggregator.errors import BackendUnavailableError

__all__ = ["CacheBackend", "FallbackStore", "RedisBackend"]

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Minimal key/value contract a primary backend must offer."""

    def ping(self) -> bool: ...

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> None: ...


class RedisBackend:
    """Primary backend speaking the Redis protocol.

    Every client error is re-raised as :class:`BackendUnavailableError`; the
    cache manager decides whether to retry or degrade. The underlying
    connection pool is shared by all worker threads.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 0.5) -> "RedisBackend":
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )
        return cls(client)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as exc:
            logger.debug("Cache backend ping failed: %s", exc)
            return False

    def get(self, key: str) -> str | None:
        try:
            value = self._client.get(key)
        except redis.RedisError as exc:
            raise BackendUnavailableError(str(exc)) from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            self._client.set(key, value, ex=ttl_seconds if ttl_seconds else None)
        except redis.RedisError as exc:
            raise BackendUnavailableError(str(exc)) from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise BackendUnavailableError(str(exc)) from exc


class FallbackStore:
    """Bounded in-process store, one lock and one insertion-ordered map per key prefix.

    Each entry lives for the TTL it was written with, or ``max_age`` seconds
    when it carries none. When a prefix holds more than ``max_entries``
    values the oldest writes are evicted first.
    """

    def __init__(
        self,
        *,
        max_entries: int = 500,
        max_age: float = 3 * 24 * 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_entries = max_entries
        self._max_age = max_age
        self._clock = clock
        self._guard = threading.Lock()
        self._partitions: Dict[str, Tuple[threading.Lock, "OrderedDict[str, Tuple[float, str]]"]] = {}

    def _partition(self, key: str) -> Tuple[threading.Lock, "OrderedDict[str, Tuple[float, str]]"]:
        prefix = key_prefix(key)
        with self._guard:
            partition = self._partitions.get(prefix)
            if partition is None:
                partition = (threading.Lock(), OrderedDict())
                self._partitions[prefix] = partition
            return partition

    def _evict(self, entries: "OrderedDict[str, Tuple[float, str]]") -> None:
        now = self._clock()
        for key in [key for key, (expires_at, _) in entries.items() if expires_at < now]:
            del entries[key]
        while len(entries) > self._max_entries:
            entries.popitem(last=False)

    def get(self, key: str) -> str | None:
        lock, entries = self._partition(key)
        with lock:
            self._evict(entries)
            item = entries.get(key)
            return item[1] if item else None

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        lifetime = ttl_seconds if ttl_seconds else self._max_age
        lock, entries = self._partition(key)
        with lock:
            entries.pop(key, None)
            entries[key] = (self._clock() + lifetime, value)
            self._evict(entries)

    def delete(self, key: str) -> None:
        lock, entries = self._partition(key)
        with lock:
            entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            partitions = list(self._partitions.values())
        total = 0
        for lock, entries in partitions:
            with lock:
                total += len(entries)
        return total
