"""Two-tier cache used by the extraction scheduler."""

from __future__ import annotations

from .backends import CacheBackend, FallbackStore, RedisBackend  # noqa: F401
from .keys import ContentClass, build_key, cache_key, key_prefix  # noqa: F401
from .manager import CacheEntry, CacheManager  # noqa: F401

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "CacheManager",
    "ContentClass",
    "FallbackStore",
    "RedisBackend",
    "build_key",
    "cache_key",
    "key_prefix",
]
