"""Cache key derivation and TTL classes."""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Mapping

from newsaggregator.config import SourceConfig, SourceType

DEFAULT_NAMESPACE = "ai_news_cache"


class ContentClass(str, Enum):
    """TTL classes. The class is part of every key so namespaces never overlap."""

    CONTENT = "content"
    DERIVED = "derived"
    HISTORY = "history"

    @property
    def ttl(self) -> int:
        return _TTLS[self]


_TTLS = {
    ContentClass.CONTENT: 3 * 24 * 3600,
    ContentClass.DERIVED: 3600,
    ContentClass.HISTORY: 7 * 24 * 3600,
}


def _fingerprint(identifier: str, extra_params: Mapping[str, Any]) -> str:
    canonical = json.dumps(
        {"identifier": identifier, "extra": extra_params},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_key(
    source_type: SourceType | str,
    identifier: str,
    extra_params: Mapping[str, Any] | None = None,
    *,
    content_class: ContentClass = ContentClass.CONTENT,
    namespace: str = DEFAULT_NAMESPACE,
) -> str:
    """Return ``namespace:class:source_type:sha256`` for the given inputs."""

    type_value = source_type.value if isinstance(source_type, SourceType) else str(source_type)
    digest = _fingerprint(identifier, extra_params or {})
    return f"{namespace}:{content_class.value}:{type_value}:{digest}"


def cache_key(
    source: SourceConfig,
    *,
    content_class: ContentClass = ContentClass.CONTENT,
    namespace: str = DEFAULT_NAMESPACE,
) -> str:
    """Derive the cache key of a configured source."""

    return build_key(
        source.source_type,
        source.identifier,
        source.extra_params,
        content_class=content_class,
        namespace=namespace,
    )


def key_prefix(key: str) -> str:
    """Return the source type segment of ``key`` (used for stats and locking)."""

    parts = key.split(":")
    if len(parts) >= 4:
        return parts[-2]
    return parts[0] if parts else ""
