"""Deduplication and relevance filtering of the merged record set."""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Sequence, Set

from newsaggregator.cache import CacheManager, ContentClass, build_key
from newsaggregator.config import SourceType, TopicConfig
from newsaggregator.models import ContentRecord
from newsaggregator.services.urls import url_hash

__all__ = [
    "ContentProcessor",
    "RelevanceFilter",
    "RunHistory",
    "SOURCE_PRIORITY",
    "dedup_key",
]

logger = logging.getLogger(__name__)

#: Lower wins. Primary sources of record rank ahead of the aggregators that link to them.
SOURCE_PRIORITY: Dict[SourceType, int] = {
    SourceType.RESEARCH: 0,
    SourceType.BLOG_FEED: 1,
    SourceType.VIDEO: 2,
    SourceType.SHORT_VIDEO: 3,
    SourceType.NEWS_FEED: 4,
    SourceType.FORUM: 5,
}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def _normalize_text(value: str) -> str:
    return _NON_ALNUM_RE.sub(" ", value.lower()).strip()


def dedup_key(record: ContentRecord) -> str:
    """Return the identity used to recognise the same content across sources."""

    if record.url:
        return f"url:{url_hash(record.url)}"
    fingerprint = f"{_normalize_text(record.title)}|{_normalize_text(record.body[:500])}"
    return "content:" + hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


class RelevanceFilter:
    """Keyword/topic predicate evaluated against title and body."""

    def __init__(self, topics: Sequence[TopicConfig] = ()) -> None:
        self._patterns: List[tuple[str, re.Pattern[str]]] = []
        for topic in topics:
            keywords = sorted({keyword.strip() for keyword in topic.keyword_set() if keyword.strip()})
            if not keywords:
                continue
            alternatives = "|".join(re.escape(keyword) for keyword in keywords)
            self._patterns.append(
                (topic.name, re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)", re.IGNORECASE))
            )

    @property
    def active(self) -> bool:
        return bool(self._patterns)

    def matching_topics(self, record: ContentRecord) -> List[str]:
        haystack = f"{record.title}\n{record.body}"
        return [name for name, pattern in self._patterns if pattern.search(haystack)]


class RunHistory:
    """Dedup keys handed downstream by previous runs, one cache entry per run date."""

    def __init__(self, cache: CacheManager, *, days: int = 7) -> None:
        self._cache = cache
        self._days = days

    def _key(self, run_date: date) -> str:
        return build_key(
            "history",
            run_date.isoformat(),
            content_class=ContentClass.HISTORY,
            namespace=self._cache.namespace,
        )

    def _load(self, run_date: date) -> Set[str]:
        payload, hit = self._cache.get(self._key(run_date))
        if not hit or not isinstance(payload, list):
            return set()
        return {str(item) for item in payload}

    def seen(self, run_date: date) -> Set[str]:
        keys: Set[str] = set()
        for offset in range(self._days):
            keys |= self._load(run_date - timedelta(days=offset))
        return keys

    def record(self, keys: Iterable[str], run_date: date) -> None:
        merged = self._load(run_date) | set(keys)
        self._cache.put(self._key(run_date), sorted(merged), ContentClass.HISTORY.ttl)


class ContentProcessor:
    """Two passes over the merged records: dedup by priority, then relevance.

    Stateless across runs unless a :class:`RunHistory` is supplied.
    """

    def __init__(
        self,
        relevance: RelevanceFilter | None = None,
        *,
        priority: Mapping[SourceType, int] | None = None,
        history: RunHistory | None = None,
    ) -> None:
        self._relevance = relevance or RelevanceFilter()
        self._priority = dict(priority or SOURCE_PRIORITY)
        self._history = history

    def _rank(self, record: ContentRecord) -> int:
        return self._priority.get(record.source_type, len(self._priority))

    def deduplicate(self, records: Sequence[ContentRecord]) -> List[ContentRecord]:
        """Keep one record per dedup key: best priority first, then input order."""

        winners: Dict[str, int] = {}
        for index, record in enumerate(records):
            key = dedup_key(record)
            current = winners.get(key)
            if current is None or self._rank(record) < self._rank(records[current]):
                winners[key] = index

        kept = sorted(winners.values())
        return [records[index] for index in kept]

    def filter_relevant(self, records: Sequence[ContentRecord]) -> List[ContentRecord]:
        """Drop records matching no topic; annotate the rest with their topics."""

        if not self._relevance.active:
            return list(records)

        relevant: List[ContentRecord] = []
        for record in records:
            topics = self._relevance.matching_topics(record)
            if not topics:
                continue
            tags = list(record.tags) + [topic for topic in topics if topic not in record.tags]
            relevant.append(record.model_copy(update={"tags": tags}))
        return relevant

    def process(self, records: Sequence[ContentRecord], *, run_date: date | None = None) -> List[ContentRecord]:
        unique = self.deduplicate(records)
        logger.info("After deduplication: %d unique records of %d", len(unique), len(records))

        if self._history is not None and run_date is not None:
            seen = self._history.seen(run_date)
            unique = [record for record in unique if dedup_key(record) not in seen]
            logger.info("After cross-run deduplication: %d records", len(unique))

        relevant = self.filter_relevant(unique)
        logger.info("After relevance filtering: %d records", len(relevant))

        if self._history is not None and run_date is not None:
            self._history.record((dedup_key(record) for record in relevant), run_date)
        return relevant
