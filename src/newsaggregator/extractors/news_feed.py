"""RSS/Atom news feeds."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List

from newsaggregator.config import SourceConfig, SourceType
from newsaggregator.extractors.base import BaseExtractor, CancelToken
from newsaggregator.extractors.feeds import entry_datetime, entry_tags, is_recent, parse_feed, strip_html
from newsaggregator.models import ContentRecord

__all__ = ["NewsFeedExtractor", "records_from_entries"]

logger = logging.getLogger(__name__)


def records_from_entries(
    entries: List[Any],
    *,
    source_type: SourceType,
    label: str,
    limit: int,
    max_age_days: float | None,
    now: datetime,
) -> List[ContentRecord]:
    """Normalise feed entries into records, newest first as the feed lists them."""

    records: List[ContentRecord] = []
    for entry in entries:
        link = entry.get("link")
        title = entry.get("title")
        if not link or not title:
            continue
        published_at = entry_datetime(entry)
        if not is_recent(published_at, max_age_days, now):
            continue

        content = entry.get("content")
        body_html = content[0].get("value") if content else entry.get("summary")
        records.append(
            ContentRecord(
                source_type=source_type,
                source_id=str(entry.get("id") or link),
                title=strip_html(str(title)),
                body=strip_html(body_html, limit=4000),
                url=str(link).strip(),
                published_at=published_at,
                tags=[label] + entry_tags(entry),
            )
        )
        if len(records) >= limit:
            break
    return records


class NewsFeedExtractor(BaseExtractor):
    """``identifier`` is the feed URL."""

    source_type = SourceType.NEWS_FEED

    def extract(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        response = self._get(config.identifier, token)
        entries = parse_feed(response.content)
        records = records_from_entries(
            entries,
            source_type=SourceType.NEWS_FEED,
            label=config.label,
            limit=config.max_items,
            max_age_days=config.extra_params.get("max_age_days", 7),
            now=self.now_utc(),
        )
        logger.info("Feed %s: %d articles", config.label, len(records))
        return records
