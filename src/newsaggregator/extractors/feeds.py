"""Helpers for RSS/Atom based extractors."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import feedparser
from bs4 import BeautifulSoup

from newsaggregator.errors import ParseError


def parse_feed(content: bytes | str) -> List[Any]:
    """Parse a feed document and return its entries.

    A document feedparser could not make sense of and that yielded no entries
    is reported as a :class:`ParseError`; an empty but well-formed feed is not.
    """

    parsed = feedparser.parse(content)
    entries = list(parsed.entries or [])
    if parsed.bozo and not entries:
        reason = getattr(parsed, "bozo_exception", None)
        raise ParseError(f"Unreadable feed: {reason}")
    return entries


def entry_datetime(entry: Any) -> Optional[datetime]:
    """Return the published (or updated) time of a feed entry in UTC."""

    for field in ("published_parsed", "updated_parsed"):
        value = entry.get(field)
        if value:
            return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    return None


def strip_html(fragment: str | None, *, limit: int | None = None) -> str:
    """Return the visible text of an HTML fragment."""

    if not fragment:
        return ""
    text = BeautifulSoup(fragment, "lxml").get_text(" ", strip=True)
    if limit is not None:
        return text[:limit]
    return text


def is_recent(published_at: Optional[datetime], max_age_days: float | None, now: datetime) -> bool:
    """Return ``True`` when ``published_at`` is within ``max_age_days`` of ``now``.

    Entries without a date are kept.
    """

    if published_at is None or not max_age_days:
        return True
    return now - published_at <= timedelta(days=float(max_age_days))


def entry_tags(entry: Any) -> List[str]:
    tags: List[str] = []
    for tag in entry.get("tags") or []:
        term = tag.get("term") if hasattr(tag, "get") else None
        if term:
            tags.append(str(term).strip())
    return tags
