"""Blog extraction from an index page, or from the blog's feed when one is configured."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterator, List, Tuple
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from newsaggregator.config import SourceConfig, SourceType
from newsaggregator.extractors.base import BaseExtractor, CancelToken
from newsaggregator.extractors.feeds import parse_feed
from newsaggregator.extractors.http import classify_exception
from newsaggregator.extractors.news_feed import records_from_entries
from newsaggregator.models import ContentRecord, ErrorKind

__all__ = ["BlogFeedExtractor", "extract_text", "find_published_date"]

logger = logging.getLogger(__name__)

MIN_ARTICLE_CHARS = 200

_MONTH_PATTERN = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|jun(?:e)?|"
    r"jul(?:y)?|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|"
    r"dec(?:ember)?)"
)
_DATE_PATTERN = re.compile(
    rf"""(?ix)
    published
    (?:\s+(?:at|on))?
    [\s,:\-–—]*?
    (?P<date>
        \d{{4}}[\/-]\d{{1,2}}[\/-]\d{{1,2}}
        |
        {_MONTH_PATTERN}\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,\s*)?\d{{4}}
        |
        \d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTH_PATTERN}\s+\d{{4}}
    )
    """,
)
_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%B %d %Y", "%b %d %Y", "%d %B %Y", "%d %b %Y")


def extract_text(html: str) -> Tuple[str, str]:
    """Extract title and text content from HTML."""

    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript", "nav", "footer"]):
        tag.decompose()
    title = soup.title.get_text(strip=True) if soup.title else ""
    container = soup.find("article") or soup.find("main") or soup.body or soup
    text = container.get_text("\n", strip=True)
    return title, text


def find_published_date(html: str) -> datetime | None:
    """Return the publication time of an article page, if one can be found."""

    soup = BeautifulSoup(html, "lxml")

    meta = soup.find("meta", attrs={"property": "article:published_time"})
    if meta and meta.get("content"):
        try:
            parsed = datetime.fromisoformat(str(meta["content"]).replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            pass

    time_tag = soup.find("time", attrs={"datetime": True})
    if time_tag:
        try:
            parsed = datetime.fromisoformat(str(time_tag["datetime"]).replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            pass

    match = _DATE_PATTERN.search(soup.get_text(" ", strip=True))
    if not match:
        return None
    raw = re.sub(r"(\d)(st|nd|rd|th)", r"\1", match.group("date")).replace(",", " ")
    raw = " ".join(raw.split())
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


class BlogFeedExtractor(BaseExtractor):
    """``identifier`` is the blog index URL.

    Options: ``feed_url`` (parse the feed instead of the page), ``filter_path``
    (only follow links under this path), ``fetch_articles`` (default true).
    """

    source_type = SourceType.BLOG_FEED

    def extract(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        feed_url = config.extra_params.get("feed_url")
        if feed_url:
            entries = parse_feed(self._get(str(feed_url), token).content)
            return records_from_entries(
                entries,
                source_type=SourceType.BLOG_FEED,
                label=config.label,
                limit=config.max_items,
                max_age_days=config.extra_params.get("max_age_days", 30),
                now=self.now_utc(),
            )

        base_url = config.identifier
        soup = BeautifulSoup(self._get(base_url, token).text, "lxml")
        links = list(
            self._extract_links(soup, base_url, config.extra_params.get("filter_path"), config.max_items)
        )

        if not config.extra_params.get("fetch_articles", True):
            return [self._link_record(config, url, title) for url, title in links]

        records: List[ContentRecord] = []
        fetched = 0
        last_error: requests.RequestException | None = None
        for url, anchor_title in links:
            try:
                html = self._get(url, token).text
            except requests.RequestException as exc:
                logger.warning("Failed %s: %s", url, exc)
                last_error = exc
                continue
            fetched += 1

            title, text = extract_text(html)
            if not text or len(text) < MIN_ARTICLE_CHARS:
                logger.debug("Too little text, skip: %s", url)
                continue

            records.append(
                ContentRecord(
                    source_type=SourceType.BLOG_FEED,
                    source_id=url,
                    title=anchor_title or title or url,
                    body=text[:8000],
                    url=url,
                    published_at=find_published_date(html),
                    tags=[config.label],
                )
            )

        # No article could be fetched: surface the status of the last failure.
        if (
            not fetched
            and isinstance(last_error, requests.HTTPError)
            and classify_exception(last_error) is not ErrorKind.UNKNOWN
        ):
            raise last_error

        logger.info("Blog %s: %d articles from %d links", config.label, len(records), len(links))
        return records

    def _link_record(self, config: SourceConfig, url: str, title: str) -> ContentRecord:
        return ContentRecord(
            source_type=SourceType.BLOG_FEED,
            source_id=url,
            title=title or url,
            url=url,
            tags=[config.label],
        )

    def _extract_links(
        self, soup: BeautifulSoup, base_url: str, filter_path: str | None, limit: int
    ) -> Iterator[Tuple[str, str]]:
        """Yield ``(url, anchor text)`` for same-site article links within ``soup``."""

        parsed_base = urlparse(base_url)
        base_path = parsed_base.path.rstrip("/")
        seen: set[str] = set()
        counter = 0
        for anchor in soup.find_all("a", href=True):
            href = anchor.get("href")
            if not href:
                continue

            candidate = urljoin(base_url, href)
            parsed_candidate = urlparse(candidate)

            if parsed_candidate.scheme not in {"http", "https"}:
                continue
            if parsed_candidate.netloc and parsed_candidate.netloc != parsed_base.netloc:
                continue
            path = parsed_candidate.path.rstrip("/")
            if filter_path and filter_path not in path:
                continue
            if not filter_path and (not path.startswith(base_path) or path == base_path):
                continue

            normalized = candidate.split("#", 1)[0]
            if normalized in seen:
                continue
            seen.add(normalized)

            yield normalized, anchor.get_text(" ", strip=True)
            counter += 1
            if counter >= limit:
                break
