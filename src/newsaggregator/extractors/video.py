"""YouTube channel uploads through the public channel feed."""

from __future__ import annotations

import logging
import re
from typing import Callable, List

import requests
from bs4 import BeautifulSoup
from youtube_transcript_api import CouldNotRetrieveTranscript, YouTubeTranscriptApi

from newsaggregator.config import SourceConfig, SourceType
from newsaggregator.errors import ParseError
from newsaggregator.extractors.base import BaseExtractor, CancelToken
from newsaggregator.extractors.feeds import entry_datetime, is_recent, parse_feed, strip_html
from newsaggregator.models import ContentRecord

__all__ = ["VideoExtractor", "fetch_transcript"]

logger = logging.getLogger(__name__)

CHANNEL_FEED_URL = "https://www.youtube.com/feeds/videos.xml"
CHANNEL_PAGE_URL = "https://www.youtube.com/{handle}"
TRANSCRIPT_LIMIT = 8000
_CHANNEL_ID = re.compile(r"UC[\w-]{22}")
_CHANNEL_ID_RE = re.compile(rf'"(?:channelId|externalId)":"({_CHANNEL_ID.pattern})"')

TranscriptFetcher = Callable[[str], str]


def fetch_transcript(video_id: str) -> str:
    """Return the captions of ``video_id`` joined into one text."""

    transcript = YouTubeTranscriptApi().fetch(video_id)
    return " ".join(snippet.text.strip() for snippet in transcript if snippet.text.strip())


def is_channel_id(value: str) -> bool:
    return _CHANNEL_ID.fullmatch(value) is not None


class VideoExtractor(BaseExtractor):
    """``identifier`` is a channel id (``UC...``) or a handle (``@name``).

    With ``extra_params.transcripts`` set, each record body holds the video
    captions instead of the feed description; videos without captions keep
    the description.
    """

    source_type = SourceType.VIDEO

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        request_timeout: float = 30.0,
        transcripts: TranscriptFetcher | None = None,
    ) -> None:
        super().__init__(session, request_timeout=request_timeout)
        self._fetch_transcript = transcripts or fetch_transcript

    def resolve_channel_id(self, identifier: str, token: CancelToken) -> str:
        identifier = identifier.strip()
        if is_channel_id(identifier):
            return identifier

        handle = identifier if identifier.startswith("@") else f"@{identifier}"
        html = self._get(CHANNEL_PAGE_URL.format(handle=handle), token).text
        soup = BeautifulSoup(html, "lxml")

        for selector in ('meta[itemprop="identifier"]', 'meta[itemprop="channelId"]'):
            tag = soup.select_one(selector)
            if tag and is_channel_id(str(tag.get("content", ""))):
                return str(tag["content"])

        canonical = soup.select_one('link[rel="canonical"]')
        if canonical and "/channel/" in str(canonical.get("href", "")):
            candidate = str(canonical["href"]).rsplit("/channel/", 1)[1].strip("/")
            if is_channel_id(candidate):
                return candidate

        match = _CHANNEL_ID_RE.search(html)
        if match:
            return match.group(1)
        raise ParseError(f"Could not resolve a channel id for {handle}")

    def transcript_or_description(self, video_id: str, description: str, token: CancelToken) -> str:
        token.raise_if_cancelled()
        try:
            text = self._fetch_transcript(video_id)
        except (CouldNotRetrieveTranscript, requests.RequestException) as exc:
            logger.info("No transcript for video %s (%s), using its description", video_id, type(exc).__name__)
            return description
        token.raise_if_cancelled()
        return text[:TRANSCRIPT_LIMIT] if text else description

    def extract(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        channel_id = self.resolve_channel_id(config.identifier, token)
        response = self._get(CHANNEL_FEED_URL, token, params={"channel_id": channel_id})
        entries = parse_feed(response.content)

        max_age_days = config.extra_params.get("max_age_days", 7)
        with_transcripts = bool(config.extra_params.get("transcripts", False))
        now = self.now_utc()
        records: List[ContentRecord] = []
        for entry in entries:
            video_id = entry.get("yt_videoid")
            title = entry.get("title")
            if not video_id or not title:
                continue
            published_at = entry_datetime(entry)
            if not is_recent(published_at, max_age_days, now):
                continue

            body = strip_html(entry.get("summary"), limit=4000)
            if with_transcripts:
                body = self.transcript_or_description(str(video_id), body, token)

            records.append(
                ContentRecord(
                    source_type=SourceType.VIDEO,
                    source_id=str(video_id),
                    title=str(title).strip(),
                    body=body,
                    url=f"https://www.youtube.com/watch?v={video_id}",
                    published_at=published_at,
                    tags=[config.label],
                )
            )
            if len(records) >= config.max_items:
                break

        logger.info("YouTube %s: %d videos", config.label, len(records))
        return records
