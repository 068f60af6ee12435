"""Extractor registry: one implementation per :class:`~newsaggregator.config.SourceType`."""

from __future__ import annotations

from typing import Dict, Type

from newsaggregator.config import SourceType

from .base import BaseExtractor, CancelToken
from .blog_feed import BlogFeedExtractor
from .forum import ForumExtractor
from .news_feed import NewsFeedExtractor
from .research import ResearchExtractor
from .short_video import ShortVideoExtractor
from .video import VideoExtractor

__all__ = ["BaseExtractor", "CancelToken", "EXTRACTORS", "get_extractor"]

EXTRACTORS: Dict[SourceType, Type[BaseExtractor]] = {
    SourceType.FORUM: ForumExtractor,
    SourceType.VIDEO: VideoExtractor,
    SourceType.SHORT_VIDEO: ShortVideoExtractor,
    SourceType.RESEARCH: ResearchExtractor,
    SourceType.NEWS_FEED: NewsFeedExtractor,
    SourceType.BLOG_FEED: BlogFeedExtractor,
}


def get_extractor(source_type: SourceType | str) -> BaseExtractor:
    """Return a fresh extractor (with its own HTTP session) for ``source_type``."""

    cls = EXTRACTORS[SourceType(source_type)]
    return cls()
