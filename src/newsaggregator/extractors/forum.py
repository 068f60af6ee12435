"""Forum extractors: Reddit subreddit listings and the Hacker News front page."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List

from newsaggregator.config import SourceConfig, SourceType
from newsaggregator.errors import AuthFailedError, ParseError
from newsaggregator.extractors.base import BaseExtractor, CancelToken
from newsaggregator.models import ContentRecord

__all__ = ["ForumExtractor"]

logger = logging.getLogger(__name__)

REDDIT_TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
REDDIT_OAUTH_BASE = "https://oauth.reddit.com"
REDDIT_PUBLIC_BASE = "https://www.reddit.com"
HACKERNEWS_SEARCH_URL = "https://hn.algolia.com/api/v1/search"
REDDIT_SORTS = {"hot", "new", "top", "rising"}


def _from_epoch(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


class ForumExtractor(BaseExtractor):
    """Reddit by default; ``extra_params.site == "hackernews"`` reads Hacker News."""

    source_type = SourceType.FORUM

    def extract(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        site = str(config.extra_params.get("site", "reddit")).lower()
        if site == "hackernews":
            return self._extract_hackernews(config, token)
        return self._extract_reddit(config, token)

    # -- Reddit -----------------------------------------------------------------

    def _reddit_token(self, token: CancelToken) -> str | None:
        client_id = os.environ.get("REDDIT_CLIENT_ID")
        client_secret = os.environ.get("REDDIT_CLIENT_SECRET")
        if not client_id or not client_secret:
            return None

        response = self._post(
            REDDIT_TOKEN_URL,
            token,
            auth=(client_id, client_secret),
            data={"grant_type": "client_credentials"},
        )
        access_token = response.json().get("access_token")
        if not access_token:
            raise AuthFailedError("Reddit did not return an access token")
        return access_token

    def _extract_reddit(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        subreddit = config.identifier.strip().removeprefix("r/").strip("/")
        sort = str(config.extra_params.get("sort", "hot")).lower()
        if sort not in REDDIT_SORTS:
            sort = "hot"
        min_score = int(config.extra_params.get("min_score", 0))
        params = {"limit": min(config.max_items * 2, 100), "raw_json": 1}

        access_token = self._reddit_token(token)
        if access_token:
            url = f"{REDDIT_OAUTH_BASE}/r/{subreddit}/{sort}"
            headers = {"Authorization": f"Bearer {access_token}"}
        else:
            url = f"{REDDIT_PUBLIC_BASE}/r/{subreddit}/{sort}.json"
            headers = {}

        payload = self._get(url, token, params=params, headers=headers).json()
        try:
            children = payload["data"]["children"]
        except (KeyError, TypeError) as exc:
            raise ParseError(f"Unexpected Reddit listing for r/{subreddit}") from exc

        records: List[ContentRecord] = []
        for child in children:
            post: Dict[str, Any] = child.get("data") or {}
            if post.get("stickied") or not post.get("title"):
                continue
            if int(post.get("score") or 0) < min_score:
                continue

            permalink = f"{REDDIT_PUBLIC_BASE}{post.get('permalink', '')}"
            # Link posts point at the original article so they dedup against it.
            if post.get("is_self"):
                url_value = permalink
            else:
                url_value = post.get("url_overridden_by_dest") or post.get("url") or permalink

            tags = [f"r/{subreddit}"]
            flair = post.get("link_flair_text")
            if flair:
                tags.append(str(flair))

            records.append(
                ContentRecord(
                    source_type=SourceType.FORUM,
                    source_id=str(post.get("id") or permalink),
                    title=str(post["title"]).strip(),
                    body=str(post.get("selftext") or ""),
                    url=url_value,
                    published_at=_from_epoch(post.get("created_utc")),
                    tags=tags,
                )
            )
            if len(records) >= config.max_items:
                break

        logger.info("Reddit r/%s: %d posts", subreddit, len(records))
        return records

    # -- Hacker News ------------------------------------------------------------

    def _extract_hackernews(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        tags = str(config.extra_params.get("tags", config.identifier or "front_page"))
        min_points = int(config.extra_params.get("min_points", 0))
        params = {"tags": tags, "hitsPerPage": min(config.max_items * 2, 100)}

        payload = self._get(HACKERNEWS_SEARCH_URL, token, params=params).json()
        hits = payload.get("hits") if isinstance(payload, dict) else None
        if not isinstance(hits, list):
            raise ParseError("Unexpected Hacker News response")

        records: List[ContentRecord] = []
        for hit in hits:
            title = hit.get("title")
            object_id = hit.get("objectID")
            if not title or not object_id:
                continue
            if int(hit.get("points") or 0) < min_points:
                continue

            discussion = f"https://news.ycombinator.com/item?id={object_id}"
            records.append(
                ContentRecord(
                    source_type=SourceType.FORUM,
                    source_id=str(object_id),
                    title=str(title).strip(),
                    body=str(hit.get("story_text") or ""),
                    url=hit.get("url") or discussion,
                    published_at=_from_epoch(hit.get("created_at_i")),
                    tags=["hackernews"],
                )
            )
            if len(records) >= config.max_items:
                break

        logger.info("Hacker News %s: %d stories", tags, len(records))
        return records
