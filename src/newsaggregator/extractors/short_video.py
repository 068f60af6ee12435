"""TikTok profile extraction using a headless browser."""

from __future__ import annotations

import logging
import re
from typing import Callable, List
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from newsaggregator.config import SourceConfig, SourceType
from newsaggregator.errors import ExtractionCancelled, ExtractionError
from newsaggregator.extractors.base import BaseExtractor, CancelToken
from newsaggregator.extractors.http import DEFAULT_HEADERS
from newsaggregator.models import ContentRecord

__all__ = ["ShortVideoExtractor", "fetch_with_playwright"]

logger = logging.getLogger(__name__)

PROFILE_URL = "https://www.tiktok.com/@{handle}"
_VIDEO_PATH_RE = re.compile(r"/@(?P<handle>[\w.\-]+)/video/(?P<video_id>\d+)")

Renderer = Callable[[str, float], str]


def fetch_with_playwright(url: str, timeout_s: float, wait_ms: int = 3000) -> str:
    """Fetch raw page content using Playwright with a Chromium browser."""

    with sync_playwright() as playwright:
        browser = playwright.chromium.launch(headless=True, timeout=int(timeout_s * 1000))
        context = browser.new_context(extra_http_headers={"Accept-Language": DEFAULT_HEADERS["Accept-Language"]})
        try:
            page = context.new_page()
            page.goto(url, wait_until="domcontentloaded", timeout=int(timeout_s * 1000))
            page.wait_for_timeout(wait_ms)
            # Profiles lazy-load the video grid on scroll.
            page.mouse.wheel(0, 2000)
            page.wait_for_timeout(1000)
            return page.content()
        finally:
            context.close()
            browser.close()


class ShortVideoExtractor(BaseExtractor):
    """``identifier`` is a TikTok handle with or without the leading ``@``."""

    source_type = SourceType.SHORT_VIDEO

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        request_timeout: float = 45.0,
        render: Renderer | None = None,
    ) -> None:
        super().__init__(session, request_timeout=request_timeout)
        self._render = render or fetch_with_playwright

    def extract(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        handle = config.identifier.strip().lstrip("@")
        profile_url = PROFILE_URL.format(handle=handle)

        token.raise_if_cancelled()
        try:
            html = self._render(profile_url, token.timeout(self._request_timeout))
        except PlaywrightTimeoutError as exc:
            raise ExtractionCancelled(f"Rendering {profile_url} timed out") from exc
        except PlaywrightError as exc:
            raise ExtractionError(f"Rendering {profile_url} failed: {exc}") from exc
        token.raise_if_cancelled()

        records = self._parse_profile(html, profile_url, handle, config.max_items)
        logger.info("TikTok @%s: %d videos", handle, len(records))
        return records

    def _parse_profile(self, html: str, base_url: str, handle: str, limit: int) -> List[ContentRecord]:
        soup = BeautifulSoup(html, "lxml")
        seen: set[str] = set()
        records: List[ContentRecord] = []

        for anchor in soup.find_all("a", href=True):
            absolute = urljoin(base_url, anchor["href"])
            match = _VIDEO_PATH_RE.search(urlparse(absolute).path)
            if not match or match.group("handle").lower() != handle.lower():
                continue
            video_id = match.group("video_id")
            if video_id in seen:
                continue
            seen.add(video_id)

            image = anchor.find("img")
            caption = (image.get("alt") if image else None) or anchor.get_text(" ", strip=True)
            caption = str(caption or "").strip()

            records.append(
                ContentRecord(
                    source_type=SourceType.SHORT_VIDEO,
                    source_id=video_id,
                    title=caption[:200] or f"TikTok video {video_id}",
                    body=caption,
                    url=f"https://www.tiktok.com/@{handle}/video/{video_id}",
                    tags=[f"@{handle}"] + re.findall(r"#(\w+)", caption),
                )
            )
            if len(records) >= limit:
                break

        return records
