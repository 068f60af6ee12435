"""Research paper indexes: arXiv category listings and Hugging Face daily papers."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, List, Optional

from newsaggregator.config import SourceConfig, SourceType
from newsaggregator.errors import ParseError
from newsaggregator.extractors.base import BaseExtractor, CancelToken
from newsaggregator.extractors.feeds import entry_datetime, entry_tags, parse_feed
from newsaggregator.models import ContentRecord

__all__ = ["ResearchExtractor", "arxiv_abs_url"]

logger = logging.getLogger(__name__)

ARXIV_API_URL = "https://export.arxiv.org/api/query"
HUGGINGFACE_PAPERS_URL = "https://huggingface.co/api/daily_papers"
_ARXIV_ID_RE = re.compile(r"(\d{4}\.\d{4,5})(v\d+)?")
_WHITESPACE_RE = re.compile(r"\s+")


def arxiv_abs_url(paper_id: str) -> str:
    """Return the version-less abstract URL for an arXiv id or URL."""

    match = _ARXIV_ID_RE.search(paper_id)
    canonical = match.group(1) if match else paper_id.rsplit("/", 1)[-1]
    return f"https://arxiv.org/abs/{canonical}"


def _clean(text: Any) -> str:
    return _WHITESPACE_RE.sub(" ", str(text or "")).strip()


def _parse_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class ResearchExtractor(BaseExtractor):
    """``identifier`` is an arXiv category (``cs.AI``) unless ``extra_params.index`` says otherwise."""

    source_type = SourceType.RESEARCH

    def extract(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        index = str(config.extra_params.get("index", "arxiv")).lower()
        if index == "huggingface":
            return self._extract_huggingface(config, token)
        return self._extract_arxiv(config, token)

    def _extract_arxiv(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        category = config.identifier.strip()
        params = {
            "search_query": f"cat:{category}",
            "sortBy": "submittedDate",
            "sortOrder": "descending",
            "max_results": config.max_items,
        }
        entries = parse_feed(self._get(ARXIV_API_URL, token, params=params).content)

        records: List[ContentRecord] = []
        for entry in entries:
            entry_id = entry.get("id")
            title = entry.get("title")
            if not entry_id or not title:
                continue
            url = arxiv_abs_url(str(entry_id))
            records.append(
                ContentRecord(
                    source_type=SourceType.RESEARCH,
                    source_id=url.rsplit("/", 1)[-1],
                    title=_clean(title),
                    body=_clean(entry.get("summary")),
                    url=url,
                    published_at=entry_datetime(entry),
                    tags=["arxiv"] + entry_tags(entry),
                )
            )

        logger.info("arXiv %s: %d papers", category, len(records))
        return records

    def _extract_huggingface(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        min_upvotes = int(config.extra_params.get("min_upvotes", 0))
        payload = self._get(HUGGINGFACE_PAPERS_URL, token, params={"limit": config.max_items * 2}).json()
        if not isinstance(payload, list):
            raise ParseError("Unexpected Hugging Face papers response")

        records: List[ContentRecord] = []
        for item in payload:
            paper = item.get("paper") if isinstance(item, dict) else None
            if not isinstance(paper, dict) or not paper.get("id"):
                continue
            upvotes = int(paper.get("upvotes") or 0)
            if upvotes < min_upvotes:
                continue
            records.append(
                ContentRecord(
                    source_type=SourceType.RESEARCH,
                    source_id=str(paper["id"]),
                    title=_clean(paper.get("title") or item.get("title")),
                    body=_clean(paper.get("summary")),
                    url=arxiv_abs_url(str(paper["id"])),
                    published_at=_parse_iso(paper.get("publishedAt") or item.get("publishedAt")),
                    tags=["huggingface", "trending"],
                )
            )
            if len(records) >= config.max_items:
                break

        logger.info("Hugging Face papers: %d papers", len(records))
        return records
