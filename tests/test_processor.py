from __future__ import annotations

from datetime import date

from newsaggregator.cache import CacheManager
from newsaggregator.config import SourceType, TopicConfig
from newsaggregator.models import ContentRecord
from newsaggregator.services.processor import (
    ContentProcessor,
    RelevanceFilter,
    RunHistory,
    dedup_key,
)
from newsaggregator.services.urls import canonicalize_url


def _record(source_type: SourceType, title: str, url: str = "", body: str = "", tags=None) -> ContentRecord:
    return ContentRecord(
        source_type=source_type,
        source_id=f"{source_type.value}:{title}",
        title=title,
        url=url,
        body=body,
        tags=list(tags or []),
    )


def test_canonicalize_url_strips_tracking_and_normalizes_host() -> None:
    assert canonicalize_url("http://www.Example.com/post/?utm_source=x&b=2&a=1#top") == (
        "https://example.com/post?a=1&b=2"
    )
    assert canonicalize_url("") == ""


def test_dedup_key_uses_canonical_url() -> None:
    first = _record(SourceType.FORUM, "One", "https://example.com/paper?utm_medium=social")
    second = _record(SourceType.NEWS_FEED, "Two", "http://www.example.com/paper/")

    assert dedup_key(first) == dedup_key(second)
    assert dedup_key(first).startswith("url:")


def test_dedup_key_falls_back_to_normalized_content() -> None:
    first = _record(SourceType.SHORT_VIDEO, "Hello, World!", body="Same body")
    second = _record(SourceType.SHORT_VIDEO, "hello world", body="same  body")

    assert dedup_key(first) == dedup_key(second)
    assert dedup_key(first).startswith("content:")


def test_highest_priority_source_wins() -> None:
    url = "https://arxiv.org/abs/2401.00001"
    records = [
        _record(SourceType.FORUM, "Reddit thread", url),
        _record(SourceType.NEWS_FEED, "Unrelated", "https://example.com/other"),
        _record(SourceType.RESEARCH, "The paper", url),
        _record(SourceType.NEWS_FEED, "News coverage", url),
    ]

    result = ContentProcessor().deduplicate(records)

    assert [record.title for record in result] == ["Unrelated", "The paper"]


def test_ties_keep_the_first_record() -> None:
    records = [
        _record(SourceType.FORUM, "First", "https://example.com/a"),
        _record(SourceType.FORUM, "Second", "https://example.com/a"),
    ]

    assert [record.title for record in ContentProcessor().deduplicate(records)] == ["First"]


def test_relevance_filter_matches_whole_words_case_insensitively() -> None:
    relevance = RelevanceFilter([TopicConfig(name="Models", keywords=["LLM", "GPT"]), TopicConfig(name="AI")])

    assert relevance.matching_topics(_record(SourceType.FORUM, "a new llm appears")) == ["Models"]
    assert relevance.matching_topics(_record(SourceType.FORUM, "Plain", body="GPT and AI news")) == [
        "Models",
        "AI",
    ]
    assert relevance.matching_topics(_record(SourceType.FORUM, "She said hi to LLMs")) == []


def test_filter_relevant_drops_and_annotates() -> None:
    processor = ContentProcessor(RelevanceFilter([TopicConfig(name="AI", keywords=["machine learning"])]))
    records = [
        _record(SourceType.BLOG_FEED, "Machine learning at scale", "https://a.example", tags=["blog"]),
        _record(SourceType.BLOG_FEED, "Gardening tips", "https://b.example"),
    ]

    result = processor.filter_relevant(records)

    assert [record.title for record in result] == ["Machine learning at scale"]
    assert result[0].tags == ["blog", "AI"]
    assert records[0].tags == ["blog"]


def test_without_topics_everything_is_relevant() -> None:
    records = [_record(SourceType.FORUM, "Anything", "https://a.example")]

    assert ContentProcessor().process(records) == records


def test_processing_is_idempotent() -> None:
    processor = ContentProcessor(RelevanceFilter([TopicConfig(name="AI", keywords=["LLM"])]))
    records = [
        _record(SourceType.FORUM, "LLM news", "https://example.com/1"),
        _record(SourceType.VIDEO, "LLM video", "https://example.com/1"),
        _record(SourceType.FORUM, "Cooking", "https://example.com/2"),
        _record(SourceType.NEWS_FEED, "Another LLM", "https://example.com/3"),
    ]

    once = processor.process(records)

    assert [record.title for record in once] == ["LLM video", "Another LLM"]
    assert processor.process(once) == once


def test_run_history_drops_records_seen_in_previous_runs() -> None:
    history = RunHistory(CacheManager(), days=2)
    processor = ContentProcessor(history=history)
    records = [_record(SourceType.FORUM, "Seen", "https://example.com/seen")]

    assert processor.process(records, run_date=date(2024, 5, 1)) == records
    assert processor.process(records, run_date=date(2024, 5, 2)) == []
    assert processor.process(records, run_date=date(2024, 5, 4)) == records


def test_history_is_ignored_without_run_date() -> None:
    history = RunHistory(CacheManager(), days=7)
    processor = ContentProcessor(history=history)
    records = [_record(SourceType.FORUM, "Seen", "https://example.com/seen")]

    processor.process(records)

    assert history.seen(date.today()) == set()
