from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from newsaggregator.cache import CacheManager
from newsaggregator.config import AppConfig, SourceConfig, SourceType, TopicConfig
from newsaggregator.errors import AllSourcesFailedError, ParseError
from newsaggregator.extractors import BaseExtractor
from newsaggregator.models import ContentRecord, ExtractionOutcome, OutcomeStatus
from newsaggregator.services.pipeline import (
    HANDOFF_FILENAME,
    RunScope,
    digest_key,
    load_handoff,
    run_pipeline,
)


class StubExtractor(BaseExtractor):
    source_type = SourceType.FORUM

    def __init__(self, records_by_identifier) -> None:
        super().__init__(session=SimpleNamespace())
        self.records_by_identifier = records_by_identifier

    def extract(self, config, token):
        result = self.records_by_identifier[config.identifier]
        if isinstance(result, Exception):
            raise result
        return result


PAPER_URL = "https://arxiv.org/abs/2401.00001"


def _record(source_type: SourceType, title: str, url: str) -> ContentRecord:
    return ContentRecord(source_type=source_type, source_id=title, title=title, url=url)


def _config(**kwargs) -> AppConfig:
    return AppConfig(
        sources=[
            SourceConfig(source_type=SourceType.FORUM, identifier="LocalLLaMA"),
            SourceConfig(source_type=SourceType.RESEARCH, identifier="cs.AI"),
        ],
        relevance={"topics": [TopicConfig(name="Models", keywords=["LLM"])]},
        **kwargs,
    )


def _extractors(forum_result, research_result):
    return {
        SourceType.FORUM: StubExtractor({"LocalLLaMA": forum_result}),
        SourceType.RESEARCH: StubExtractor({"cs.AI": research_result}),
    }


def test_run_pipeline_dedups_filters_and_hands_off(tmp_path: Path) -> None:
    cache = CacheManager()
    extractors = _extractors(
        [
            _record(SourceType.FORUM, "Discussing a new LLM paper", PAPER_URL),
            _record(SourceType.FORUM, "Weekend cooking thread", "https://reddit.example/cooking"),
        ],
        [_record(SourceType.RESEARCH, "An LLM paper", PAPER_URL)],
    )

    result = run_pipeline(_config(), cache, extractors=extractors, blob_root=tmp_path)

    assert [record.title for record in result.records] == ["An LLM paper"]
    assert result.records[0].tags == ["Models"]
    assert result.summary.extracted == 3
    assert result.summary.kept == 1
    assert [report.status for report in result.summary.sources] == [OutcomeStatus.SUCCESS] * 2
    assert result.summary.cache["forum"].misses == 1

    handoff_file = tmp_path / "handoff" / HANDOFF_FILENAME
    assert "stored_at" in json.loads(handoff_file.read_text(encoding="utf-8"))
    assert load_handoff(tmp_path) == result

    today = result.summary.started_at.date().isoformat()
    payload, hit = cache.get(digest_key(today, cache.namespace))
    assert hit
    assert payload[0]["url"] == PAPER_URL


def test_partial_failure_is_reported_not_raised(tmp_path: Path) -> None:
    extractors = _extractors(ParseError("bad listing"), [_record(SourceType.RESEARCH, "LLM", PAPER_URL)])

    result = run_pipeline(_config(), CacheManager(), extractors=extractors, blob_root=tmp_path)

    assert len(result.summary.failed) == 1
    assert result.summary.failed[0].name == "LocalLLaMA"
    assert result.summary.failed[0].error_kind.value == "ParseError"
    assert len(result.records) == 1


def test_all_sources_failing_raises(tmp_path: Path) -> None:
    extractors = _extractors(ParseError("bad"), TimeoutError("slow"))

    with pytest.raises(AllSourcesFailedError) as excinfo:
        run_pipeline(_config(), CacheManager(), extractors=extractors, blob_root=tmp_path)

    summary = excinfo.value.summary
    assert summary.all_failed
    assert "ParseError" in str(excinfo.value)
    assert "Timeout" in str(excinfo.value)
    assert load_handoff(tmp_path) is None


def test_only_and_disabled_types_limit_the_run(tmp_path: Path) -> None:
    extractors = _extractors(ParseError("never called"), [_record(SourceType.RESEARCH, "LLM", PAPER_URL)])

    result = run_pipeline(_config(), CacheManager(), extractors=extractors, only=["research"], blob_root=tmp_path)
    assert [report.source_type for report in result.summary.sources] == [SourceType.RESEARCH]

    config = _config(enabled_types={SourceType.FORUM: False})
    result = run_pipeline(config, CacheManager(), extractors=extractors, blob_root=tmp_path)
    assert [report.source_type for report in result.summary.sources] == [SourceType.RESEARCH]


def test_second_run_is_served_from_cache(tmp_path: Path) -> None:
    cache = CacheManager()
    extractors = _extractors([], [_record(SourceType.RESEARCH, "LLM", PAPER_URL)])

    run_pipeline(_config(), cache, extractors=extractors, blob_root=tmp_path)
    result = run_pipeline(_config(), cache, extractors=extractors, blob_root=tmp_path)

    research = result.summary.sources[1]
    assert research.from_cache
    assert result.summary.cache["research"].hits == 1
    assert result.summary.sources[0].status is OutcomeStatus.EMPTY


def test_cross_run_history_drops_repeats(tmp_path: Path) -> None:
    cache = CacheManager()
    config = _config(cache={"history_days": 3})
    extractors = _extractors([], [_record(SourceType.RESEARCH, "LLM", PAPER_URL)])

    first = run_pipeline(config, cache, extractors=extractors, blob_root=tmp_path)
    second = run_pipeline(config, cache, extractors=extractors, blob_root=tmp_path)

    assert len(first.records) == 1
    assert second.records == []


def test_run_scope_releases_everything_on_exit() -> None:
    source = SourceConfig(source_type=SourceType.FORUM, identifier="a")
    outcome = ExtractionOutcome.success(source, [_record(SourceType.FORUM, "x", "https://x.example")])

    with RunScope() as scope:
        scope.add([outcome, ExtractionOutcome.empty(source)])
        assert len(scope.outcomes) == 2
        assert len(scope.records) == 1

    assert scope.outcomes == []
    assert scope.records == []


def test_load_handoff_ignores_corrupt_files(tmp_path: Path) -> None:
    handoff_file = tmp_path / "handoff" / HANDOFF_FILENAME
    handoff_file.parent.mkdir(parents=True)
    handoff_file.write_text("{not json", encoding="utf-8")

    assert load_handoff(tmp_path) is None

    handoff_file.write_text(json.dumps({"records": []}), encoding="utf-8")
    assert load_handoff(tmp_path) is None


def test_summary_timestamps_are_utc(tmp_path: Path) -> None:
    extractors = _extractors([], [_record(SourceType.RESEARCH, "LLM", PAPER_URL)])
    before = datetime.now(UTC)

    result = run_pipeline(_config(), CacheManager(), extractors=extractors, blob_root=tmp_path)

    assert before <= result.summary.started_at <= result.summary.finished_at
