"""One aggregation run: schedule extraction, process, hand off downstream."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable, List, Mapping

from pydantic import BaseModel, Field, ValidationError

from newsaggregator.blobstore import ensure_blob_root
from newsaggregator.cache import CacheManager, ContentClass, build_key
from newsaggregator.config import AppConfig, SourceType
from newsaggregator.errors import AllSourcesFailedError
from newsaggregator.extractors import BaseExtractor
from newsaggregator.models import ContentRecord, ExtractionOutcome, OutcomeStatus, RunSummary
from newsaggregator.services.processor import ContentProcessor, RelevanceFilter, RunHistory
from newsaggregator.services.scheduler import Scheduler

__all__ = [
    "HANDOFF_FILENAME",
    "RunResult",
    "RunScope",
    "digest_key",
    "load_handoff",
    "run_pipeline",
    "write_handoff",
]

logger = logging.getLogger(__name__)

HANDOFF_SUBDIR = "handoff"
HANDOFF_FILENAME = "latest.json"


class RunResult(BaseModel):
    """Processed records of a run together with its summary."""

    summary: RunSummary
    records: List[ContentRecord] = Field(default_factory=list)


class RunScope:
    """Owns the outcomes and merged records of a single run.

    Everything is released together when the scope exits, after the
    processor has produced its own output list.
    """

    def __init__(self) -> None:
        self.outcomes: List[ExtractionOutcome] = []
        self.records: List[ContentRecord] = []

    def __enter__(self) -> "RunScope":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.outcomes.clear()
        self.records.clear()

    def add(self, outcomes: Iterable[ExtractionOutcome]) -> None:
        for outcome in outcomes:
            self.outcomes.append(outcome)
            self.records.extend(outcome.records)


def digest_key(run_date: str, namespace: str) -> str:
    return build_key("digest", run_date, content_class=ContentClass.DERIVED, namespace=namespace)


def _handoff_path(blob_root: str | Path | None = None) -> Path:
    """Return the path to the file containing the most recent handoff."""

    root = ensure_blob_root(blob_root)
    return root / HANDOFF_SUBDIR / HANDOFF_FILENAME


def write_handoff(result: RunResult, *, blob_root: str | Path | None = None) -> Path | None:
    """Persist the processed record set for the downstream stage."""

    payload = result.model_dump(mode="json")
    payload["stored_at"] = datetime.now(UTC).isoformat()

    output_path = _handoff_path(blob_root)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failures are environmental
        logger.warning("Failed to store handoff at %s: %s", output_path, exc)
        return None
    return output_path


def load_handoff(blob_root: str | Path | None = None) -> RunResult | None:
    """Load the most recently written handoff if it exists."""

    path = _handoff_path(blob_root)
    if not path.exists():
        return None

    try:
        raw_data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Failed to load handoff from %s: %s", path, exc)
        return None

    raw_data.pop("stored_at", None)

    try:
        return RunResult.model_validate(raw_data)
    except ValidationError as exc:
        logger.warning("Stored handoff is invalid: %s", exc)
        return None


def log_summary(summary: RunSummary) -> None:
    for report in summary.sources:
        if report.status is OutcomeStatus.FAILED:
            logger.warning(
                "  %-30s %-8s %s: %s",
                report.name,
                report.status.value,
                report.error_kind.value if report.error_kind else "Unknown",
                report.message or "",
            )
        else:
            logger.info(
                "  %-30s %-8s %3d records%s",
                report.name,
                report.status.value,
                report.records,
                " (cached)" if report.from_cache else "",
            )
    for prefix, counters in sorted(summary.cache.items()):
        logger.info("  cache %-12s hits=%d misses=%d", prefix, counters.hits, counters.misses)
    if summary.cache_degraded:
        logger.warning("  cache backend unavailable, in-process store was used")
    logger.info(
        "Run finished: %d sources, %d failed, %d records extracted, %d kept",
        len(summary.sources),
        len(summary.failed),
        summary.extracted,
        summary.kept,
    )


def run_pipeline(
    config: AppConfig,
    cache: CacheManager | None = None,
    *,
    extractors: Mapping[SourceType, BaseExtractor] | None = None,
    only: Iterable[SourceType | str] | None = None,
    blob_root: str | Path | None = None,
) -> RunResult:
    """Run every enabled source once and return the processed records.

    Raises :class:`AllSourcesFailedError` when every scheduled source failed;
    any other combination of failures is reported in the summary only.
    """

    if cache is None:
        cache = CacheManager.from_settings(config.cache)
    cache.begin_run()

    sources = config.enabled_sources(only)
    started_at = datetime.now(UTC)
    logger.info("Aggregating %d sources", len(sources))

    scheduler = Scheduler.from_settings(cache, config.scheduler, extractors)
    history = RunHistory(cache, days=config.cache.history_days) if config.cache.history_days else None
    processor = ContentProcessor(RelevanceFilter(config.relevance.topics), history=history)

    with RunScope() as scope:
        scope.add(scheduler.run(sources))
        processed = processor.process(scope.records, run_date=started_at.date())
        summary = RunSummary.from_outcomes(
            scope.outcomes,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            cache=cache.stats(),
            cache_degraded=cache.degraded,
            kept=len(processed),
        )

    log_summary(summary)
    if summary.all_failed:
        raise AllSourcesFailedError(summary)

    result = RunResult(summary=summary, records=processed)
    cache.put(
        digest_key(started_at.date().isoformat(), cache.namespace),
        [record.model_dump(mode="json") for record in processed],
        ContentClass.DERIVED.ttl,
    )
    write_handoff(result, blob_root=blob_root)
    return result
