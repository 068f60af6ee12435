"""Domain models used across the application."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from newsaggregator.config import SourceConfig, SourceType


class ContentRecord(BaseModel):
    """Normalized unit of content produced by an extractor."""

    model_config = ConfigDict(frozen=True)

    source_type: SourceType
    source_id: str
    title: str
    body: str = ""
    url: str = ""
    published_at: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)


class ErrorKind(str, Enum):
    """Failure categories reported for a source."""

    RATE_LIMITED = "RateLimited"
    AUTH_FAILED = "AuthFailed"
    NOT_FOUND = "NotFound"
    TIMEOUT = "Timeout"
    PARSE_ERROR = "ParseError"
    BACKEND_UNAVAILABLE = "BackendUnavailable"
    UNKNOWN = "Unknown"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    FAILED = "failed"


class ExtractionOutcome(BaseModel):
    """Result of extracting one source. Always returned, never raised."""

    source: SourceConfig
    status: OutcomeStatus
    records: List[ContentRecord] = Field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    from_cache: bool = False

    @classmethod
    def success(
        cls, source: SourceConfig, records: List[ContentRecord], *, from_cache: bool = False
    ) -> "ExtractionOutcome":
        if not records:
            return cls.empty(source, from_cache=from_cache)
        return cls(
            source=source,
            status=OutcomeStatus.SUCCESS,
            records=list(records),
            from_cache=from_cache,
        )

    @classmethod
    def empty(cls, source: SourceConfig, *, from_cache: bool = False) -> "ExtractionOutcome":
        return cls(source=source, status=OutcomeStatus.EMPTY, from_cache=from_cache)

    @classmethod
    def failed(cls, source: SourceConfig, kind: ErrorKind, message: str) -> "ExtractionOutcome":
        return cls(source=source, status=OutcomeStatus.FAILED, error_kind=kind, message=message)

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED


class SourceReport(BaseModel):
    """Per source line of the run summary."""

    name: str
    source_type: SourceType
    status: OutcomeStatus
    records: int = 0
    from_cache: bool = False
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None


class CacheCounters(BaseModel):
    hits: int = 0
    misses: int = 0


class RunSummary(BaseModel):
    """Observability output of a single aggregation run."""

    started_at: datetime
    finished_at: datetime
    sources: List[SourceReport] = Field(default_factory=list)
    cache: Dict[str, CacheCounters] = Field(default_factory=dict)
    cache_degraded: bool = False
    extracted: int = 0
    kept: int = 0

    @property
    def failed(self) -> List[SourceReport]:
        return [report for report in self.sources if report.status is OutcomeStatus.FAILED]

    @property
    def all_failed(self) -> bool:
        return bool(self.sources) and len(self.failed) == len(self.sources)

    @classmethod
    def from_outcomes(
        cls,
        outcomes: List[ExtractionOutcome],
        *,
        started_at: datetime,
        finished_at: datetime,
        cache: Dict[str, CacheCounters] | None = None,
        cache_degraded: bool = False,
        kept: int = 0,
    ) -> "RunSummary":
        reports = [
            SourceReport(
                name=outcome.source.label,
                source_type=outcome.source.source_type,
                status=outcome.status,
                records=len(outcome.records),
                from_cache=outcome.from_cache,
                error_kind=outcome.error_kind,
                message=outcome.message,
            )
            for outcome in outcomes
        ]
        return cls(
            started_at=started_at,
            finished_at=finished_at,
            sources=reports,
            cache=dict(cache or {}),
            cache_degraded=cache_degraded,
            extracted=sum(report.records for report in reports),
            kept=kept,
        )
