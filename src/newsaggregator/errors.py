"""Exception types raised inside the aggregation engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

from newsaggregator.models import ErrorKind

if TYPE_CHECKING:  # pragma: no cover
    from newsaggregator.models import RunSummary

__all__ = [
    "AllSourcesFailedError",
    "AuthFailedError",
    "BackendUnavailableError",
    "ExtractionCancelled",
    "ExtractionError",
    "ParseError",
]


class ExtractionError(Exception):
    """Base class for failures an extractor reports with a known kind."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class ParseError(ExtractionError):
    kind = ErrorKind.PARSE_ERROR


class AuthFailedError(ExtractionError):
    kind = ErrorKind.AUTH_FAILED


class ExtractionCancelled(ExtractionError):
    """Raised at a network-call boundary once the task's deadline passed."""

    kind = ErrorKind.TIMEOUT


class BackendUnavailableError(Exception):
    """The primary cache backend could not serve a request."""


class AllSourcesFailedError(RuntimeError):
    """Every configured source failed during a run."""

    def __init__(self, summary: "RunSummary") -> None:
        failures = ", ".join(
            f"{report.name} ({report.error_kind.value if report.error_kind else 'Unknown'})"
            for report in summary.sources
        )
        super().__init__(f"All {len(summary.sources)} sources failed: {failures}")
        self.summary = summary
