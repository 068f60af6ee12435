"""Service layer entry points for the news aggregator."""

from __future__ import annotations

from .pipeline import RunResult, RunScope, load_handoff, run_pipeline, write_handoff  # noqa: F401
from .processor import ContentProcessor, RelevanceFilter, RunHistory, dedup_key  # noqa: F401
from .scheduler import Scheduler  # noqa: F401

__all__ = [
    "ContentProcessor",
    "RelevanceFilter",
    "RunHistory",
    "RunResult",
    "RunScope",
    "Scheduler",
    "dedup_key",
    "load_handoff",
    "run_pipeline",
    "write_handoff",
]
