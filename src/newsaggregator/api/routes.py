"""HTTP routes exposing the aggregation run, its sources and the cache."""

from __future__ import annotations

import logging
from typing import Dict, List

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from newsaggregator.cache import CacheManager
from newsaggregator.config import AppConfig, SourceType
from newsaggregator.errors import AllSourcesFailedError
from newsaggregator.models import CacheCounters
from newsaggregator.services.pipeline import RunResult, load_handoff, run_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()


class SourceEntry(BaseModel):
    name: str
    source_type: SourceType
    identifier: str
    max_items: int
    enabled: bool


class SourcesResponse(BaseModel):
    sources: List[SourceEntry] = Field(default_factory=list)


class RunRequest(BaseModel):
    source_types: List[SourceType] | None = None


class CacheStatsResponse(BaseModel):
    degraded: bool
    reason: str | None = None
    counters: Dict[str, CacheCounters] = Field(default_factory=dict)


def _load_config(request: Request) -> AppConfig:
    try:
        return AppConfig.from_file(request.app.state.config_path)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _cache_for(request: Request, config: AppConfig) -> CacheManager:
    """Return the application's cache manager, creating it on first use."""

    cache = request.app.state.cache
    if cache is None:
        cache = CacheManager.from_settings(config.cache)
        request.app.state.cache = cache
    return cache


@router.get("/sources", response_model=SourcesResponse)
async def list_sources(request: Request) -> SourcesResponse:
    """Return the configured sources and whether their type is enabled."""

    config = _load_config(request)
    entries = [
        SourceEntry(
            name=source.label,
            source_type=source.source_type,
            identifier=source.identifier,
            max_items=source.max_items,
            enabled=config.is_enabled(source.source_type),
        )
        for source in config.sources
    ]
    return SourcesResponse(sources=entries)


@router.post("/runs", response_model=RunResult)
async def trigger_run(request: Request, payload: RunRequest | None = Body(default=None)) -> RunResult:
    """Run the aggregation once for the enabled (or requested) source types."""

    request_payload = payload or RunRequest()
    if request_payload.source_types is not None and not request_payload.source_types:
        raise HTTPException(status_code=400, detail="Select at least one source type.")

    config = _load_config(request)
    cache = _cache_for(request, config)

    try:
        return await run_in_threadpool(
            run_pipeline,
            config,
            cache,
            only=request_payload.source_types,
            blob_root=request.app.state.blob_root,
        )
    except AllSourcesFailedError as exc:
        logger.error("Aggregation run failed: %s", exc)
        raise HTTPException(
            status_code=502,
            detail={"message": str(exc), "summary": exc.summary.model_dump(mode="json")},
        ) from exc


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(request: Request) -> CacheStatsResponse:
    """Return hit/miss counters of the latest run and the backend state."""

    cache = _cache_for(request, _load_config(request))
    return CacheStatsResponse(
        degraded=cache.degraded,
        reason=cache.degraded_reason,
        counters=cache.stats(),
    )


@router.get("/handoff/latest", response_model=RunResult)
async def latest_handoff(request: Request) -> RunResult:
    """Return the processed records written by the most recent run."""

    stored = load_handoff(request.app.state.blob_root)
    if stored is None:
        raise HTTPException(status_code=404, detail="No aggregation run has been handed off yet.")
    return stored
