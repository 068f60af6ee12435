"""Configuration models and helpers for the news aggregator."""

from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "AppConfig",
    "CacheSettings",
    "DEFAULT_CONFIG_PATH",
    "RelevanceConfig",
    "SchedulerSettings",
    "SourceConfig",
    "SourceType",
    "TopicConfig",
]

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "data" / "sources.json"


class SourceType(str, Enum):
    """Closed set of content origins the aggregator knows how to extract."""

    FORUM = "forum"
    VIDEO = "video"
    SHORT_VIDEO = "short_video"
    RESEARCH = "research"
    NEWS_FEED = "news_feed"
    BLOG_FEED = "blog_feed"


class SourceConfig(BaseModel):
    """Configuration for a single source to extract."""

    model_config = ConfigDict(frozen=True)

    source_type: SourceType = Field(..., description="Kind of source, selects the extractor")
    identifier: str = Field(
        ...,
        description="Source specific identifier: subreddit, channel id or handle, feed or page URL",
    )
    max_items: int = Field(default=20, ge=1, description="Upper bound of records kept per run")
    extra_params: Dict[str, Any] = Field(
        default_factory=dict,
        description="Extractor specific options (sort order, age limits, alternate endpoints)",
    )
    name: str | None = Field(default=None, description="Human friendly label used in reports")

    @property
    def label(self) -> str:
        """Return the display name, falling back to the identifier."""

        return self.name or self.identifier


class TopicConfig(BaseModel):
    """A topic the relevance filter matches records against."""

    name: str = Field(..., description="Human friendly topic name")
    keywords: List[str] = Field(
        default_factory=list,
        description=(
            "Optional list of keywords that map a record to this topic. "
            "When omitted the topic name is used as the keyword."
        ),
    )

    def keyword_set(self) -> set[str]:
        """Return the set of keywords (including the topic name)."""

        values = {self.name}
        values.update(self.keywords)
        return {keyword for keyword in values if keyword}


class RelevanceConfig(BaseModel):
    """Topics used by the content processor's relevance pass."""

    topics: List[TopicConfig] = Field(default_factory=list)


class CacheSettings(BaseModel):
    """Settings for the two-tier cache."""

    url: str | None = Field(
        default=None,
        description="Primary backend address (redis://host:port/db). REDIS_URL overrides it.",
    )
    namespace: str = Field(default="ai_news_cache", description="Prefix shared by every cache key")
    socket_timeout: float = Field(default=0.5, gt=0, description="Backend socket timeout in seconds")
    fallback_max_entries: int = Field(
        default=500, ge=1, description="Entries kept per key prefix in the in-process store"
    )
    fallback_max_age_seconds: int = Field(
        default=3 * 24 * 3600,
        ge=1,
        description="Lifetime of in-process entries written without their own TTL",
    )
    history_days: int = Field(
        default=0,
        ge=0,
        description="Days of previous runs used for cross-run deduplication (0 disables it)",
    )

    def resolved_url(self) -> str | None:
        """Return the backend URL, preferring the ``REDIS_URL`` environment variable."""

        return os.environ.get("REDIS_URL") or self.url


class SchedulerSettings(BaseModel):
    """Concurrency bounds for an extraction run."""

    concurrency_limit: int = Field(default=8, ge=1)
    task_timeout_seconds: float = Field(default=60.0, gt=0)
    run_timeout_seconds: float | None = Field(default=300.0, gt=0)


class AppConfig(BaseModel):
    """Collection of :class:`SourceConfig` entries plus engine settings."""

    sources: List[SourceConfig] = Field(default_factory=list)
    enabled_types: Dict[SourceType, bool] = Field(
        default_factory=dict,
        description="Per source type switches; types missing from the mapping are enabled",
    )
    cache: CacheSettings = Field(default_factory=CacheSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    relevance: RelevanceConfig = Field(default_factory=RelevanceConfig)

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "AppConfig":
        """Load configuration data from a JSON file."""

        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Configuration file not found: {config_path}") from exc
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in configuration file: {config_path}") from exc

        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Configuration file is invalid: {config_path}\n{exc}") from exc

    def dump(self, path: Path | str | None = None) -> None:
        """Persist the configuration back to disk as JSON."""

        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    def is_enabled(self, source_type: SourceType) -> bool:
        return self.enabled_types.get(source_type, True)

    def enabled_sources(self, only: Iterable[SourceType | str] | None = None) -> List[SourceConfig]:
        """Return the sources whose type is switched on, optionally restricted to ``only``."""

        wanted = {SourceType(value) for value in only} if only else None
        return [
            source
            for source in self.sources
            if self.is_enabled(source.source_type)
            and (wanted is None or source.source_type in wanted)
        ]
