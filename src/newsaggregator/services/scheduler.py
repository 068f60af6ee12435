"""Bounded parallel extraction with cache-aside lookups and per-task isolation."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from newsaggregator.cache import CacheManager, ContentClass, cache_key
from newsaggregator.config import SchedulerSettings, SourceConfig, SourceType
from newsaggregator.extractors import BaseExtractor, CancelToken, get_extractor
from newsaggregator.models import ContentRecord, ErrorKind, ExtractionOutcome, OutcomeStatus

__all__ = ["ExtractionTask", "Scheduler"]

logger = logging.getLogger(__name__)


@dataclass
class ExtractionTask:
    """State of one source within one run."""

    index: int
    source: SourceConfig
    key: str
    token: Optional[CancelToken] = None
    outcome: Optional[ExtractionOutcome] = None
    abandoned: threading.Event = field(default_factory=threading.Event, repr=False)
    _slot: Optional[threading.Semaphore] = field(default=None, repr=False)
    _slot_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def overdue(self, now: float) -> bool:
        token = self.token
        return token is not None and token.deadline is not None and now >= token.deadline

    def acquire_slot(self, slots: threading.Semaphore, poll: float) -> bool:
        """Block until a concurrency slot is free; ``False`` once the task is abandoned."""

        while not self.abandoned.is_set():
            if not slots.acquire(timeout=poll):
                continue
            with self._slot_lock:
                if self.abandoned.is_set():
                    slots.release()
                    return False
                self._slot = slots
            return True
        return False

    def release_slot(self) -> None:
        with self._slot_lock:
            slots, self._slot = self._slot, None
        if slots is not None:
            slots.release()


class Scheduler:
    """Run one extraction task per source, at most ``concurrency_limit`` at a time.

    Every task checks the cache first, calls its extractor on a miss and
    stores non-empty results with the content TTL. Each task gets its own
    worker thread, and a semaphore bounds how many of them do work at once.
    The calling thread acts as the single collector: it joins finished
    tasks, converts tasks that overrun their timeout into ``Timeout``
    failures and hands their slot to the next queued task. When the run
    deadline passes it fails every task still pending and returns at once.
    """

    def __init__(
        self,
        cache: CacheManager,
        extractors: Mapping[SourceType, BaseExtractor] | None = None,
        *,
        concurrency_limit: int = 8,
        task_timeout: float = 60.0,
        run_timeout: float | None = None,
        content_ttl: int = ContentClass.CONTENT.ttl,
        poll_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache = cache
        self._extractors = extractors
        self._concurrency_limit = concurrency_limit
        self._task_timeout = task_timeout
        self._run_timeout = run_timeout
        self._content_ttl = content_ttl
        self._poll_interval = poll_interval
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        cache: CacheManager,
        settings: SchedulerSettings,
        extractors: Mapping[SourceType, BaseExtractor] | None = None,
    ) -> "Scheduler":
        return cls(
            cache,
            extractors,
            concurrency_limit=settings.concurrency_limit,
            task_timeout=settings.task_timeout_seconds,
            run_timeout=settings.run_timeout_seconds,
        )

    def _extractor_for(self, source_type: SourceType) -> BaseExtractor:
        if self._extractors is None:
            return get_extractor(source_type)
        return self._extractors[source_type]

    def run(
        self, sources: Sequence[SourceConfig], concurrency_limit: int | None = None
    ) -> List[ExtractionOutcome]:
        """Return exactly one outcome per source, in input order."""

        tasks = [
            ExtractionTask(index=index, source=source, key=cache_key(source, namespace=self._cache.namespace))
            for index, source in enumerate(sources)
        ]
        if not tasks:
            return []

        limit = max(1, concurrency_limit or self._concurrency_limit)
        run_deadline = self._clock() + self._run_timeout if self._run_timeout else None
        logger.info("Starting %d extraction tasks, %d at a time", len(tasks), min(limit, len(tasks)))

        slots = threading.BoundedSemaphore(limit)
        pool = ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="extract")
        pending: Dict[Future, ExtractionTask] = {}
        try:
            for task in tasks:
                pending[pool.submit(self._run_task, task, slots)] = task

            while pending:
                done, _ = wait(pending, timeout=self._wait_timeout(run_deadline), return_when=FIRST_COMPLETED)
                for future in done:
                    task = pending.pop(future)
                    task.outcome = self._collect(future, task)

                now = self._clock()
                for future, task in list(pending.items()):
                    if future.done():
                        pending.pop(future)
                        task.outcome = self._collect(future, task)
                    elif task.overdue(now):
                        pending.pop(future)
                        self._abandon(
                            future, task, f"no result within the {self._task_timeout:g}s task timeout"
                        )

                if run_deadline is not None and now >= run_deadline and pending:
                    logger.warning("Run deadline reached, cancelling %d pending tasks", len(pending))
                    for future, task in pending.items():
                        self._abandon(future, task, f"run deadline of {self._run_timeout:g}s reached")
                    pending.clear()
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        return [task.outcome for task in tasks]  # type: ignore[misc]

    def _wait_timeout(self, run_deadline: float | None) -> float:
        if run_deadline is None:
            return self._poll_interval
        return max(0.0, min(self._poll_interval, run_deadline - self._clock()))

    def _abandon(self, future: Future, task: ExtractionTask, reason: str) -> None:
        task.abandoned.set()
        future.cancel()
        if task.token is not None:
            task.token.cancel()
        task.release_slot()
        task.outcome = ExtractionOutcome.failed(task.source, ErrorKind.TIMEOUT, reason)
        logger.warning("Source %s timed out: %s", task.source.label, reason)

    def _collect(self, future: Future, task: ExtractionTask) -> ExtractionOutcome:
        try:
            outcome = future.result()
        except Exception as exc:  # noqa: BLE001
            outcome = ExtractionOutcome.failed(task.source, ErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}")

        if outcome.status is OutcomeStatus.FAILED:
            logger.info(
                "Source %s failed: %s",
                task.source.label,
                outcome.error_kind.value if outcome.error_kind else ErrorKind.UNKNOWN.value,
            )
        else:
            logger.info(
                "Source %s done: %d records%s",
                task.source.label,
                len(outcome.records),
                " (cached)" if outcome.from_cache else "",
            )
        return outcome

    def _decode_cached(self, task: ExtractionTask, payload: Any) -> List[ContentRecord] | None:
        try:
            return [ContentRecord.model_validate(item) for item in payload]
        except (ValidationError, TypeError) as exc:
            logger.warning("Ignoring malformed cache entry for %s: %s", task.source.label, exc)
            self._cache.invalidate(task.key)
            return None

    def _run_task(self, task: ExtractionTask, slots: threading.Semaphore) -> ExtractionOutcome:
        source = task.source
        if not task.acquire_slot(slots, self._poll_interval):
            return ExtractionOutcome.failed(source, ErrorKind.TIMEOUT, "abandoned before it started")
        task.token = CancelToken(self._task_timeout, clock=self._clock)
        if task.abandoned.is_set():
            task.token.cancel()
        logger.info("Extracting %s (%s)", source.label, source.source_type.value)
        try:
            payload, hit = self._cache.get(task.key)
            if hit:
                records = self._decode_cached(task, payload)
                if records is not None:
                    return ExtractionOutcome.success(source, records, from_cache=True)

            extractor = self._extractor_for(source.source_type)
            outcome = extractor.fetch(source, task.token)
            if outcome.status is OutcomeStatus.SUCCESS:
                self._cache.put(
                    task.key,
                    [record.model_dump(mode="json") for record in outcome.records],
                    self._content_ttl,
                )
            return outcome
        except Exception as exc:  # noqa: BLE001 - a task must end with an outcome
            logger.exception("Extraction task for %s crashed", source.label)
            return ExtractionOutcome.failed(source, ErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}")
        finally:
            task.release_slot()
