"""Extractor contract shared by every source type."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, ClassVar, List

import requests

from newsaggregator.config import SourceConfig, SourceType
from newsaggregator.errors import ExtractionCancelled
from newsaggregator.extractors.http import build_session, classify_exception
from newsaggregator.models import ContentRecord, ExtractionOutcome

__all__ = ["BaseExtractor", "CancelToken"]

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation for one extraction task.

    The token is cancelled either explicitly (by the scheduler) or implicitly
    once its deadline passes. Extractors check it around every network call.
    """

    def __init__(
        self, timeout: float | None = None, *, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None

    @property
    def deadline(self) -> float | None:
        return self._deadline

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def timeout(self, default: float) -> float:
        """Return the request timeout bounded by the time left before the deadline."""

        remaining = self.remaining()
        if remaining is None:
            return default
        return max(0.001, min(default, remaining))

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ExtractionCancelled("extraction cancelled at deadline")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return ``True`` if cancelled meanwhile."""

        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        return self._event.wait(seconds) or self.cancelled


class BaseExtractor(ABC):
    """Fetch one configured source and normalise it into :class:`ContentRecord` objects.

    Subclasses implement :meth:`extract` and may raise freely; :meth:`fetch`
    turns every failure into a ``failed`` outcome so nothing crosses the task
    boundary as an exception.
    """

    source_type: ClassVar[SourceType]

    def __init__(self, session: requests.Session | None = None, *, request_timeout: float = 30.0) -> None:
        self._session = session or build_session()
        self._request_timeout = request_timeout

    def fetch(self, config: SourceConfig, cancel: CancelToken | None = None) -> ExtractionOutcome:
        token = cancel or CancelToken()
        try:
            token.raise_if_cancelled()
            records = self.extract(config, token)
        except Exception as exc:  # noqa: BLE001 - every failure is reported as data
            kind = classify_exception(exc)
            logger.warning(
                "Extraction failed for %s (%s): %s: %s",
                config.label,
                config.source_type.value,
                kind.value,
                exc,
            )
            return ExtractionOutcome.failed(config, kind, f"{type(exc).__name__}: {exc}")

        return ExtractionOutcome.success(config, records[: config.max_items])

    @abstractmethod
    def extract(self, config: SourceConfig, token: CancelToken) -> List[ContentRecord]:
        """Return the records of ``config`` (may raise)."""

    def _get(self, url: str, token: CancelToken, **kwargs: Any) -> requests.Response:
        token.raise_if_cancelled()
        response = self._session.get(url, timeout=token.timeout(self._request_timeout), **kwargs)
        token.raise_if_cancelled()
        response.raise_for_status()
        return response

    def _post(self, url: str, token: CancelToken, **kwargs: Any) -> requests.Response:
        token.raise_if_cancelled()
        response = self._session.post(url, timeout=token.timeout(self._request_timeout), **kwargs)
        token.raise_if_cancelled()
        response.raise_for_status()
        return response

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)
