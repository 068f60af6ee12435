"""HTTP session and error classification shared by the extractors."""

from __future__ import annotations

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from newsaggregator.errors import ExtractionError
from newsaggregator.models import ErrorKind

__all__ = ["DEFAULT_HEADERS", "build_session", "classify_exception"]

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/129.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "application/json;q=0.9,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
}

# 429 is deliberately absent: rate limiting is reported, not retried.
_TRANSIENT_STATUSES = [500, 502, 503, 504]


def build_session(*, retries: int = 2, backoff_factor: float = 0.5) -> requests.Session:
    """Return a session that retries transient network errors only."""

    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=backoff_factor,
        status_forcelist=_TRANSIENT_STATUSES,
        allowed_methods={"GET", "POST"},
        raise_on_status=False,
    )
    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    session.mount("https://", HTTPAdapter(max_retries=retry))
    session.mount("http://", HTTPAdapter(max_retries=retry))
    return session


def _status_kind(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return ErrorKind.AUTH_FAILED
    if status_code in (404, 410):
        return ErrorKind.NOT_FOUND
    if status_code in (408, 504):
        return ErrorKind.TIMEOUT
    return ErrorKind.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an exception raised while extracting to an :class:`ErrorKind`."""

    if isinstance(exc, ExtractionError):
        return exc.kind
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        if response is not None:
            return _status_kind(response.status_code)
        return ErrorKind.UNKNOWN
    if isinstance(exc, (requests.Timeout, TimeoutError)):
        return ErrorKind.TIMEOUT
    # requests.JSONDecodeError and json.JSONDecodeError are ValueErrors.
    if isinstance(exc, (ValueError, KeyError, TypeError, AttributeError)):
        return ErrorKind.PARSE_ERROR
    return ErrorKind.UNKNOWN
