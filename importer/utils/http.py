"""
HTTP utilities for the import pipeline.

External providers (currently only the geocoder) are called through
``fetch_with_retry``. Timeouts, dropped connections and gateway errors
are retried with exponential backoff; a 429 is raised immediately as
``RateLimitError`` so the caller can back off for ``retry_after`` seconds
instead of hammering a provider that asked it to slow down.
"""

from typing import Optional

import httpx
from loguru import logger
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from importer.config import settings

DEFAULT_HEADERS = {
    "User-Agent": settings.geocoding.user_agent,
    "Accept": "application/json",
}

# Upstream hiccups worth another attempt
RETRYABLE_STATUS_CODES = {502, 503, 504}


class HTTPError(Exception):
    """Non-success response from a provider."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[httpx.Response] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class RateLimitError(HTTPError):
    """Provider answered 429."""

    def __init__(self, message: str, retry_after: float, response: Optional[httpx.Response] = None):
        super().__init__(message, status_code=429, response=response)
        self.retry_after = retry_after


def parse_retry_after(value: Optional[str], default: float = 60.0) -> float:
    """Seconds from a ``Retry-After`` header; HTTP-date values fall back to ``default``."""
    if not value:
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        return default


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError)):
        return True
    return isinstance(exc, HTTPError) and exc.status_code in RETRYABLE_STATUS_CODES


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"HTTP attempt {retry_state.attempt_number} failed ({exc}), retrying")


@retry(
    stop=stop_after_attempt(settings.pipeline.http_max_retries),
    wait=wait_exponential(multiplier=settings.pipeline.http_retry_delay, min=1, max=60),
    retry=retry_if_exception(_is_transient),
    before_sleep=_log_retry,
    reraise=True,
)
def fetch_with_retry(
    url: str,
    method: str = "GET",
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
    timeout: Optional[float] = None,
) -> httpx.Response:
    """
    Send a request, retrying transient failures.

    Args:
        url: URL to fetch
        method: HTTP method
        headers: Headers merged over ``DEFAULT_HEADERS``
        params: Query parameters
        timeout: Request timeout in seconds (defaults to ``HTTP_TIMEOUT``)

    Returns:
        The successful httpx.Response

    Raises:
        RateLimitError: On 429, without retrying
        HTTPError: On any other 4xx/5xx once retries are used up
        httpx.TransportError: On timeouts or connection errors after retries
    """
    request_headers = {**DEFAULT_HEADERS, **(headers or {})}
    timeout = timeout or settings.pipeline.http_timeout

    logger.debug(f"{method} {url} params={params}")

    with httpx.Client(timeout=timeout, follow_redirects=True) as client:
        response = client.request(method=method, url=url, headers=request_headers, params=params)

    if response.status_code == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        raise RateLimitError(f"Rate limited by {url}, retry after {retry_after:g}s", retry_after, response=response)

    if response.status_code >= 400:
        raise HTTPError(
            f"HTTP {response.status_code} for {url}: {response.text[:200]}",
            status_code=response.status_code,
            response=response,
        )

    return response
