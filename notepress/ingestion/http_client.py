"""
HTTP infrastructure shared by the external source clients.

Provides:
- RetryPolicy: one object per client deciding whether and how long to wait
- classify_response: maps a failed response onto the classified errors
- HTTPClient: async httpx wrapper that retries according to the policy

Domain clients (note store, Ghost) never look at status codes; they only
see parsed bodies or one of the errors from notepress.ingestion.errors.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

from notepress.ingestion.config import HTTPConfig
from notepress.ingestion.errors import (
    NotFoundError,
    RateLimitedError,
    SourceError,
    TransientError,
    UnauthorizedError,
)
from notepress.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

# Note-service error codes carried in JSON error bodies
ERROR_CODE_INVALID_AUTH = 8
ERROR_CODE_AUTH_EXPIRED = 9
ERROR_CODE_RATE_LIMIT_REACHED = 19


@dataclass
class RetryPolicy:
    """
    Retry rules for one client.

    Rate-limited calls whose wait fits under `short_wait_cap_seconds` sleep
    exactly the requested wait and try again; longer waits are raised at
    once so the caller can give up the whole pass. Transient errors back
    off exponentially with jitter:

        min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))

    Nothing else is retried.
    """

    max_attempts: int = 4
    short_wait_cap_seconds: float = 60.0
    base_delay: float = 1.0
    max_backoff_seconds: float = 30.0
    jitter_factor: float = 0.1

    @classmethod
    def from_config(cls, config: HTTPConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            short_wait_cap_seconds=config.short_wait_cap_seconds,
            base_delay=config.base_delay_seconds,
            max_backoff_seconds=config.max_backoff_seconds,
            jitter_factor=config.jitter_factor,
        )

    def calculate_backoff(self, attempt: int) -> float:
        """
        Backoff before retrying a transient failure.

        Args:
            attempt: The failed attempt number (0-indexed)
        """
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()

    def is_long_wait(self, error: RateLimitedError) -> bool:
        """True when the requested wait is beyond what a pass sleeps through."""
        return error.retry_after_seconds > self.short_wait_cap_seconds

    def retry_delay(self, error: SourceError, attempt: int) -> float | None:
        """
        Decide whether `error` on `attempt` (0-indexed) is retried.

        Returns:
            Seconds to sleep before the next attempt, or None to raise
        """
        if attempt + 1 >= self.max_attempts:
            return None
        if isinstance(error, RateLimitedError):
            if self.is_long_wait(error):
                return None
            return error.retry_after_seconds
        if isinstance(error, TransientError):
            return self.calculate_backoff(attempt)
        return None


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _retry_after(response: httpx.Response, body: dict[str, Any]) -> float | None:
    header = response.headers.get("Retry-After")
    if header:
        try:
            return max(0.0, float(header))
        except ValueError:
            logger.debug(f"Ignoring non-numeric Retry-After header {header!r}")
    duration = body.get("rateLimitDuration")
    if isinstance(duration, (int, float)):
        return max(0.0, float(duration))
    return None


def classify_response(
    response: httpx.Response,
    default_rate_limit_wait: float = 60.0,
) -> SourceError | None:
    """
    Map a response onto a classified error.

    Error codes in the body win over the status code, since the note
    service reports quota and auth problems inside otherwise generic
    error responses.

    Returns:
        The error to raise, or None for a successful response
    """
    status = response.status_code
    if status < 400:
        return None

    body = _error_body(response)
    error_code = body.get("errorCode")

    if status == 429 or error_code == ERROR_CODE_RATE_LIMIT_REACHED:
        wait = _retry_after(response, body)
        return RateLimitedError(
            default_rate_limit_wait if wait is None else wait,
            status_code=status,
        )

    if status in (401, 403) or error_code in (
        ERROR_CODE_INVALID_AUTH,
        ERROR_CODE_AUTH_EXPIRED,
    ):
        return UnauthorizedError(
            body.get("message") or f"Request rejected with status {status}",
            status_code=status,
        )

    if status == 404:
        return NotFoundError(
            body.get("message") or f"Not found: {response.request.url}",
            status_code=status,
        )

    if status >= 500 or status == 408:
        return TransientError(
            f"Server error {status} from {response.request.url.host}",
            status_code=status,
        )

    return SourceError(
        body.get("message") or f"Request failed with status {status}",
        status_code=status,
    )


class HTTPClient:
    """
    Async HTTP client that retries according to a RetryPolicy.

    Example:
        async with HTTPClient(policy, headers={"Authorization": "Bearer t"}) as client:
            data = await client.post_json("https://host/notestore/getNote", {"guid": g})
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        default_rate_limit_wait: float = 60.0,
        service_name: str = "external",
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.headers = dict(headers) if headers else {}
        self.default_rate_limit_wait = default_rate_limit_wait
        self.service_name = service_name
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=self.headers,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        return await self.request("GET", url, params=params, headers=headers)

    async def post(
        self,
        url: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        return await self.request(
            "POST", url, params=params, headers=headers, json_body=json_body
        )

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        response = await self.get(url, params=params)
        return self._decode(response)

    async def post_json(self, url: str, json_body: dict[str, Any] | None = None) -> Any:
        response = await self.post(url, json_body=json_body)
        return self._decode(response)

    async def get_bytes(self, url: str) -> tuple[bytes, str | None]:
        """
        Download a binary body.

        Returns:
            Tuple of (body bytes, Content-Type header without parameters)
        """
        response = await self.get(url)
        content_type = response.headers.get("content-type")
        if content_type:
            content_type = content_type.split(";", 1)[0].strip().lower()
        return response.content, content_type or None

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise TransientError(
                f"Malformed JSON from {response.request.url.host}: {e}",
                status_code=response.status_code,
            ) from e

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Execute a request, retrying per the policy.

        Raises:
            RateLimitedError, UnauthorizedError, NotFoundError,
            TransientError or SourceError once retrying stops
        """
        if not self._client:
            raise RuntimeError("HTTPClient must be used as async context manager")

        attempt = 0
        while True:
            error: SourceError
            try:
                response = await self._client.request(
                    method,
                    url,
                    params=params or None,
                    headers=headers or None,
                    json=json_body,
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                error = TransientError(f"{type(e).__name__} for {url}: {e}")
                error.__cause__ = e
            else:
                classified = classify_response(response, self.default_rate_limit_wait)
                if classified is None:
                    return response
                error = classified

            get_metrics().record_external_error(
                self.service_name,
                type(error).__name__,
                retry_after=getattr(error, "retry_after_seconds", None),
            )

            delay = self.retry_policy.retry_delay(error, attempt)
            if delay is None:
                raise error

            logger.warning(
                f"{type(error).__name__} from {url}, "
                f"attempt {attempt + 1}/{self.retry_policy.max_attempts}, "
                f"waiting {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            attempt += 1
