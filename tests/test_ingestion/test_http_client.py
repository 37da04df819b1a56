"""Tests for the shared HTTP layer: retry policy, classification, client."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from notepress.ingestion.errors import (
    NotFoundError,
    RateLimitedError,
    SourceError,
    TransientError,
    UnauthorizedError,
)
from notepress.ingestion.http_client import HTTPClient, RetryPolicy, classify_response

URL = "https://api.example.com/data"


def _response(status: int, **kwargs) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", URL), **kwargs)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_calculate_backoff_exponential(self):
        policy = RetryPolicy(base_delay=1.0, jitter_factor=0.0, max_backoff_seconds=60.0)

        assert policy.calculate_backoff(0) == 1.0
        assert policy.calculate_backoff(1) == 2.0
        assert policy.calculate_backoff(2) == 4.0

    def test_calculate_backoff_respects_max(self):
        policy = RetryPolicy(base_delay=1.0, jitter_factor=0.0, max_backoff_seconds=5.0)

        assert policy.calculate_backoff(3) == 5.0
        assert policy.calculate_backoff(10) == 5.0

    def test_calculate_backoff_with_jitter(self):
        policy = RetryPolicy(base_delay=1.0, jitter_factor=0.1)

        backoffs = [policy.calculate_backoff(0) for _ in range(100)]

        assert all(1.0 <= b < 1.1 for b in backoffs)

    def test_short_rate_limit_waits_requested_time(self):
        policy = RetryPolicy(short_wait_cap_seconds=60.0)

        assert policy.retry_delay(RateLimitedError(15), attempt=0) == 15.0

    def test_long_rate_limit_is_not_retried(self):
        policy = RetryPolicy(short_wait_cap_seconds=60.0)
        error = RateLimitedError(900)

        assert policy.is_long_wait(error)
        assert policy.retry_delay(error, attempt=0) is None

    def test_transient_uses_backoff(self):
        policy = RetryPolicy(base_delay=2.0, jitter_factor=0.0)

        assert policy.retry_delay(TransientError("boom"), attempt=1) == 4.0

    def test_other_errors_never_retried(self):
        policy = RetryPolicy()

        assert policy.retry_delay(UnauthorizedError("no"), attempt=0) is None
        assert policy.retry_delay(NotFoundError("gone"), attempt=0) is None

    def test_stops_after_max_attempts(self):
        policy = RetryPolicy(max_attempts=3)

        assert policy.retry_delay(TransientError("x"), attempt=1) is not None
        assert policy.retry_delay(TransientError("x"), attempt=2) is None


class TestClassifyResponse:
    """Tests for mapping responses onto classified errors."""

    def test_success_is_not_an_error(self):
        assert classify_response(_response(200, json={})) is None

    def test_429_uses_retry_after_header(self):
        error = classify_response(_response(429, headers={"Retry-After": "30"}))

        assert isinstance(error, RateLimitedError)
        assert error.retry_after_seconds == 30.0

    def test_rate_limit_error_code_in_body(self):
        error = classify_response(
            _response(400, json={"errorCode": 19, "rateLimitDuration": 1200})
        )

        assert isinstance(error, RateLimitedError)
        assert error.retry_after_seconds == 1200.0
        assert "Please wait 20 minutes" in str(error)

    def test_rate_limit_without_duration_uses_default(self):
        error = classify_response(_response(429), default_rate_limit_wait=45.0)

        assert isinstance(error, RateLimitedError)
        assert error.retry_after_seconds == 45.0

    def test_401_and_403_are_unauthorized(self):
        assert isinstance(classify_response(_response(401)), UnauthorizedError)
        assert isinstance(classify_response(_response(403)), UnauthorizedError)

    def test_auth_expired_error_code(self):
        error = classify_response(_response(400, json={"errorCode": 9}))

        assert isinstance(error, UnauthorizedError)

    def test_404_is_not_found(self):
        assert isinstance(classify_response(_response(404)), NotFoundError)

    def test_server_errors_are_transient(self):
        for status in (500, 502, 503, 504):
            assert isinstance(classify_response(_response(status)), TransientError)

    def test_other_client_errors_are_plain_source_errors(self):
        error = classify_response(_response(400, json={"message": "bad filter"}))

        assert type(error) is SourceError
        assert str(error) == "bad filter"
        assert error.status_code == 400


class TestHTTPClient:
    """Tests for HTTPClient."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_post_json_success(self):
        route = respx.post(URL).mock(return_value=httpx.Response(200, json={"ok": True}))

        async with HTTPClient(headers={"Authorization": "Bearer t"}) as client:
            data = await client.post_json(URL, {"guid": "n1"})

        assert data == {"ok": True}
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer t"
        assert request.headers["content-type"] == "application/json"

    @pytest.mark.asyncio
    @respx.mock
    async def test_short_rate_limit_sleeps_and_retries(self):
        responses = iter([
            httpx.Response(429, headers={"Retry-After": "5"}),
            httpx.Response(200, json={"ok": True}),
        ])
        respx.post(URL).mock(side_effect=lambda request: next(responses))

        with patch(
            "notepress.ingestion.http_client.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            async with HTTPClient(RetryPolicy(short_wait_cap_seconds=60)) as client:
                data = await client.post_json(URL, {})

        assert data == {"ok": True}
        sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    @respx.mock
    async def test_long_rate_limit_fails_fast(self):
        route = respx.post(URL).mock(
            return_value=httpx.Response(400, json={"errorCode": 19, "rateLimitDuration": 3600})
        )

        with patch(
            "notepress.ingestion.http_client.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            async with HTTPClient(RetryPolicy(short_wait_cap_seconds=60)) as client:
                with pytest.raises(RateLimitedError) as exc_info:
                    await client.post_json(URL, {})

        assert exc_info.value.retry_after_seconds == 3600.0
        assert route.call_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    @respx.mock
    async def test_short_rate_limit_exhausted_raises(self):
        route = respx.post(URL).mock(
            return_value=httpx.Response(429, headers={"Retry-After": "1"})
        )

        with patch("notepress.ingestion.http_client.asyncio.sleep", new_callable=AsyncMock):
            async with HTTPClient(RetryPolicy(max_attempts=3)) as client:
                with pytest.raises(RateLimitedError):
                    await client.post_json(URL, {})

        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_transient_retried_then_succeeds(self):
        responses = iter([
            httpx.Response(503),
            httpx.Response(500),
            httpx.Response(200, json={"ok": True}),
        ])
        respx.post(URL).mock(side_effect=lambda request: next(responses))

        with patch(
            "notepress.ingestion.http_client.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            async with HTTPClient(RetryPolicy(max_attempts=4, jitter_factor=0.0)) as client:
                data = await client.post_json(URL, {})

        assert data == {"ok": True}
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_becomes_transient_error(self):
        respx.post(URL).mock(side_effect=httpx.ConnectTimeout("timed out"))

        with patch("notepress.ingestion.http_client.asyncio.sleep", new_callable=AsyncMock):
            async with HTTPClient(RetryPolicy(max_attempts=2)) as client:
                with pytest.raises(TransientError) as exc_info:
                    await client.post_json(URL, {})

        assert isinstance(exc_info.value.__cause__, httpx.ConnectTimeout)

    @pytest.mark.asyncio
    @respx.mock
    async def test_not_found_is_not_retried(self):
        route = respx.post(URL).mock(return_value=httpx.Response(404))

        async with HTTPClient() as client:
            with pytest.raises(NotFoundError):
                await client.post_json(URL, {})

        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_bytes_returns_content_type(self):
        respx.get("https://img.example.com/a.png").mock(
            return_value=httpx.Response(
                200, content=b"\x89PNG", headers={"content-type": "image/png; charset=binary"}
            )
        )

        async with HTTPClient() as client:
            data, content_type = await client.get_bytes("https://img.example.com/a.png")

        assert data == b"\x89PNG"
        assert content_type == "image/png"

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_json_is_transient(self):
        respx.post(URL).mock(return_value=httpx.Response(200, text="<html>"))

        async with HTTPClient() as client:
            with pytest.raises(TransientError):
                await client.post_json(URL, {})

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        client = HTTPClient()

        with pytest.raises(RuntimeError, match="async context manager"):
            await client.get(URL)
