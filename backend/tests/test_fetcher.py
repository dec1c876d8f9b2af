"""
Tests for timeouts, retries and HTTP error mapping of outbound calls.
"""

import asyncio
import time

import httpx
import openai
import pytest

from services.errors import (
    NotFoundError,
    RateLimitError,
    RegulatoryAPIError,
    ServerError,
    UpstreamTimeoutError,
    ValidationError,
    is_retryable,
)
from services.fetcher import ResilientFetcher, backoff_delay, with_retry, with_timeout
from services.models import RetryConfig


class Flaky:
    """Operation that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, error_factory=lambda n: ServerError(f"attempt {n} failed")):
        self.failures = failures
        self.error_factory = error_factory
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory(self.calls)
        return "ok"


class TestBackoff:
    """Test exponential backoff delays."""

    def test_doubles_per_attempt(self):
        config = RetryConfig(base_delay=1.0, max_delay=10.0)
        assert [backoff_delay(n, config) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_capped_at_max_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=10.0)
        assert backoff_delay(5, config) == 10.0


class TestWithRetry:
    """Test with_retry attempt accounting."""

    async def test_succeeds_after_two_failures(self):
        operation = Flaky(failures=2)
        config = RetryConfig(max_attempts=3, base_delay=0.01, max_delay=0.05)

        started = time.monotonic()
        result = await with_retry(operation, config)

        assert result == "ok"
        assert operation.calls == 3
        assert time.monotonic() - started >= 0.01

    async def test_raises_last_attempt_error(self):
        operation = Flaky(failures=5)
        config = RetryConfig(max_attempts=2, base_delay=0.001, max_delay=0.001)

        with pytest.raises(ServerError) as exc_info:
            await with_retry(operation, config)

        assert operation.calls == 2
        assert exc_info.value.message == "attempt 2 failed"

    async def test_not_found_is_not_retried(self, fast_retry):
        operation = Flaky(failures=5, error_factory=lambda n: NotFoundError("missing"))

        with pytest.raises(NotFoundError):
            await with_retry(operation, fast_retry)
        assert operation.calls == 1

    async def test_validation_is_not_retried(self, fast_retry):
        operation = Flaky(failures=5, error_factory=lambda n: ValidationError("bad"))

        with pytest.raises(ValidationError):
            await with_retry(operation, fast_retry)
        assert operation.calls == 1

    async def test_single_attempt_config(self):
        operation = Flaky(failures=1)
        with pytest.raises(ServerError):
            await with_retry(operation, RetryConfig(max_attempts=1))
        assert operation.calls == 1

    async def test_provider_auth_failure_is_not_retried(self, fast_retry):
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        operation = Flaky(failures=5, error_factory=lambda n: openai.AuthenticationError(
            message="Incorrect API key provided",
            response=httpx.Response(401, request=request),
            body=None,
        ))

        with pytest.raises(openai.AuthenticationError):
            await with_retry(operation, fast_retry)
        assert operation.calls == 1

    async def test_programming_errors_are_not_retried(self, fast_retry):
        operation = Flaky(failures=5, error_factory=lambda n: KeyError("embedding"))

        with pytest.raises(KeyError):
            await with_retry(operation, fast_retry)
        assert operation.calls == 1

    async def test_provider_connection_failure_is_retried(self, fast_retry):
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        operation = Flaky(failures=2, error_factory=lambda n: openai.APIConnectionError(request=request))

        assert await with_retry(operation, fast_retry) == "ok"
        assert operation.calls == 3

    def test_retry_classification(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        assert is_retryable(ServerError("boom"))
        assert is_retryable(TimeoutError())
        assert is_retryable(openai.APITimeoutError(request=request))
        assert is_retryable(openai.InternalServerError(
            message="overloaded", response=httpx.Response(503, request=request), body=None
        ))
        assert not is_retryable(openai.BadRequestError(
            message="bad input", response=httpx.Response(400, request=request), body=None
        ))
        assert not is_retryable(TypeError("unsupported operand"))


class TestWithTimeout:
    """Test per-attempt deadlines."""

    async def test_times_out(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await with_timeout(slow, timeout=0.01, source="eCFR")

        assert isinstance(exc_info.value, TimeoutError)
        assert exc_info.value.source == "eCFR"
        assert is_retryable(exc_info.value)

    async def test_fast_operation_returns(self):
        async def fast():
            return 42

        assert await with_timeout(fast, timeout=1.0) == 42

    async def test_timeouts_are_retried(self):
        calls = []

        async def slow_then_fast():
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(1)
            return "ok"

        config = RetryConfig(max_attempts=2, base_delay=0.001, max_delay=0.001)
        result = await with_retry(lambda: with_timeout(slow_then_fast, timeout=0.02), config)
        assert result == "ok"
        assert len(calls) == 2

    async def test_timeout_keeps_cause(self):
        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await with_timeout(slow, timeout=0.01)

        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)

    async def test_inner_timeout_error_passes_through(self):
        async def transport_timeout():
            raise UpstreamTimeoutError("FDA request timed out", source="FDA")

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await with_timeout(transport_timeout, timeout=10.0, source="FDA")

        assert exc_info.value.message == "FDA request timed out"


def fetcher_for(handler, fast_retry) -> ResilientFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResilientFetcher(client=client, timeout=1.0, retry=fast_retry)


class TestResilientFetcher:
    """Test HTTP status mapping through the mock transport."""

    async def test_returns_json(self, fast_retry):
        fetcher = fetcher_for(lambda request: httpx.Response(200, json={"results": []}), fast_retry)
        assert await fetcher.get_json("https://example.test/x", source="FDA") == {"results": []}

    async def test_sends_user_agent(self, fast_retry):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        await fetcher_for(handler, fast_retry).get_json("https://example.test/x")
        assert seen[0].headers["User-Agent"].startswith("QualiPilot")

    async def test_404_maps_to_not_found_without_retry(self, fast_retry):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        with pytest.raises(NotFoundError) as exc_info:
            await fetcher_for(handler, fast_retry).get_json(
                "https://example.test/x", source="eCFR", not_found_message="CFR section 21 CFR 820.30 not found"
            )

        assert len(calls) == 1
        assert exc_info.value.message == "CFR section 21 CFR 820.30 not found"

    async def test_429_retried_then_raised(self, fast_retry):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        with pytest.raises(RateLimitError):
            await fetcher_for(handler, fast_retry).get_json("https://example.test/x", source="FDA")
        assert len(calls) == fast_retry.max_attempts

    async def test_server_error_then_success(self, fast_retry):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"ok": True})])

        result = await fetcher_for(lambda request: next(responses), fast_retry).get_json(
            "https://example.test/x"
        )
        assert result == {"ok": True}

    async def test_other_4xx_is_generic_api_error(self, fast_retry):
        def handler(request):
            return httpx.Response(400, text="bad query")

        with pytest.raises(RegulatoryAPIError) as exc_info:
            await fetcher_for(handler, fast_retry).get_json("https://example.test/x", source="FDA")
        assert exc_info.value.code == "API_ERROR"
        assert "bad query" in exc_info.value.message

    async def test_invalid_json_is_server_error(self, fast_retry):
        def handler(request):
            return httpx.Response(200, text="<html>not json</html>")

        with pytest.raises(ServerError) as exc_info:
            await fetcher_for(handler, fast_retry).get_json("https://example.test/x", source="eCFR")
        assert exc_info.value.message == "Invalid response format from eCFR API"

    async def test_non_object_json_is_server_error(self, fast_retry):
        with pytest.raises(ServerError):
            await fetcher_for(lambda request: httpx.Response(200, json=[1, 2]), fast_retry).get_json(
                "https://example.test/x"
            )

    async def test_connection_error_is_server_error(self, fast_retry):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ServerError):
            await fetcher_for(handler, fast_retry).get_json("https://example.test/x")

    async def test_default_client_uses_attempt_deadline(self, test_settings):
        fetcher = ResilientFetcher()
        try:
            assert fetcher.timeout == test_settings.api_timeout_seconds
            assert fetcher.client.timeout == httpx.Timeout(test_settings.api_timeout_seconds)
        finally:
            await fetcher.aclose()

    async def test_transport_timeout_message(self, fast_retry):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await fetcher_for(handler, fast_retry).get_json("https://example.test/x", source="FDA")
        assert exc_info.value.message == "FDA request timed out"
        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)
