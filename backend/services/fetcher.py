"""Timeout-bounded, exponential-backoff wrapper for outbound calls."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from config import get_settings
from services.errors import (
    NotFoundError,
    RateLimitError,
    RegulatoryAPIError,
    ServerError,
    UpstreamTimeoutError,
    is_retryable,
)
from services.models import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 10.0  # seconds, per attempt
USER_AGENT = "QualiPilot-Regulatory-Assistant/1.0"


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before the attempt following ``attempt`` (1-based)."""
    return min(config.base_delay * 2 ** (attempt - 1), config.max_delay)


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout: float = DEFAULT_TIMEOUT,
    source: Optional[str] = None,
) -> T:
    """Run one attempt, cancelling it once ``timeout`` seconds have passed."""
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except UpstreamTimeoutError:
        raise
    except asyncio.TimeoutError as e:
        raise UpstreamTimeoutError(f"Request timeout after {timeout:g}s", source=source) from e


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
) -> T:
    """
    Call ``operation`` until it succeeds or attempts run out.

    Non-retryable errors (not found, validation, auth) are raised at once.
    When every attempt fails, the last attempt's exception is raised as is.
    """
    config = config or RetryConfig()

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e) or attempt >= config.max_attempts:
                raise

            delay = backoff_delay(attempt, config)
            logger.warning(f"Attempt {attempt} failed, retrying in {delay:.2f}s: {e}")
            await asyncio.sleep(delay)
        attempt += 1


def default_retry_config() -> RetryConfig:
    settings = get_settings()
    return RetryConfig(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )


class ResilientFetcher:
    """JSON-over-HTTP client where every request gets a timeout and retries."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        retry: Optional[RetryConfig] = None,
    ):
        self.timeout = timeout if timeout is not None else get_settings().api_timeout_seconds
        self.client = client or httpx.AsyncClient(timeout=self.timeout)
        self.retry = retry or default_retry_config()
        self.headers = {
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }

    async def get_json(
        self,
        url: str,
        params: Any = None,
        source: str = "API",
        not_found_message: Optional[str] = None,
    ) -> dict:
        """GET ``url`` and return the decoded JSON object."""

        async def attempt() -> dict:
            return await with_timeout(
                lambda: self._request(url, params, source, not_found_message),
                timeout=self.timeout,
                source=source,
            )

        return await with_retry(attempt, self.retry)

    async def _request(
        self,
        url: str,
        params: Any,
        source: str,
        not_found_message: Optional[str],
    ) -> dict:
        logger.info(f"Fetching {source}: {url}")
        try:
            response = await self.client.get(url, params=params, headers=self.headers)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"{source} request timed out", source=source) from e
        except httpx.HTTPError as e:
            raise ServerError(f"{source} request failed: {e}", source=source) from e

        if response.status_code == 404:
            raise NotFoundError(not_found_message or f"{source} data not found", source=source)
        if response.status_code == 429:
            raise RateLimitError(
                f"{source} API rate limit exceeded. Please try again later.", source=source
            )
        if response.status_code >= 500:
            raise ServerError(
                f"{source} API server error ({response.status_code}). Please try again later.",
                source=source,
            )
        if response.status_code >= 400:
            raise RegulatoryAPIError(
                f"{source} API error ({response.status_code}): {response.text}", source=source
            )

        try:
            data = response.json()
        except ValueError:
            raise ServerError(f"Invalid response format from {source} API", source=source)

        if not isinstance(data, dict):
            raise ServerError(f"Invalid response format from {source} API", source=source)

        return data

    async def aclose(self) -> None:
        await self.client.aclose()
