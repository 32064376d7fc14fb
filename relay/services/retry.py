"""
Timeout + retry-with-backoff wrapper around a single httpx request.

Each attempt gets its own timeout that cancels the in-flight request.
Delay before retry n (0-based) is retry_delay * 2**n.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
from loguru import logger

from relay.services.errors import RequestTimeoutError

ShouldRetry = Callable[[Exception | None, httpx.Response | None], bool]

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0

RETRYABLE_ERRORS = (RequestTimeoutError, httpx.TimeoutException, httpx.ConnectError)


def default_should_retry(
    error: Exception | None, response: httpx.Response | None
) -> bool:
    """Retry timeouts, refused connections and 5xx. Never 4xx."""
    if error is not None:
        return isinstance(error, RETRYABLE_ERRORS)
    if response is not None:
        return 500 <= response.status_code < 600
    return False


def retry_on_rate_limit(
    error: Exception | None, response: httpx.Response | None
) -> bool:
    """Like default_should_retry, but 429 is retried too."""
    if response is not None and response.status_code == 429:
        return True
    return default_should_retry(error, response)


@dataclass(frozen=True)
class RetryPolicy:
    """Per-call timeout and retry configuration (seconds)."""

    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    should_retry: ShouldRetry = field(default=default_should_retry)

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry following attempt (0-based)."""
        return self.retry_delay * (2**attempt)

    def worst_case_latency(self) -> float:
        """Upper bound for one fetch_with_retry call, in seconds."""
        backoff = sum(self.delay_for(i) for i in range(self.max_retries))
        return self.timeout * (self.max_retries + 1) + backoff


async def fetch_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    policy: RetryPolicy | None = None,
    *,
    service_id: str = "http",
    **request_kwargs: Any,
) -> httpx.Response:
    """
    Issue an HTTP request with per-attempt timeout and exponential backoff.

    Args:
        client: Shared httpx client
        method: HTTP method
        url: Full URL
        policy: Timeout/retry configuration (defaults if omitted)
        service_id: Name used in logs and timeout errors
        **request_kwargs: Passed through to client.request (json, headers, ...)

    Returns:
        The first ok response, the first response the policy will not retry,
        or the last non-ok response once attempts are exhausted.

    Raises:
        RequestTimeoutError: Final attempt timed out
        httpx.HTTPError: Transport error the policy does not retry, or the
            last one when attempts are exhausted without any response
    """
    policy = policy or RetryPolicy()
    last_response: httpx.Response | None = None
    last_error: Exception | None = None

    logger.info(
        f"{method} {service_id}: timeout={policy.timeout}s, "
        f"max_retries={policy.max_retries}, "
        f"worst case {policy.worst_case_latency():.1f}s"
    )
    started = time.perf_counter()

    for attempt in range(policy.max_retries + 1):
        has_next = attempt < policy.max_retries
        try:
            response = await asyncio.wait_for(
                client.request(method, url, **request_kwargs),
                timeout=policy.timeout,
            )
        except asyncio.TimeoutError as e:
            error: Exception = RequestTimeoutError(service_id, policy.timeout)
            error.__cause__ = e
        except httpx.HTTPError as e:
            error = e
        else:
            if response.is_success or not policy.should_retry(None, response):
                return response

            last_response = response
            if has_next:
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{service_id} returned {response.status_code}, "
                    f"retry {attempt + 1}/{policy.max_retries} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
            continue

        if not policy.should_retry(error, None):
            raise error

        last_error = error
        if has_next:
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{service_id} attempt {attempt + 1} failed "
                f"({type(error).__name__}: {error}), "
                f"retry {attempt + 1}/{policy.max_retries} in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    elapsed = time.perf_counter() - started
    logger.error(
        f"{service_id}: all {policy.max_retries + 1} attempts failed after {elapsed:.2f}s"
    )
    if last_response is not None:
        return last_response
    assert last_error is not None
    raise last_error
