"""
Fixed-window rate limiter on top of the TTL store.

The first request of a window creates the counter with TTL = window; the
counter disappears with the key, which resets the window.
"""

from dataclasses import dataclass

from loguru import logger

from relay.services.store import TTLStore


@dataclass
class RateLimitResult:
    """Outcome of a rate limit check."""

    limited: bool
    count: int
    limit: int
    reset_after: int  # seconds until the window resets

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_after),
        }


class RateLimiter:
    """
    Fixed-window counter keyed by client identifier (IP or phone number).

    Usage:
        limiter = RateLimiter(store, max_requests=10, window_seconds=60)
        result = await limiter.check("phone:15551234567")
        if result.limited:
            ...
    """

    def __init__(
        self,
        store: TTLStore,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "ratelimit:",
    ):
        self._store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._key_prefix = key_prefix

    async def check(self, client_id: str) -> RateLimitResult:
        """Count this request and report whether the client is over the limit."""
        counter = await self._store.increment(
            f"{self._key_prefix}{client_id}", self.window_seconds
        )
        result = RateLimitResult(
            limited=counter.count > self.max_requests,
            count=counter.count,
            limit=self.max_requests,
            reset_after=counter.ttl_remaining,
        )
        if result.limited:
            logger.warning(
                f"Rate limit exceeded for {client_id}: "
                f"{counter.count}/{self.max_requests}, resets in {counter.ttl_remaining}s"
            )
        return result
