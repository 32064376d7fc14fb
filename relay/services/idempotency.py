"""
Idempotency guard for webhook deliveries.

Meta delivers webhooks at least once, so the same message id can arrive
again (or twice concurrently). Each id is processed at most once per TTL.

Key pattern:
    idempotency:message:{message_id}
    Value: "1"
    TTL: 24h (provider redelivery window)

The key is written BEFORE the processor runs. A processor that fails after
the mark is not re-run on redelivery: a lost reply is preferred over a
duplicated one.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from loguru import logger

from relay.services.store import TTLStore

T = TypeVar("T")


@dataclass
class IdempotencyOutcome(Generic[T]):
    """Result of run_once."""

    duplicate: bool
    result: T | None = None


class IdempotencyGuard:
    """
    Runs a processor at most once per message id.

    Usage:
        guard = IdempotencyGuard(store)
        outcome = await guard.run_once(message["id"], lambda: handle(message))
        if outcome.duplicate:
            return
    """

    KEY_PREFIX = "idempotency:message:"
    TTL_SECONDS = 24 * 60 * 60

    def __init__(
        self,
        store: TTLStore,
        ttl_seconds: int = TTL_SECONDS,
        key_prefix: str = KEY_PREFIX,
    ):
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix

    def _key(self, message_id: str) -> str:
        return f"{self._key_prefix}{message_id}"

    async def is_duplicate(self, message_id: str | None) -> bool:
        """True if message_id was already marked within the TTL."""
        if not message_id:
            return False
        return await self._store.exists(self._key(message_id))

    async def mark_processed(self, message_id: str | None) -> None:
        if not message_id:
            return
        await self._store.set_with_expiry(self._key(message_id), self._ttl_seconds)

    async def run_once(
        self,
        message_id: str | None,
        processor: Callable[[], Awaitable[T]],
    ) -> IdempotencyOutcome[T]:
        """
        Invoke processor unless message_id was already seen.

        Args:
            message_id: Provider message id; empty means dedup cannot apply
            processor: Zero-arg async callable doing the actual work

        Returns:
            IdempotencyOutcome(duplicate=True) without running processor,
            or IdempotencyOutcome(duplicate=False, result=...) after running it
        """
        if not message_id:
            logger.warning("Empty message_id, processing without idempotency check")
            return IdempotencyOutcome(duplicate=False, result=await processor())

        key = self._key(message_id)
        if await self._store.exists(key):
            logger.info(f"Duplicate message detected, skipping processing: {message_id}")
            return IdempotencyOutcome(duplicate=True)

        # Mark first: a concurrent delivery that passed the exists() check
        # above loses here instead of running the processor a second time.
        claimed = await self._store.set_if_absent(key, self._ttl_seconds)
        if not claimed:
            logger.info(f"Lost idempotency race for message, skipping: {message_id}")
            return IdempotencyOutcome(duplicate=True)

        return IdempotencyOutcome(duplicate=False, result=await processor())
