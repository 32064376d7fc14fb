"""
TTL key-value store - keys that expire on their own.

Backends:
- MemoryTTLStore: in-process dict, swept periodically by APScheduler
- RedisTTLStore: shared store reached over REDIS_URL (multi-instance safe)
- FallbackTTLStore: prefers the shared store, serves from memory while it is down

Degrading from Redis to memory downgrades guarantees from "consistent across
instances" to "best effort per instance". That is logged, never raised.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, TypeVar

import redis.asyncio as aioredis
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger
from redis.exceptions import RedisError

from relay.services.errors import StoreError

T = TypeVar("T")

# Operational failures that make a call fall back to the local store
STORE_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    OSError,
    asyncio.TimeoutError,
)


@dataclass
class CounterResult:
    """Result of an increment."""

    count: int
    ttl_remaining: int  # seconds until the counter expires


class TTLStore(ABC):
    """exists / set-with-expiry / increment contract shared by all backends."""

    name: str = "abstract"

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def set_with_expiry(
        self, key: str, ttl_seconds: int, value: str = "1"
    ) -> None: ...

    @abstractmethod
    async def set_if_absent(
        self, key: str, ttl_seconds: int, value: str = "1"
    ) -> bool:
        """Atomically create the key. Returns False if it already existed."""
        ...

    @abstractmethod
    async def increment(self, key: str, ttl_seconds: int) -> CounterResult:
        """Increment a counter, starting its expiry on first use."""
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


@dataclass
class _Entry:
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MemoryTTLStore(TTLStore):
    """
    In-process TTL store.

    Expired entries are invisible to reads immediately; the background sweep
    only reclaims memory for keys nobody reads again.

    Usage:
        store = MemoryTTLStore()
        store.start_sweeper()  # needs a running event loop

        await store.set_with_expiry("k", 60)
        assert await store.exists("k")
    """

    name = "memory"

    def __init__(
        self,
        sweep_interval: timedelta = timedelta(hours=1),
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[str, _Entry] = {}
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def set_with_expiry(
        self, key: str, ttl_seconds: int, value: str = "1"
    ) -> None:
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)

    async def set_if_absent(
        self, key: str, ttl_seconds: int, value: str = "1"
    ) -> bool:
        if self._live(key) is not None:
            return False
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)
        return True

    async def increment(self, key: str, ttl_seconds: int) -> CounterResult:
        now = self._clock()
        entry = self._live(key)
        if entry is None:
            entry = _Entry(value=0, expires_at=now + ttl_seconds)
            self._entries[key] = entry
        entry.value = int(entry.value) + 1
        return CounterResult(
            count=entry.value,
            ttl_remaining=max(0, math.ceil(entry.expires_at - now)),
        )

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        expired_keys = [k for k, v in self._entries.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            logger.debug(f"[MemoryTTLStore] CLEANUP: {len(expired_keys)} expired entries removed")
        return len(expired_keys)

    async def _sweep_job(self) -> None:
        self.cleanup_expired()

    def start_sweeper(self) -> None:
        """Schedule the periodic sweep on the running event loop."""
        if self._scheduler is not None:
            logger.warning("TTL store sweeper is already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._sweep_job,
            trigger="interval",
            seconds=self._sweep_interval.total_seconds(),
            id="ttl_store_sweep",
            name="TTL store sweep",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            f"TTL store sweeper started: every {self._sweep_interval.total_seconds():.0f}s"
        )

    def stop_sweeper(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("TTL store sweeper stopped")

    def is_sweeping(self) -> bool:
        return self._scheduler is not None

    async def close(self) -> None:
        self.stop_sweeper()


class RedisTTLStore(TTLStore):
    """
    Shared TTL store over any Redis-compatible server.

    Every operation is bounded by operation_timeout so a hanging server
    surfaces as asyncio.TimeoutError instead of stalling the webhook.
    """

    name = "redis"

    def __init__(
        self,
        url: str | None = None,
        client: aioredis.Redis | None = None,
        operation_timeout: float = 2.0,
    ):
        if client is None:
            if not url:
                raise ValueError("RedisTTLStore needs a url or a client")
            client = aioredis.from_url(
                url,
                decode_responses=True,
                socket_timeout=operation_timeout,
                socket_connect_timeout=operation_timeout,
            )
        self._client = client
        self._operation_timeout = operation_timeout

    async def _run(self, operation: Awaitable[T]) -> T:
        return await asyncio.wait_for(operation, timeout=self._operation_timeout)

    async def exists(self, key: str) -> bool:
        return bool(await self._run(self._client.exists(key)))

    async def set_with_expiry(
        self, key: str, ttl_seconds: int, value: str = "1"
    ) -> None:
        await self._run(self._client.setex(key, ttl_seconds, value))

    async def set_if_absent(
        self, key: str, ttl_seconds: int, value: str = "1"
    ) -> bool:
        return bool(await self._run(self._client.set(key, value, ex=ttl_seconds, nx=True)))

    async def increment(self, key: str, ttl_seconds: int) -> CounterResult:
        count = await self._run(self._client.incr(key))
        ttl = await self._run(self._client.ttl(key))
        if ttl < 0:
            # New counter (or one that lost its expiry): start the window now
            await self._run(self._client.expire(key, ttl_seconds))
            ttl = ttl_seconds
        return CounterResult(count=int(count), ttl_remaining=int(ttl))

    async def ping(self) -> bool:
        try:
            return bool(await self._run(self._client.ping()))
        except STORE_ERRORS as e:
            logger.debug(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()


class FallbackTTLStore(TTLStore):
    """
    Selects the shared store when configured and reachable, memory otherwise.

    A failing shared call is retried against the local store for that call
    and the shared store is re-probed at most once per reprobe_interval.
    Errors raised by the local store propagate as StoreError.
    """

    def __init__(
        self,
        shared: TTLStore | None = None,
        local: MemoryTTLStore | None = None,
        reprobe_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.shared = shared
        self.local = local if local is not None else MemoryTTLStore()
        self._reprobe_interval = reprobe_interval
        self._clock = clock
        self._shared_available = shared is not None
        self._last_probe: float | None = None

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.shared.name if self.shared_available else self.local.name

    @property
    def shared_available(self) -> bool:
        return self.shared is not None and self._shared_available

    async def connect(self) -> bool:
        """Probe the shared store once at startup."""
        if self.shared is None:
            logger.info("No shared store configured, using in-memory TTL store")
            return False
        self._last_probe = self._clock()
        self._shared_available = await self.shared.ping()
        if self._shared_available:
            logger.info(f"Shared TTL store ({self.shared.name}) connected")
        else:
            logger.warning(
                f"Shared TTL store ({self.shared.name}) unreachable, "
                "falling back to in-memory store"
            )
        return self._shared_available

    async def _shared_ready(self) -> bool:
        if self.shared is None:
            return False
        if self._shared_available:
            return True

        now = self._clock()
        if self._last_probe is not None and now - self._last_probe < self._reprobe_interval:
            return False
        self._last_probe = now

        if await self.shared.ping():
            self._shared_available = True
            logger.info(f"Shared TTL store ({self.shared.name}) reachable again")
        return self._shared_available

    def _mark_unavailable(self, error: BaseException, operation: str, key: str) -> None:
        self._shared_available = False
        self._last_probe = self._clock()
        logger.warning(
            f"Shared TTL store error during {operation}({key}), "
            f"falling back to in-memory: {type(error).__name__}: {error}"
        )

    async def _call(
        self, operation: str, key: str, fn: Callable[[TTLStore], Awaitable[T]]
    ) -> T:
        if await self._shared_ready():
            assert self.shared is not None
            try:
                return await fn(self.shared)
            except STORE_ERRORS as e:
                self._mark_unavailable(e, operation, key)
        try:
            return await fn(self.local)
        except Exception as e:
            raise StoreError(
                f"{operation}({key}) failed on every TTL store backend: {e}",
                service_id=self.local.name,
            ) from e

    async def exists(self, key: str) -> bool:
        return await self._call("exists", key, lambda s: s.exists(key))

    async def set_with_expiry(
        self, key: str, ttl_seconds: int, value: str = "1"
    ) -> None:
        await self._call(
            "set_with_expiry", key, lambda s: s.set_with_expiry(key, ttl_seconds, value)
        )

    async def set_if_absent(
        self, key: str, ttl_seconds: int, value: str = "1"
    ) -> bool:
        return await self._call(
            "set_if_absent", key, lambda s: s.set_if_absent(key, ttl_seconds, value)
        )

    async def increment(self, key: str, ttl_seconds: int) -> CounterResult:
        return await self._call(
            "increment", key, lambda s: s.increment(key, ttl_seconds)
        )

    async def ping(self) -> bool:
        return await self._shared_ready() or await self.local.ping()

    def get_status(self) -> dict[str, Any]:
        return {
            "backend": self.name,
            "shared_configured": self.shared is not None,
            "shared_available": self.shared_available,
            "local_entries": len(self.local),
        }

    async def close(self) -> None:
        if self.shared is not None:
            try:
                await self.shared.close()
            except STORE_ERRORS as e:
                logger.warning(f"Error closing shared TTL store: {e}")
        await self.local.close()


def build_store(
    redis_url: str | None,
    operation_timeout: float = 2.0,
    sweep_interval: timedelta = timedelta(hours=1),
) -> FallbackTTLStore:
    """Shared store when REDIS_URL is set, memory-only otherwise."""
    shared = (
        RedisTTLStore(url=redis_url, operation_timeout=operation_timeout)
        if redis_url
        else None
    )
    return FallbackTTLStore(
        shared=shared, local=MemoryTTLStore(sweep_interval=sweep_interval)
    )
