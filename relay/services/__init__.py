"""
Service layer infrastructure - resilience patterns for outbound calls.

Provides:
- TTLStore: Shared key/value store with expiry, falling back to memory
- CircuitBreaker: Prevents cascading failures
- fetch_with_retry: Per-attempt timeouts with exponential backoff
- IdempotencyGuard: Processes each inbound message at most once
- RateLimiter: Fixed-window request counting
- split_message: Message chunking for the WhatsApp length limit
"""

from relay.services.errors import (
    ServiceError,
    StoreError,
    CircuitOpenError,
    RequestTimeoutError,
    ServiceUnavailableError,
    MessageTooLongError,
    ChunkSendError,
)
from relay.services.store import (
    TTLStore,
    MemoryTTLStore,
    RedisTTLStore,
    FallbackTTLStore,
    CounterResult,
    build_store,
)
from relay.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    StaticFallback,
    SupplierFallback,
)
from relay.services.retry import RetryPolicy, fetch_with_retry
from relay.services.idempotency import IdempotencyGuard, IdempotencyOutcome
from relay.services.rate_limiter import RateLimiter, RateLimitResult
from relay.services.chunker import split_message, split_for_sending
from relay.services.query_client import QueryClient, QueryAnswer

__all__ = [
    # Errors
    "ServiceError",
    "StoreError",
    "CircuitOpenError",
    "RequestTimeoutError",
    "ServiceUnavailableError",
    "MessageTooLongError",
    "ChunkSendError",
    # Store
    "TTLStore",
    "MemoryTTLStore",
    "RedisTTLStore",
    "FallbackTTLStore",
    "CounterResult",
    "build_store",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "StaticFallback",
    "SupplierFallback",
    # Retry
    "RetryPolicy",
    "fetch_with_retry",
    # Idempotency
    "IdempotencyGuard",
    "IdempotencyOutcome",
    # Rate limiting
    "RateLimiter",
    "RateLimitResult",
    # Chunking
    "split_message",
    "split_for_sending",
    # Query API
    "QueryClient",
    "QueryAnswer",
]
