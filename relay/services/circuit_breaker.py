"""
CircuitBreaker - Stops calling a failing dependency for a cooling-off period.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Dependency is failing, calls are short-circuited to the fallback
- HALF_OPEN: Testing if the dependency has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold is reached
- CLOSED (success): failure count decremented, floor 0
- OPEN → HALF_OPEN: After open_duration expires
- HALF_OPEN → CLOSED: After success_threshold successes
- HALF_OPEN → OPEN: On failure, or when half_open_duration passes first
"""

import inspect
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from relay.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking calls
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    success_threshold: int = 2  # Successes needed to close from half-open
    open_duration: timedelta = timedelta(seconds=60)  # Time before half-open
    half_open_duration: timedelta = timedelta(seconds=30)  # Max time in half-open


@dataclass(frozen=True)
class StaticFallback(Generic[T]):
    """Fallback that is a plain value."""

    value: T


@dataclass(frozen=True)
class SupplierFallback(Generic[T]):
    """Fallback computed on demand by a zero-arg callable (sync or async)."""

    supplier: Callable[[], T | Awaitable[T]]


Fallback = StaticFallback[T] | SupplierFallback[T]


async def resolve_fallback(fallback: "Fallback[T]") -> T:
    """Produce the fallback value, awaiting the supplier if it is async."""
    if isinstance(fallback, StaticFallback):
        return fallback.value
    value = fallback.supplier()
    if inspect.isawaitable(value):
        value = await value
    return value  # type: ignore[return-value]


@dataclass
class CircuitSnapshot:
    """Point-in-time view of a breaker."""

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: datetime | None
    last_state_change_time: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure": (
                self.last_failure_time.isoformat() if self.last_failure_time else None
            ),
            "last_state_change": self.last_state_change_time.isoformat(),
        }


class CircuitBreaker:
    """
    Circuit breaker for a single outbound dependency.

    Usage:
        cb = CircuitBreaker("query_api")

        answer = await cb.execute(
            lambda: client.query(payload),
            StaticFallback("Service busy, try again later"),
        )

    Errors raised by the call are recorded and re-raised; only a
    short-circuited call returns the fallback.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: datetime | None = None
        self._last_state_change = datetime.now()

    @property
    def state(self) -> CircuitState:
        """Get current state, applying any time-based transition."""
        self._apply_timeouts()
        return self._state

    def _apply_timeouts(self) -> None:
        now = datetime.now()
        elapsed = now - self._last_state_change

        if self._state == CircuitState.OPEN and elapsed >= self.config.open_duration:
            logger.info(
                f"Circuit breaker '{self.name}' transitioned to HALF_OPEN "
                f"after {elapsed.total_seconds():.1f}s open"
            )
            self._transition(CircuitState.HALF_OPEN, now)
            self._success_count = 0

        elif (
            self._state == CircuitState.HALF_OPEN
            and elapsed >= self.config.half_open_duration
        ):
            logger.warning(
                f"Circuit breaker '{self.name}' HALF_OPEN timeout, transitioning to OPEN"
            )
            self._transition(CircuitState.OPEN, now)
            self._success_count = 0

    def _transition(self, state: CircuitState, at: datetime | None = None) -> None:
        self._state = state
        self._last_state_change = at or datetime.now()

    def can_request(self) -> bool:
        """Check if a call is allowed right now."""
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        """Record a successful call."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._close()
        elif self._state == CircuitState.CLOSED:
            # Gradual recovery
            self._failure_count = max(0, self._failure_count - 1)

    def record_failure(self, error: BaseException | None = None) -> None:
        """Record a failed call."""
        self._failure_count += 1
        self._last_failure_time = datetime.now()

        logger.warning(
            f"Circuit breaker '{self.name}' recorded failure "
            f"({self._failure_count}, state={self._state.value}): {error}"
        )

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            logger.warning(
                f"Circuit breaker '{self.name}' HALF_OPEN failed, transitioning to OPEN"
            )
            self._open()
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._transition(CircuitState.OPEN)
        self._success_count = 0
        logger.error(
            f"Circuit breaker '{self.name}' OPENED after {self._failure_count} failures"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._transition(CircuitState.CLOSED)
        self._failure_count = 0
        self._success_count = 0
        logger.info(f"Circuit breaker '{self.name}' CLOSED (recovered)")

    async def execute(
        self,
        call: Callable[[], Awaitable[T]],
        fallback: "Fallback[T] | None" = None,
    ) -> T:
        """
        Run call under breaker protection.

        Args:
            call: Zero-arg async callable performing the protected operation
            fallback: Value returned instead of calling while the circuit is open

        Returns:
            The call result, or the resolved fallback when short-circuited

        Raises:
            CircuitOpenError: Short-circuited and no fallback was given
            Exception: Whatever call raised, after it has been recorded
        """
        if not self.can_request():
            logger.warning(
                f"Circuit breaker '{self.name}' OPEN, returning fallback "
                f"(half-open in {self.get_time_until_half_open() or 0:.1f}s)"
            )
            if fallback is None:
                raise CircuitOpenError(self.name, self.get_time_until_half_open() or 0)
            return await resolve_fallback(fallback)

        try:
            result = await call()
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success()
        return result

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._transition(CircuitState.CLOSED)
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    def get_time_until_half_open(self) -> float | None:
        """Get seconds until an OPEN circuit transitions to half-open."""
        if self._state != CircuitState.OPEN:
            return None

        reset_at = self._last_state_change + self.config.open_duration
        remaining = (reset_at - datetime.now()).total_seconds()
        return max(0.0, remaining)

    def get_state(self) -> CircuitSnapshot:
        """Snapshot of state, counters and timestamps."""
        return CircuitSnapshot(
            name=self.name,
            state=self.state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            last_failure_time=self._last_failure_time,
            last_state_change_time=self._last_state_change,
        )

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        status = self.get_state().to_dict()
        status["time_until_half_open"] = self.get_time_until_half_open()
        return status


class CircuitBreakerRegistry:
    """
    Registry for managing multiple circuit breakers.

    Usage:
        registry = CircuitBreakerRegistry()
        cb = registry.get("query_api")
    """

    def __init__(self, default_config: CircuitBreakerConfig | None = None):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._default_config = default_config or CircuitBreakerConfig()

    def get(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker for a dependency."""
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name,
                config or self._default_config,
            )
        return self._breakers[name]

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        """Get status of all circuit breakers."""
        return {name: cb.get_status() for name, cb in self._breakers.items()}

    def get_open_circuits(self) -> list[str]:
        """Get list of dependencies with open circuits."""
        return [
            name
            for name, cb in self._breakers.items()
            if cb.state == CircuitState.OPEN
        ]
