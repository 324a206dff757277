"""Per-agent circuit breakers.

A breaker isolates one misbehaving stage so its latency and cost do not
cascade into every request:

- CLOSED: requests are admitted unconditionally
- OPEN: requests are rejected until the reset timeout elapses
- HALF_OPEN: a bounded number of trial requests are admitted; one success
  closes the circuit, one failure reopens it

Breakers are shared across concurrent requests through a
``CircuitBreakerRegistry`` keyed by agent id. All operations are synchronous,
so they are atomic with respect to the event loop.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

import structlog

from config import settings

logger = structlog.get_logger(__name__)


class CircuitState(StrEnum):
    """Circuit breaker modes."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreakerProtocol(Protocol):
    """The gate every agent consults before doing real work."""

    def allow_request(self) -> bool: ...

    def record_success(self) -> None: ...

    def record_failure(self) -> None: ...

    def get_state(self) -> CircuitState: ...


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker thresholds.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        reset_timeout_seconds: Cooldown after the last failure before half-open.
        half_open_max_requests: Trial requests admitted while half-open.
    """

    failure_threshold: int = 3
    reset_timeout_seconds: float = 30.0
    half_open_max_requests: int = 2

    @classmethod
    def from_settings(cls) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout_seconds=settings.circuit_reset_timeout_seconds,
            half_open_max_requests=settings.circuit_half_open_max_requests,
        )


class CircuitBreaker:
    """Consecutive-failure circuit breaker for a single agent.

    Attributes:
        name: The agent id this breaker guards.
        config: Thresholds in effect.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize a closed breaker.

        Args:
            name: The agent id this breaker guards.
            config: Thresholds (defaults to values from settings).
            clock: Monotonic time source, injectable for tests.
        """
        self.name = name
        self.config = config or CircuitBreakerConfig.from_settings()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0
        self._half_open_requests = 0

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def allow_request(self) -> bool:
        """Decide whether the next request may proceed.

        The request that moves an open circuit to half-open counts as the
        first trial request.
        """
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - self._last_failure_time
            if elapsed < self.config.reset_timeout_seconds:
                return False
            self._transition_to(CircuitState.HALF_OPEN)
            self._half_open_requests = 1
            return True

        if self._half_open_requests < self.config.half_open_max_requests:
            self._half_open_requests += 1
            return True
        return False

    def record_success(self) -> None:
        """Record a successful call; closes a half-open circuit."""
        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.CLOSED)
        self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed call; may open or reopen the circuit."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._transition_to(CircuitState.OPEN)

    def get_state(self) -> CircuitState:
        return self._state

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state != CircuitState.HALF_OPEN:
            self._half_open_requests = 0
        logger.info(
            "circuit_state_changed",
            agent_id=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
            failure_count=self._failure_count,
        )


class AlwaysClosedCircuitBreaker:
    """Breaker that never trips. Useful for tests and local runs."""

    def allow_request(self) -> bool:
        return True

    def record_success(self) -> None:
        pass

    def record_failure(self) -> None:
        pass

    def get_state(self) -> CircuitState:
        return CircuitState.CLOSED


class AlwaysOpenCircuitBreaker:
    """Breaker that rejects every request, forcing the fallback path."""

    def allow_request(self) -> bool:
        return False

    def record_success(self) -> None:
        pass

    def record_failure(self) -> None:
        pass

    def get_state(self) -> CircuitState:
        return CircuitState.OPEN


class CircuitBreakerRegistry:
    """Process-wide map of agent id to its circuit breaker.

    Breakers are created lazily on first lookup and reused for every later
    request, which is what makes failure counts meaningful across turns.
    """

    def __init__(self, config: CircuitBreakerConfig | None = None) -> None:
        self._config = config
        self._breakers: dict[str, CircuitBreakerProtocol] = {}
        self._lock = threading.Lock()

    def get(self, agent_id: str) -> CircuitBreakerProtocol:
        """Return the breaker for an agent, creating it if needed."""
        with self._lock:
            breaker = self._breakers.get(agent_id)
            if breaker is None:
                breaker = CircuitBreaker(agent_id, self._config)
                self._breakers[agent_id] = breaker
            return breaker

    def register(self, agent_id: str, breaker: CircuitBreakerProtocol) -> None:
        """Install a specific breaker (e.g. an always-open fake) for an agent."""
        with self._lock:
            self._breakers[agent_id] = breaker

    def snapshot(self) -> dict[str, str]:
        """Return the current state of every known breaker."""
        with self._lock:
            return {
                agent_id: breaker.get_state().value
                for agent_id, breaker in self._breakers.items()
            }


_registry: CircuitBreakerRegistry | None = None
_registry_lock = threading.Lock()


def get_circuit_breaker_registry() -> CircuitBreakerRegistry:
    """Get the global CircuitBreakerRegistry instance.

    Creates the instance on first call (lazy initialization).

    Returns:
        The global CircuitBreakerRegistry instance
    """
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = CircuitBreakerRegistry()
    return _registry


def reset_circuit_breaker_registry() -> None:
    """Reset the global registry. Primarily useful for testing."""
    global _registry
    with _registry_lock:
        _registry = None
