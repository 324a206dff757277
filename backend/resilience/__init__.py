"""Resilience primitives for the agent pipeline.

Key Components:
    - CircuitBreaker: Consecutive-failure gate for one agent
    - CircuitBreakerRegistry: Process-wide breakers keyed by agent id
    - AlwaysOpenCircuitBreaker / AlwaysClosedCircuitBreaker: Fixed fakes
"""

from resilience.circuit_breaker import (
    AlwaysClosedCircuitBreaker,
    AlwaysOpenCircuitBreaker,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerProtocol,
    CircuitBreakerRegistry,
    CircuitState,
    get_circuit_breaker_registry,
    reset_circuit_breaker_registry,
)

__all__ = [
    "AlwaysClosedCircuitBreaker",
    "AlwaysOpenCircuitBreaker",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerProtocol",
    "CircuitBreakerRegistry",
    "CircuitState",
    "get_circuit_breaker_registry",
    "reset_circuit_breaker_registry",
]
