from wayfarer.resilience.errors import (
    ResilienceError,
    CircuitOpenError,
    CircuitTimeoutError,
    RetryCancelledError,
    RetryExhaustedError,
)
from wayfarer.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitBreakerStats,
    CircuitState,
)
from wayfarer.resilience.retry import (
    CancellationToken,
    RetryConfig,
    RetryManager,
    RetryProgress,
    RetryState,
    create_cancellation_token,
    is_transient_error,
    retry,
)
from wayfarer.resilience.registry import CircuitBreakerRegistry, DependencyPolicy

__all__ = [
    "ResilienceError",
    "CircuitOpenError",
    "CircuitTimeoutError",
    "RetryCancelledError",
    "RetryExhaustedError",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitBreakerStats",
    "CircuitState",
    "CancellationToken",
    "RetryConfig",
    "RetryManager",
    "RetryProgress",
    "RetryState",
    "create_cancellation_token",
    "is_transient_error",
    "retry",
    "CircuitBreakerRegistry",
    "DependencyPolicy",
]
