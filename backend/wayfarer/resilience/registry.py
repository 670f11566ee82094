"""
One circuit breaker and one retry policy per external dependency.

The registry is built once at start-up and owned by the application
context; failures in one dependency never touch another's breaker.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from wayfarer.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from wayfarer.resilience.retry import (
    CancellationToken,
    ProgressCallback,
    RetryManager,
)
from wayfarer.resilience.errors import RetryExhaustedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyPolicy:
    display_name: str
    breaker: CircuitBreakerConfig
    retry_preset: str
    retry_overrides: Dict[str, Any]


DEFAULT_POLICIES: Dict[str, DependencyPolicy] = {
    "weather": DependencyPolicy(
        "Weather API",
        CircuitBreakerConfig(failure_threshold=3, reset_timeout=30.0, timeout=8.0),
        "network",
        {"max_attempts": 3},
    ),
    # AI calls are expensive, keep retries low
    "ai": DependencyPolicy(
        "AI Service",
        CircuitBreakerConfig(failure_threshold=3, reset_timeout=60.0, timeout=30.0),
        "server_error",
        {"max_attempts": 2, "base_delay": 3.0},
    ),
    # Maps lookups are user-initiated and time-sensitive: no retry
    "maps": DependencyPolicy(
        "Maps API",
        CircuitBreakerConfig(failure_threshold=5, reset_timeout=30.0, timeout=10.0),
        "network",
        {"max_attempts": 1},
    ),
    "mapbox": DependencyPolicy(
        "Mapbox API",
        CircuitBreakerConfig(failure_threshold=5, reset_timeout=30.0, timeout=15.0),
        "network",
        {"max_attempts": 3},
    ),
    "geocoding": DependencyPolicy(
        "Geocoding API",
        CircuitBreakerConfig(failure_threshold=5, reset_timeout=30.0, timeout=10.0),
        "network",
        {"max_attempts": 2},
    ),
    "database": DependencyPolicy(
        "Database",
        CircuitBreakerConfig(failure_threshold=3, reset_timeout=60.0, timeout=10.0),
        "server_error",
        {"max_attempts": 2, "base_delay": 1.0},
    ),
}

_PRESET_FACTORIES = {
    "network": RetryManager.for_network_errors,
    "rate_limit": RetryManager.for_rate_limit,
    "server_error": RetryManager.for_server_errors,
    "timeout": RetryManager.for_timeout,
}


class UnknownDependencyError(KeyError):
    pass


class CircuitBreakerRegistry:
    def __init__(
        self,
        policies: Optional[Dict[str, DependencyPolicy]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._policies = dict(policies if policies is not None else DEFAULT_POLICIES)
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._retries: Dict[str, RetryManager] = {}

        for key, policy in self._policies.items():
            kwargs = {"clock": clock} if clock is not None else {}
            self._breakers[key] = CircuitBreaker(policy.display_name, policy.breaker, **kwargs)
            factory = _PRESET_FACTORIES[policy.retry_preset]
            self._retries[key] = factory(policy.display_name, **policy.retry_overrides)

    def names(self) -> List[str]:
        return list(self._breakers)

    def get(self, name: str) -> CircuitBreaker:
        try:
            return self._breakers[name]
        except KeyError:
            raise UnknownDependencyError(name) from None

    def retry_manager(self, name: str) -> RetryManager:
        try:
            return self._retries[name]
        except KeyError:
            raise UnknownDependencyError(name) from None

    async def call(
        self,
        name: str,
        operation: Callable[[], Awaitable[Any]],
        fallback: Optional[Callable[[], Awaitable[Any]]] = None,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Any:
        """
        Call a dependency with its retry policy around a breaker-guarded attempt.

        The fallback is only used once the retry loop gives up (or the breaker
        is open), so a transient failure is retried before falling back.
        """
        breaker = self.get(name)
        manager = self.retry_manager(name)

        async def attempt():
            return await breaker.execute(operation)

        if fallback is None:
            return await manager.execute(attempt, token=token, on_progress=on_progress)

        try:
            return await manager.execute(attempt, token=token, on_progress=on_progress)
        except RetryExhaustedError as e:
            logger.warning(f"🔴 {breaker.name} unavailable ({e.last_error}), using fallback")
            return await fallback()

    def get_status(self) -> List[dict]:
        """Read-only snapshot of every breaker for health reporting."""
        return [
            {
                "dependency": key,
                **breaker.get_state().to_dict(),
                "healthy": breaker.is_healthy(),
                "stats": breaker.get_stats().to_dict(),
            }
            for key, breaker in self._breakers.items()
        ]

    def reset(self, name: str) -> None:
        self.get(name).reset()

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
