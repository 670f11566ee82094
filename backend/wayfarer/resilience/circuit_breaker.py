"""
Per-dependency circuit breaker.

Three states:
- CLOSED: calls pass through, consecutive failures are counted
- OPEN: calls are short-circuited until next_attempt_time
- HALF_OPEN: a single probe call decides between CLOSED and OPEN again

State lives in memory for the process lifetime; it is not shared across
instances and resets on restart.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, asdict
from typing import Any, Awaitable, Callable, Optional

from wayfarer.resilience.errors import CircuitOpenError, CircuitTimeoutError

logger = logging.getLogger(__name__)


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0  # seconds before a probe is allowed
    timeout: float = 10.0  # per-call deadline, seconds


@dataclass
class CircuitBreakerState:
    name: str
    status: CircuitState
    failure_count: int
    last_failure_time: Optional[float]
    next_attempt_time: Optional[float]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class CircuitBreakerStats:
    name: str
    total_requests: int = 0
    successful_requests: int = 0
    # Includes failures that were answered by a fallback
    failed_requests: int = 0
    circuit_open_count: int = 0
    short_circuited_requests: int = 0
    fallback_responses: int = 0
    last_failure_message: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


Operation = Callable[[], Awaitable[Any]]


class CircuitBreaker:
    """
    Guards calls to one external dependency.

    Usage:
        breaker = CircuitBreaker("Weather API", CircuitBreakerConfig(failure_threshold=3))
        forecast = await breaker.execute(lambda: client.forecast(city), fallback=cached_forecast)
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._status = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._next_attempt_time: Optional[float] = None
        self._probe_in_flight = False

        self._stats = CircuitBreakerStats(name=name)

    @property
    def status(self) -> CircuitState:
        return self._status

    async def execute(self, operation: Operation, fallback: Optional[Operation] = None) -> Any:
        self._stats.total_requests += 1

        if self._status == CircuitState.OPEN:
            if self._clock() < self._next_attempt_time:
                return await self._short_circuit(fallback, self._next_attempt_time)
            self._status = CircuitState.HALF_OPEN
            logger.info(f"🟡 Circuit breaker [{self.name}] transitioning to HALF_OPEN")

        is_probe = False
        if self._status == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                # The probe settles within its own deadline
                return await self._short_circuit(fallback, self._clock() + self.config.timeout)
            self._probe_in_flight = True
            is_probe = True

        try:
            result = await self._execute_with_timeout(operation)
        except Exception as e:
            self._on_failure(e, is_probe)
            if fallback is not None:
                logger.warning(f"🔴 Circuit breaker [{self.name}] call failed, using fallback")
                self._stats.fallback_responses += 1
                return await fallback()
            raise
        finally:
            if is_probe:
                self._probe_in_flight = False

        self._on_success(is_probe)
        return result

    async def _short_circuit(self, fallback: Optional[Operation], retry_at: float) -> Any:
        self._stats.short_circuited_requests += 1
        if fallback is not None:
            logger.warning(f"🔴 Circuit breaker [{self.name}] is OPEN, using fallback")
            self._stats.fallback_responses += 1
            return await fallback()
        raise CircuitOpenError(self.name, retry_at)

    async def _execute_with_timeout(self, operation: Operation) -> Any:
        task = asyncio.ensure_future(operation())
        try:
            done, _ = await asyncio.wait({task}, timeout=self.config.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not done:
            task.cancel()
            raise CircuitTimeoutError(self.name, self.config.timeout)
        # Re-raises the operation's own error, TimeoutError included
        return task.result()

    def _on_success(self, is_probe: bool = False) -> None:
        self._stats.successful_requests += 1
        if is_probe and self._status == CircuitState.HALF_OPEN:
            logger.info(f"✅ Circuit breaker [{self.name}] closing after successful probe")
            self._status = CircuitState.CLOSED
            self._next_attempt_time = None
        self._failure_count = 0

    def _on_failure(self, error: BaseException, is_probe: bool = False) -> None:
        now = self._clock()
        self._stats.failed_requests += 1
        self._stats.last_failure_message = str(error) or type(error).__name__
        self._last_failure_time = now
        self._failure_count += 1

        if is_probe:
            self._open(now)
            logger.error(f"🔴 Circuit breaker [{self.name}] probe failed, re-opening until {self._next_attempt_time:.0f}")
        elif self._status == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
            self._open(now)
            logger.error(
                f"🔴 Circuit breaker [{self.name}] OPENED after {self._failure_count} failures, "
                f"next attempt in {self.config.reset_timeout:.0f}s"
            )
        else:
            logger.warning(
                f"⚠️ Circuit breaker [{self.name}] failure {self._failure_count}/{self.config.failure_threshold}"
            )

    def _open(self, now: float) -> None:
        self._status = CircuitState.OPEN
        self._next_attempt_time = now + self.config.reset_timeout
        self._stats.circuit_open_count += 1

    def get_state(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            name=self.name,
            status=self._status,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
            next_attempt_time=self._next_attempt_time,
        )

    def get_stats(self) -> CircuitBreakerStats:
        return CircuitBreakerStats(**asdict(self._stats))

    def is_healthy(self) -> bool:
        return self._status == CircuitState.CLOSED

    def reset(self) -> None:
        """Administrative recovery: back to CLOSED with every counter zeroed."""
        self._status = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._next_attempt_time = None
        self._probe_in_flight = False
        self._stats = CircuitBreakerStats(name=self.name)
        logger.info(f"🔄 Circuit breaker [{self.name}] manually reset")

    def __repr__(self) -> str:
        return f"<CircuitBreaker {self.name}: {self._status.value}, {self._failure_count} failures>"
