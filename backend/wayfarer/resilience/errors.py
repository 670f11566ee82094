"""Typed failures raised by the circuit breaker and the retry helper."""

from datetime import datetime, timezone
from typing import List, Optional


class ResilienceError(Exception):
    """Base class for circuit breaker and retry failures."""


class CircuitOpenError(ResilienceError):
    """The dependency is short-circuited; no call was attempted."""

    def __init__(self, name: str, next_attempt_time: float):
        self.name = name
        self.next_attempt_time = next_attempt_time
        at = datetime.fromtimestamp(next_attempt_time, tz=timezone.utc).isoformat()
        super().__init__(f"Circuit breaker [{name}] is OPEN. Next attempt at {at}")

    def retry_after(self, now: float) -> float:
        """Seconds until the breaker lets a probe through."""
        return max(0.0, self.next_attempt_time - now)


class CircuitTimeoutError(ResilienceError):
    """A single guarded call exceeded its deadline."""

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"Circuit breaker [{name}] operation timeout after {timeout:.1f}s")


class RetryCancelledError(ResilienceError):
    """The caller cancelled the retry session."""

    def __init__(self, message: str, attempts: Optional[List] = None):
        super().__init__(message)
        self.attempts = list(attempts or [])


class RetryExhaustedError(ResilienceError):
    """Every attempt failed; carries the per-attempt history."""

    def __init__(self, message: str, attempts: List, last_error: Optional[BaseException], total_time: float = 0.0):
        super().__init__(message)
        self.attempts = list(attempts)
        self.last_error = last_error
        self.total_time = total_time

    @property
    def errors(self) -> List[BaseException]:
        return [a.error for a in self.attempts if a.error is not None]
