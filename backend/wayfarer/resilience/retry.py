"""
Retry with backoff, progress reporting and cooperative cancellation.

A retry session moves Idle -> Attempting -> Succeeded, or
Attempting -> Retrying -> Attempting ... until it ends Cancelled or
Exhausted. Each state change is reported through an optional
``on_progress`` callback so any presentation layer can render live status.

Typical composition: the circuit breaker guards a single attempt and this
helper governs the attempt loop (see CircuitBreakerRegistry.call).
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from wayfarer.resilience.errors import (
    CircuitOpenError,
    CircuitTimeoutError,
    RetryCancelledError,
    RetryExhaustedError,
)

logger = logging.getLogger(__name__)


class RetryState(str, enum.Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


@dataclass
class RetryProgress:
    current_attempt: int
    max_attempts: int
    state: RetryState
    is_retrying: bool
    next_retry_delay: Optional[float] = None
    estimated_completion: Optional[float] = None  # epoch seconds
    error: Optional[str] = None


@dataclass
class RetryAttempt:
    attempt: int
    started_at: float
    delay: float = 0.0
    error: Optional[BaseException] = None


class CancellationToken:
    """Cooperative cancel flag owned by the caller of one retry session."""

    def __init__(self):
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        # Monotonic: there is no way back to un-cancelled
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    async def wait(self) -> None:
        """Block until cancel() is called."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self._cancelled}>"


def create_cancellation_token() -> CancellationToken:
    return CancellationToken()


ProgressCallback = Callable[[RetryProgress], None]
RetryCondition = Callable[[BaseException], bool]


def is_transient_error(error: BaseException) -> bool:
    """
    Classify errors worth retrying against a remote dependency.

    Timeouts, connection failures, HTTP 408/429/5xx and breaker deadline
    misses are transient. Cancellations, open circuits and client errors
    (auth, bad request) are not.
    """
    if isinstance(error, (RetryCancelledError, CircuitOpenError, asyncio.CancelledError)):
        return False
    if isinstance(error, CircuitTimeoutError):
        return True
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status >= 500 or status in (408, 429)
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    return False


def _retry_any(error: BaseException) -> bool:
    return not isinstance(error, (RetryCancelledError, CircuitOpenError))


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    # None retries every failure except an open circuit
    retry_condition: Optional[RetryCondition] = None
    on_progress: Optional[ProgressCallback] = None
    on_retry: Optional[Callable[[int, float, BaseException], None]] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")


# Preset policies per failure family (seconds)
RETRY_PRESETS: Dict[str, Dict[str, Any]] = {
    "network": {"max_attempts": 3, "base_delay": 1.0, "max_delay": 10.0, "backoff_multiplier": 2.0},
    "rate_limit": {"max_attempts": 5, "base_delay": 2.0, "max_delay": 30.0, "backoff_multiplier": 2.5},
    "server_error": {"max_attempts": 3, "base_delay": 2.0, "max_delay": 15.0, "backoff_multiplier": 2.0},
    "timeout": {"max_attempts": 2, "base_delay": 0.5, "max_delay": 5.0, "backoff_multiplier": 3.0},
}


class RetryManager:
    """
    Runs an async operation up to ``max_attempts`` times.

    Between attempts it waits ``base_delay * backoff_multiplier ** (n - 1)``
    seconds (capped at ``max_delay``). The wait is an asyncio wait on the
    cancellation token, so a cancel wakes the loop immediately.
    """

    def __init__(self, name: str, config: Optional[RetryConfig] = None, **overrides):
        self.name = name
        if config is None:
            config = RetryConfig(**overrides)
        elif overrides:
            config = RetryConfig(**{**config.__dict__, **overrides})
        self.config = config

    @classmethod
    def for_network_errors(cls, name: str, **overrides) -> "RetryManager":
        return cls._from_preset(name, "network", overrides)

    @classmethod
    def for_rate_limit(cls, name: str, **overrides) -> "RetryManager":
        return cls._from_preset(name, "rate_limit", overrides)

    @classmethod
    def for_server_errors(cls, name: str, **overrides) -> "RetryManager":
        return cls._from_preset(name, "server_error", overrides)

    @classmethod
    def for_timeout(cls, name: str, **overrides) -> "RetryManager":
        return cls._from_preset(name, "timeout", overrides)

    @classmethod
    def _from_preset(cls, name: str, preset: str, overrides: Dict[str, Any]) -> "RetryManager":
        params = {"retry_condition": is_transient_error, **RETRY_PRESETS[preset], **overrides}
        return cls(name, RetryConfig(**params))

    def calculate_delay(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1``."""
        cfg = self.config
        delay = cfg.base_delay * (cfg.backoff_multiplier ** (attempt - 1))
        return min(delay, cfg.max_delay)

    def _report(self, progress: RetryProgress, on_progress: Optional[ProgressCallback]) -> None:
        if on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception as e:
            logger.warning(f"Progress callback for {self.name} raised: {e}")

    def _cancelled(self, attempts: List[RetryAttempt], on_progress, where: str) -> RetryCancelledError:
        current = len(attempts)
        self._report(
            RetryProgress(
                current_attempt=current,
                max_attempts=self.config.max_attempts,
                state=RetryState.CANCELLED,
                is_retrying=False,
            ),
            on_progress,
        )
        logger.info(f"{self.name} cancelled {where} (after {current} attempt(s))")
        return RetryCancelledError(f"{self.name} cancelled {where}", attempts=attempts)

    async def _wait(self, delay: float, token: Optional[CancellationToken]) -> bool:
        """Sleep for ``delay``; returns False if the token was cancelled meanwhile."""
        if token is None:
            await asyncio.sleep(delay)
            return True
        if token.is_cancelled:
            return False
        try:
            await asyncio.wait_for(token.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Any:
        cfg = self.config
        on_progress = on_progress or cfg.on_progress
        should_retry = cfg.retry_condition or _retry_any

        start = time.monotonic()
        attempts: List[RetryAttempt] = []
        last_error: Optional[BaseException] = None

        for attempt in range(1, cfg.max_attempts + 1):
            if token is not None and token.is_cancelled:
                raise self._cancelled(attempts, on_progress, f"before attempt {attempt}")

            has_next = attempt < cfg.max_attempts
            upcoming = self.calculate_delay(attempt) if has_next else None
            self._report(
                RetryProgress(
                    current_attempt=attempt,
                    max_attempts=cfg.max_attempts,
                    state=RetryState.ATTEMPTING,
                    is_retrying=attempt > 1,
                    next_retry_delay=upcoming,
                    estimated_completion=time.time() + upcoming if upcoming is not None else None,
                ),
                on_progress,
            )

            record = RetryAttempt(attempt=attempt, started_at=time.time())
            attempts.append(record)
            try:
                result = await operation()
            except Exception as e:
                record.error = e
                last_error = e
            else:
                if token is not None and token.is_cancelled:
                    raise self._cancelled(attempts, on_progress, f"during attempt {attempt}")
                self._report(
                    RetryProgress(
                        current_attempt=attempt,
                        max_attempts=cfg.max_attempts,
                        state=RetryState.SUCCEEDED,
                        is_retrying=False,
                    ),
                    on_progress,
                )
                if attempt > 1:
                    logger.info(f"✅ Retry success for {self.name} on attempt {attempt}/{cfg.max_attempts}")
                return result

            if token is not None and token.is_cancelled:
                raise self._cancelled(attempts, on_progress, f"during attempt {attempt}")

            if not has_next or not should_retry(last_error):
                break

            delay = self.calculate_delay(attempt)
            record.delay = delay
            if cfg.on_retry is not None:
                cfg.on_retry(attempt, delay, last_error)

            logger.warning(
                f"⚠️ {self.name} attempt {attempt}/{cfg.max_attempts} failed, "
                f"retrying in {delay:.2f}s: {last_error}"
            )
            self._report(
                RetryProgress(
                    current_attempt=attempt,
                    max_attempts=cfg.max_attempts,
                    state=RetryState.RETRYING,
                    is_retrying=True,
                    next_retry_delay=delay,
                    estimated_completion=time.time() + delay,
                    error=str(last_error),
                ),
                on_progress,
            )

            if not await self._wait(delay, token):
                raise self._cancelled(attempts, on_progress, "during retry delay")

        total_time = time.monotonic() - start
        self._report(
            RetryProgress(
                current_attempt=len(attempts),
                max_attempts=cfg.max_attempts,
                state=RetryState.EXHAUSTED,
                is_retrying=False,
                error=str(last_error),
            ),
            on_progress,
        )
        logger.error(
            f"❌ {self.name} failed permanently after {len(attempts)} attempts "
            f"in {total_time:.2f}s: {last_error}"
        )
        raise RetryExhaustedError(
            f"{self.name} failed after {len(attempts)} attempts",
            attempts=attempts,
            last_error=last_error,
            total_time=total_time,
        )


async def retry(
    operation: Callable[[], Awaitable[Any]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    backoff_multiplier: float = 2.0,
    token: Optional[CancellationToken] = None,
    on_progress: Optional[ProgressCallback] = None,
    retry_condition: Optional[RetryCondition] = None,
    name: str = "operation",
) -> Any:
    """One-shot retry loop; see RetryManager for the semantics."""
    manager = RetryManager(
        name,
        RetryConfig(
            max_attempts=max_attempts,
            base_delay=base_delay,
            max_delay=max_delay,
            backoff_multiplier=backoff_multiplier,
            retry_condition=retry_condition,
        ),
    )
    return await manager.execute(operation, token=token, on_progress=on_progress)
