"""Tests for retry with backoff, progress and cancellation."""
import asyncio
import time
import httpx
import pytest

from wayfarer.resilience import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitTimeoutError,
    DependencyPolicy,
    RetryCancelledError,
    RetryConfig,
    RetryExhaustedError,
    RetryManager,
    RetryState,
    create_cancellation_token,
    is_transient_error,
    retry,
)


class Flaky:
    """Fails ``failures`` times, then returns ``value``."""

    def __init__(self, failures, value="ok", error=None):
        self.failures = failures
        self.value = value
        self.error = error or ConnectionError("connection reset")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


def _status_error(code):
    request = httpx.Request("GET", "https://api.example.com/forecast")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


class TestRetryLoop:
    async def test_first_attempt_success(self):
        op = Flaky(0)
        assert await retry(op, base_delay=0) == "ok"
        assert op.calls == 1

    async def test_succeeds_after_failures(self):
        op = Flaky(2)
        assert await retry(op, max_attempts=3, base_delay=0) == "ok"
        assert op.calls == 3

    async def test_exhaustion_carries_every_attempt(self):
        op = Flaky(10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry(op, max_attempts=4, base_delay=0)

        error = exc_info.value
        assert op.calls == 4
        assert len(error.attempts) == 4
        assert [a.attempt for a in error.attempts] == [1, 2, 3, 4]
        assert isinstance(error.last_error, ConnectionError)
        assert len(error.errors) == 4

    async def test_non_retryable_error_stops_early(self):
        op = Flaky(10, error=ValueError("bad request"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry(op, max_attempts=5, base_delay=0, retry_condition=is_transient_error)

        assert op.calls == 1
        assert isinstance(exc_info.value.last_error, ValueError)

    async def test_open_circuit_is_not_retried_by_default(self):
        op = Flaky(10, error=CircuitOpenError("Maps API", time.time() + 30))

        with pytest.raises(RetryExhaustedError):
            await retry(op, max_attempts=3, base_delay=0)

        assert op.calls == 1

    async def test_on_retry_hook(self):
        seen = []
        manager = RetryManager(
            "weather",
            RetryConfig(max_attempts=3, base_delay=0, on_retry=lambda n, d, e: seen.append((n, d))),
        )

        await manager.execute(Flaky(2))

        assert seen == [(1, 0), (2, 0)]


class TestBackoff:
    def test_delays_grow_then_cap(self):
        manager = RetryManager("geo", base_delay=1.0, max_delay=10.0, backoff_multiplier=2.0)
        delays = [manager.calculate_delay(n) for n in range(1, 7)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]

    def test_delays_are_monotonic(self):
        manager = RetryManager.for_rate_limit("rates")
        delays = [manager.calculate_delay(n) for n in range(1, 10)]
        assert delays == sorted(delays)
        assert max(delays) == manager.config.max_delay

    def test_presets(self):
        assert RetryManager.for_network_errors("n").config.max_attempts == 3
        assert RetryManager.for_rate_limit("r").config.backoff_multiplier == 2.5
        assert RetryManager.for_server_errors("s").config.base_delay == 2.0
        assert RetryManager.for_timeout("t", max_attempts=4).config.max_attempts == 4

    @pytest.mark.parametrize("kwargs", [
        {"max_attempts": 0},
        {"base_delay": -1},
        {"backoff_multiplier": 0.5},
    ])
    def test_invalid_config(self, kwargs):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)


class TestProgress:
    async def test_progress_sequence(self):
        events = []

        await retry(Flaky(1), max_attempts=3, base_delay=0, on_progress=events.append)

        assert [e.state for e in events] == [
            RetryState.ATTEMPTING,
            RetryState.RETRYING,
            RetryState.ATTEMPTING,
            RetryState.SUCCEEDED,
        ]
        assert events[0].is_retrying is False
        assert events[2].is_retrying is True
        assert events[1].error == "connection reset"
        assert events[1].current_attempt == 1
        assert events[1].max_attempts == 3

    async def test_exhausted_event(self):
        events = []

        with pytest.raises(RetryExhaustedError):
            await retry(Flaky(5), max_attempts=2, base_delay=0, on_progress=events.append)

        assert events[-1].state == RetryState.EXHAUSTED
        assert events[-1].current_attempt == 2

    async def test_broken_callback_does_not_break_retry(self):
        def explode(progress):
            raise RuntimeError("ui gone")

        assert await retry(Flaky(1), base_delay=0, on_progress=explode) == "ok"


class TestCancellation:
    async def test_cancelled_before_first_attempt(self):
        token = create_cancellation_token()
        token.cancel()
        op = Flaky(0)

        with pytest.raises(RetryCancelledError) as exc_info:
            await retry(op, token=token, base_delay=0)

        assert op.calls == 0
        assert exc_info.value.attempts == []

    async def test_cancel_during_attempt_wins_over_success(self):
        token = create_cancellation_token()

        async def op():
            token.cancel()
            return "ok"

        with pytest.raises(RetryCancelledError) as exc_info:
            await retry(op, token=token, base_delay=0)

        assert len(exc_info.value.attempts) == 1

    async def test_cancel_during_attempt_wins_over_exhaustion(self):
        token = create_cancellation_token()

        async def op():
            token.cancel()
            raise ConnectionError("down")

        with pytest.raises(RetryCancelledError):
            await retry(op, token=token, max_attempts=1, base_delay=0)

    async def test_cancel_wakes_backoff_wait(self):
        token = create_cancellation_token()
        op = Flaky(10)
        events = []

        async def cancel_soon():
            await asyncio.sleep(0.05)
            token.cancel()

        canceller = asyncio.create_task(cancel_soon())
        started = time.monotonic()
        with pytest.raises(RetryCancelledError):
            await retry(op, token=token, max_attempts=3, base_delay=30.0, on_progress=events.append)
        await canceller

        assert time.monotonic() - started < 5
        assert op.calls == 1
        assert events[-1].state == RetryState.CANCELLED

    async def test_token_is_monotonic(self):
        token = create_cancellation_token()
        token.cancel()
        token.cancel()
        assert token.is_cancelled
        await asyncio.wait_for(token.wait(), timeout=1)


class TestTransientErrors:
    @pytest.mark.parametrize("error", [
        httpx.ConnectTimeout("connect timeout"),
        httpx.ReadTimeout("read timeout"),
        httpx.ConnectError("refused"),
        ConnectionResetError("reset"),
        TimeoutError("slow"),
        CircuitTimeoutError("AI Service", 30.0),
    ])
    def test_transient(self, error):
        assert is_transient_error(error) is True

    @pytest.mark.parametrize("code", [408, 429, 500, 502, 503, 504])
    def test_transient_status_codes(self, code):
        assert is_transient_error(_status_error(code)) is True

    @pytest.mark.parametrize("code", [400, 401, 403, 404, 422])
    def test_client_errors_are_permanent(self, code):
        assert is_transient_error(_status_error(code)) is False

    def test_permanent(self):
        assert is_transient_error(ValueError("bad")) is False
        assert is_transient_error(CircuitOpenError("Maps API", time.time())) is False
        assert is_transient_error(RetryCancelledError("stop")) is False


def _weather_registry():
    return CircuitBreakerRegistry({
        "weather": DependencyPolicy(
            "Weather API",
            CircuitBreakerConfig(failure_threshold=2, reset_timeout=30.0, timeout=1.0),
            "network",
            {"max_attempts": 3, "base_delay": 0},
        ),
    })


class TestRegistry:
    def test_default_dependencies(self):
        registry = CircuitBreakerRegistry()
        assert set(registry.names()) == {"ai", "maps", "mapbox", "weather", "geocoding", "database"}
        assert registry.get("ai").config.failure_threshold == 3
        assert registry.retry_manager("maps").config.max_attempts == 1

    def test_unknown_dependency(self):
        with pytest.raises(KeyError):
            CircuitBreakerRegistry().get("flights")

    async def test_call_retries_through_breaker(self):
        registry = _weather_registry()
        op = Flaky(1, value="12°C", error=httpx.ConnectError("refused"))

        assert await registry.call("weather", op) == "12°C"
        assert op.calls == 2
        assert registry.get("weather").get_state().failure_count == 0

    async def test_open_breaker_stops_retry_loop(self):
        registry = _weather_registry()
        op = Flaky(10, error=httpx.ConnectError("refused"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            await registry.call("weather", op)

        assert op.calls == 2
        assert isinstance(exc_info.value.last_error, CircuitOpenError)
        assert not registry.get("weather").is_healthy()

    async def test_fallback_after_exhaustion(self):
        registry = _weather_registry()
        op = Flaky(10, error=httpx.ConnectError("refused"))

        async def cached():
            return "cached forecast"

        assert await registry.call("weather", op, fallback=cached) == "cached forecast"

    async def test_failures_are_isolated_per_dependency(self):
        registry = CircuitBreakerRegistry()
        for _ in range(3):
            with pytest.raises(RuntimeError):
                await registry.get("ai").execute(Flaky(1, error=RuntimeError("500")))

        assert not registry.get("ai").is_healthy()
        assert registry.get("weather").is_healthy()

        registry.reset_all()
        assert all(entry["healthy"] for entry in registry.get_status())
