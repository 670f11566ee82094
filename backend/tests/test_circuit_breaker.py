"""Tests for the per-dependency circuit breaker."""
import asyncio
import pytest

from wayfarer.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitOpenError,
    CircuitTimeoutError,
)


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "Weather API",
        CircuitBreakerConfig(failure_threshold=3, reset_timeout=30.0, timeout=1.0),
        clock=clock,
    )


async def ok():
    return "sunny"


async def boom():
    raise RuntimeError("upstream 502")


async def _fail(breaker, times):
    for _ in range(times):
        with pytest.raises(RuntimeError):
            await breaker.execute(boom)


class TestClosedState:
    async def test_success_passes_through(self, breaker):
        assert await breaker.execute(ok) == "sunny"
        stats = breaker.get_stats()
        assert stats.total_requests == 1
        assert stats.successful_requests == 1

    async def test_stays_closed_below_threshold(self, breaker):
        await _fail(breaker, 2)
        state = breaker.get_state()
        assert state.status == CircuitState.CLOSED
        assert state.failure_count == 2

    async def test_success_resets_failure_count(self, breaker):
        await _fail(breaker, 2)
        await breaker.execute(ok)
        assert breaker.get_state().failure_count == 0

    async def test_opens_at_threshold(self, breaker, clock):
        await _fail(breaker, 3)
        state = breaker.get_state()
        assert state.status == CircuitState.OPEN
        assert state.next_attempt_time == clock.now + 30.0
        assert state.last_failure_time == clock.now
        assert breaker.get_stats().circuit_open_count == 1
        assert not breaker.is_healthy()


class TestOpenState:
    async def test_short_circuits_without_calling(self, breaker):
        await _fail(breaker, 3)
        calls = []

        async def tracked():
            calls.append(1)
            return "sunny"

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(tracked)

        assert calls == []
        assert exc_info.value.name == "Weather API"
        assert breaker.get_stats().short_circuited_requests == 1

    async def test_retry_after(self, breaker, clock):
        await _fail(breaker, 3)
        clock.advance(10)
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(ok)
        assert exc_info.value.retry_after(clock()) == pytest.approx(20.0)

    async def test_fallback_used_while_open(self, breaker):
        await _fail(breaker, 3)

        async def cached():
            return "cached forecast"

        assert await breaker.execute(ok, fallback=cached) == "cached forecast"
        assert breaker.get_stats().fallback_responses == 1


class TestHalfOpen:
    async def test_successful_probe_closes(self, breaker, clock):
        await _fail(breaker, 3)
        clock.advance(30)

        assert await breaker.execute(ok) == "sunny"

        state = breaker.get_state()
        assert state.status == CircuitState.CLOSED
        assert state.failure_count == 0
        assert state.next_attempt_time is None

    async def test_failed_probe_reopens(self, breaker, clock):
        await _fail(breaker, 3)
        clock.advance(31)

        with pytest.raises(RuntimeError):
            await breaker.execute(boom)

        state = breaker.get_state()
        assert state.status == CircuitState.OPEN
        assert state.next_attempt_time == clock.now + 30.0
        assert breaker.get_stats().circuit_open_count == 2

    async def test_only_one_probe_in_flight(self, breaker, clock):
        await _fail(breaker, 3)
        clock.advance(30)
        release = asyncio.Event()
        probe_calls = []

        async def slow_probe():
            probe_calls.append(1)
            await release.wait()
            return "sunny"

        probe = asyncio.create_task(breaker.execute(slow_probe))
        await asyncio.sleep(0)
        assert breaker.status == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(slow_probe)
        assert exc_info.value.retry_after(clock()) == pytest.approx(breaker.config.timeout)

        release.set()
        assert await probe == "sunny"
        assert probe_calls == [1]
        assert breaker.status == CircuitState.CLOSED


class TestTimeoutAndFallback:
    async def test_slow_call_times_out(self, clock):
        breaker = CircuitBreaker(
            "AI Service",
            CircuitBreakerConfig(failure_threshold=3, reset_timeout=30.0, timeout=0.05),
            clock=clock,
        )

        async def hang():
            await asyncio.sleep(5)

        with pytest.raises(CircuitTimeoutError) as exc_info:
            await breaker.execute(hang)

        assert exc_info.value.timeout == 0.05
        assert breaker.get_state().failure_count == 1
        assert "timeout" in breaker.get_stats().last_failure_message

    async def test_operation_timeout_error_is_not_a_deadline_miss(self, breaker):
        async def lock_wait():
            raise TimeoutError("lock wait timeout exceeded")

        with pytest.raises(TimeoutError) as exc_info:
            await breaker.execute(lock_wait)

        assert not isinstance(exc_info.value, CircuitTimeoutError)
        assert str(exc_info.value) == "lock wait timeout exceeded"
        assert breaker.get_state().failure_count == 1
        assert breaker.get_stats().failed_requests == 1

    async def test_fallback_failure_still_counts(self, breaker):
        async def cached():
            return "cached"

        assert await breaker.execute(boom, fallback=cached) == "cached"

        stats = breaker.get_stats()
        assert stats.failed_requests == 1
        assert stats.fallback_responses == 1
        assert breaker.get_state().failure_count == 1


class TestReset:
    async def test_reset_zeroes_state_and_stats(self, breaker):
        await _fail(breaker, 3)

        breaker.reset()

        state = breaker.get_state()
        stats = breaker.get_stats()
        assert state.status == CircuitState.CLOSED
        assert state.failure_count == 0
        assert state.next_attempt_time is None
        assert stats.total_requests == 0
        assert stats.failed_requests == 0
        assert stats.circuit_open_count == 0
        assert await breaker.execute(ok) == "sunny"

    async def test_stats_are_a_snapshot(self, breaker):
        snapshot = breaker.get_stats()
        await breaker.execute(ok)
        assert snapshot.total_requests == 0
