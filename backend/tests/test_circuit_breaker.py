"""
Unit tests for the circuit breaker guarding the language model and places provider.
"""
import asyncio

import pytest

from place_search.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _fail():
    raise RuntimeError("upstream down")


def _trip(cb: CircuitBreaker, failures: int) -> None:
    for _ in range(failures):
        with pytest.raises(RuntimeError):
            cb.call(_fail)


def test_circuit_breaker_closed_state():
    """Test circuit breaker in closed state (normal operation)."""
    cb = CircuitBreaker("test", failure_threshold=0.5, time_window_seconds=60)

    assert cb.state == CircuitState.CLOSED
    assert cb.call(lambda: "success") == "success"


def test_circuit_breaker_stays_closed_below_min_requests():
    """Failures below min_requests_for_threshold never open the circuit."""
    cb = CircuitBreaker("test", min_requests_for_threshold=5, clock=FakeClock())

    _trip(cb, 4)

    assert cb.state == CircuitState.CLOSED


def test_circuit_breaker_opens_on_error_rate():
    """Test circuit opens once the error rate crosses the threshold."""
    cb = CircuitBreaker(
        "test",
        failure_threshold=0.5,
        min_requests_for_threshold=4,
        clock=FakeClock(),
    )

    cb.call(lambda: "ok")
    cb.call(lambda: "ok")
    _trip(cb, 2)

    assert cb.state == CircuitState.OPEN


def test_circuit_breaker_open_state_rejects_calls():
    """Test circuit breaker in open state fails fast without calling through."""
    cb = CircuitBreaker("test", min_requests_for_threshold=2, clock=FakeClock())
    _trip(cb, 2)
    called = []

    with pytest.raises(CircuitBreakerOpenError):
        cb.call(lambda: called.append(1))

    assert called == []


def test_circuit_breaker_half_open_after_open_duration():
    """Test open circuit moves to half-open after open_duration_seconds."""
    clock = FakeClock()
    cb = CircuitBreaker(
        "test",
        open_duration_seconds=30,
        min_requests_for_threshold=2,
        clock=clock,
    )
    _trip(cb, 2)
    assert cb.state == CircuitState.OPEN

    clock.now += 30

    assert cb.state == CircuitState.HALF_OPEN


def test_circuit_breaker_trial_success_closes():
    """A successful trial call in half-open closes the circuit."""
    clock = FakeClock()
    cb = CircuitBreaker("test", min_requests_for_threshold=2, clock=clock)
    _trip(cb, 2)
    clock.now += 31

    assert cb.call(lambda: "recovered") == "recovered"
    assert cb.state == CircuitState.CLOSED


def test_circuit_breaker_trial_failure_reopens():
    """A failed trial call in half-open re-opens the circuit."""
    clock = FakeClock()
    cb = CircuitBreaker("test", min_requests_for_threshold=2, clock=clock)
    _trip(cb, 2)
    clock.now += 31

    _trip(cb, 1)

    assert cb.state == CircuitState.OPEN


def test_circuit_breaker_window_expires_old_failures():
    """Failures older than the window do not count toward the error rate."""
    clock = FakeClock()
    cb = CircuitBreaker(
        "test",
        time_window_seconds=60,
        min_requests_for_threshold=3,
        clock=clock,
    )
    _trip(cb, 2)
    clock.now += 61
    cb.call(lambda: "ok")

    assert cb.state == CircuitState.CLOSED
    assert cb.get_metrics()["recent_requests"] == 1


@pytest.mark.asyncio
async def test_circuit_breaker_async_call():
    """Test async calls pass through and record success."""
    cb = CircuitBreaker("test", clock=FakeClock())

    async def work():
        return 42

    assert await cb.call_async(work) == 42
    assert cb.get_metrics()["recent_requests"] == 1


@pytest.mark.asyncio
async def test_circuit_breaker_async_cancellation_counts_as_failure():
    """A call cancelled by a timeout is recorded as a failure."""
    cb = CircuitBreaker("test", clock=FakeClock())

    async def slow():
        await asyncio.sleep(10)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(cb.call_async(slow), timeout=0.01)

    assert cb.get_metrics()["recent_failures"] == 1


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_allows_single_trial_call():
    """Only one trial call may be in flight while half-open."""
    clock = FakeClock()
    cb = CircuitBreaker("test", min_requests_for_threshold=2, clock=clock)
    _trip(cb, 2)
    clock.now += 31
    release = asyncio.Event()

    async def trial_call():
        await release.wait()
        return "ok"

    first = asyncio.create_task(cb.call_async(trial_call))
    await asyncio.sleep(0)

    with pytest.raises(CircuitBreakerOpenError):
        await cb.call_async(trial_call)

    release.set()
    assert await first == "ok"
    assert cb.state == CircuitState.CLOSED


def test_circuit_breaker_metrics():
    """Test circuit breaker metrics snapshot."""
    cb = CircuitBreaker("test", clock=FakeClock())
    cb.call(lambda: "ok")
    _trip(cb, 1)

    metrics = cb.get_metrics()

    assert metrics["name"] == "test"
    assert metrics["state"] == "closed"
    assert metrics["recent_requests"] == 2
    assert metrics["recent_failures"] == 1
    assert metrics["error_rate"] == 0.5
