"""Tests for retry, circuit breakers and degradation mode."""

import pytest

from src.resilience.breakers import BITBUCKET, MEMGRAPH, QDRANT, VOYAGE, BreakerRegistry
from src.resilience.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from src.resilience.retry import compute_delay, with_retry


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Recorder:
    """Records the delays passed to the retry sleep."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _failing(counter: list, error: Exception = RuntimeError("boom")):
    async def fn():
        counter.append(1)
        raise error

    return fn


async def test_retry_calls_max_retries_plus_one():
    """An always-failing function is called 4 times with max_retries=3."""
    calls = []
    sleep = Recorder()
    with pytest.raises(RuntimeError):
        await with_retry(_failing(calls), max_retries=3, sleep=sleep)
    assert len(calls) == 4
    assert len(sleep.delays) == 3


async def test_retry_veto_calls_once():
    calls = []
    with pytest.raises(RuntimeError):
        await with_retry(_failing(calls), retry_on=lambda e: False, sleep=Recorder())
    assert len(calls) == 1


async def test_retry_never_retries_open_circuit():
    calls = []
    with pytest.raises(CircuitOpenError):
        await with_retry(_failing(calls, CircuitOpenError("qdrant")), sleep=Recorder())
    assert len(calls) == 1


async def test_retry_returns_first_success():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("reset")
        return "ok"

    sleep = Recorder()
    assert await with_retry(flaky, base_delay=1.0, jitter=False, sleep=sleep) == "ok"
    assert sleep.delays == [1.0, 2.0]


def test_compute_delay_caps_and_jitters():
    assert compute_delay(0, 1.0, 16.0, jitter=False) == 1.0
    assert compute_delay(3, 1.0, 16.0, jitter=False) == 8.0
    assert compute_delay(10, 1.0, 16.0, jitter=False) == 16.0
    for attempt in range(6):
        delay = compute_delay(attempt, 1.0, 16.0, jitter=True)
        full = min(2 ** attempt, 16.0)
        assert full * 0.5 <= delay <= full


async def _fail():
    raise RuntimeError("down")


async def _ok():
    return "ok"


async def test_breaker_opens_on_threshold():
    """With threshold 5 the breaker opens on the fifth failure inside the window."""
    clock = FakeClock()
    breaker = CircuitBreaker("svc", failure_threshold=5, reset_timeout=30.0, monitor_window=60.0, clock=clock)
    for _ in range(5):
        assert breaker.state == CircuitState.CLOSED
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
        clock.advance(1)
    assert breaker.state == CircuitState.OPEN


async def test_open_breaker_does_not_call_function():
    clock = FakeClock()
    breaker = CircuitBreaker("svc", failure_threshold=1, reset_timeout=30.0, clock=clock)
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)

    called = []

    async def tracked():
        called.append(1)
        return "ok"

    with pytest.raises(CircuitOpenError):
        await breaker.call(tracked)
    assert called == []


async def test_failures_outside_window_do_not_open():
    clock = FakeClock()
    breaker = CircuitBreaker("svc", failure_threshold=3, monitor_window=10.0, clock=clock)
    for _ in range(5):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
        clock.advance(6)
    assert breaker.state == CircuitState.CLOSED


async def test_half_open_probe_success_closes():
    clock = FakeClock()
    breaker = CircuitBreaker("svc", failure_threshold=5, reset_timeout=30.0, clock=clock)
    for _ in range(5):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)
    assert breaker.state == CircuitState.OPEN

    clock.advance(29)
    with pytest.raises(CircuitOpenError):
        await breaker.call(_ok)

    clock.advance(1)
    assert await breaker.call(_ok) == "ok"
    assert breaker.state == CircuitState.CLOSED
    assert breaker.get_stats()["failures"] == 0


async def test_half_open_probe_failure_reopens():
    clock = FakeClock()
    breaker = CircuitBreaker("svc", failure_threshold=1, reset_timeout=10.0, clock=clock)
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    clock.advance(10)
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    assert breaker.state == CircuitState.OPEN

    # The reset timer restarted with the failed probe
    clock.advance(5)
    with pytest.raises(CircuitOpenError):
        await breaker.call(_ok)


def test_half_open_admits_a_single_probe():
    clock = FakeClock()
    breaker = CircuitBreaker("svc", failure_threshold=1, reset_timeout=10.0, clock=clock)
    with pytest.raises(ZeroDivisionError):
        breaker.call_sync(lambda: 1 / 0)
    clock.advance(10)

    def probe():
        assert breaker.state == CircuitState.HALF_OPEN
        # A second caller arriving during the probe fails fast
        with pytest.raises(CircuitOpenError):
            breaker.call_sync(lambda: "second")
        return "probe"

    assert breaker.call_sync(probe) == "probe"
    assert breaker.state == CircuitState.CLOSED


def test_success_while_closed_resets_failures():
    breaker = CircuitBreaker("svc", failure_threshold=3)
    for _ in range(2):
        with pytest.raises(ZeroDivisionError):
            breaker.call_sync(lambda: 1 / 0)
    assert breaker.get_stats()["failures"] == 2
    breaker.call_sync(lambda: None)
    assert breaker.get_stats()["failures"] == 0


def test_registry_states_and_degradation():
    registry = BreakerRegistry()
    states = registry.get_states()
    assert set(states) == {"openrouter", VOYAGE, BITBUCKET, QDRANT, MEMGRAPH}
    assert all(s == {"state": "CLOSED", "failures": 0} for s in states.values())

    mode = registry.get_degradation_mode(voyage_api_key="key", llm_configured=True)
    assert not mode.degraded

    # Without an embedding key, embeddings are off
    assert registry.get_degradation_mode(voyage_api_key=None, llm_configured=True).no_embeddings


def test_degradation_follows_open_breakers():
    registry = BreakerRegistry()
    qdrant = registry.get(QDRANT)
    for _ in range(qdrant.failure_threshold):
        with pytest.raises(ConnectionError):
            qdrant.call_sync(_raise_connection_error)

    mode = registry.get_degradation_mode(voyage_api_key="key", llm_configured=True)
    assert mode.no_vectors is True
    assert mode.no_graph is False
    assert mode.to_dict()["noVectors"] is True
    assert registry.get_states()[QDRANT]["state"] == "OPEN"


def _raise_connection_error():
    raise ConnectionError("refused")
