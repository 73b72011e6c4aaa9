"""
Unit Tests — CircuitBreaker / CircuitBreakerRegistry
════════════════════════════════════════════════════

Coverage targets:
  ✅ CLOSED stays CLOSED below threshold
  ✅ Threshold failures → OPEN; further calls rejected without invoking op
  ✅ Rejected call with fallback → fallback value
  ✅ Rejected call without fallback → CircuitOpenError
  ✅ Failing call with fallback → fallback value, failure still counted
  ✅ Recovery timeout → HALF_OPEN, exactly one trial admitted
  ✅ Trial success → CLOSED with failures reset
  ✅ Trial failure → OPEN with timer restarted
  ✅ Success in CLOSED resets the failure count
  ✅ Failures further apart than the monitoring window do not accumulate
  ✅ Registry creates on first use, reports status, resets all
"""

from __future__ import annotations

import asyncio

import pytest

from skimmer.core.exceptions import CircuitOpenError
from skimmer.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)


async def _boom():
    raise ConnectionError("dependency down")


async def _ok():
    return "ok"


def _breaker(clock, threshold: int = 3, recovery: float = 60.0, window: float = 300.0) -> CircuitBreaker:
    return CircuitBreaker(
        "test",
        CircuitBreakerConfig(failure_threshold=threshold, recovery_timeout=recovery, monitoring_window=window),
        clock=clock,
    )


async def _fail_n(breaker: CircuitBreaker, n: int) -> None:
    for _ in range(n):
        with pytest.raises(ConnectionError):
            await breaker.execute(_boom)


@pytest.mark.unit
class TestClosedState:

    async def test_below_threshold_stays_closed(self, clock):
        breaker = _breaker(clock, threshold=3)
        await _fail_n(breaker, 2)
        assert breaker.state is CircuitState.CLOSED
        assert breaker.get_status()["failures"] == 2

    async def test_success_resets_failure_count(self, clock):
        breaker = _breaker(clock, threshold=3)
        await _fail_n(breaker, 2)
        assert await breaker.execute(_ok) == "ok"
        assert breaker.get_status()["failures"] == 0
        await _fail_n(breaker, 2)
        assert breaker.state is CircuitState.CLOSED

    async def test_failures_outside_window_do_not_accumulate(self, clock):
        breaker = _breaker(clock, threshold=3, window=300.0)
        await _fail_n(breaker, 2)
        clock.advance(301)
        await _fail_n(breaker, 1)
        assert breaker.state is CircuitState.CLOSED
        assert breaker.get_status()["failures"] == 1


@pytest.mark.unit
class TestOpenState:

    async def test_threshold_failures_open_circuit(self, clock):
        breaker = _breaker(clock, threshold=3)
        await _fail_n(breaker, 3)
        status = breaker.get_status()
        assert status["state"] == "OPEN"
        assert status["next_attempt_time"] == clock.now + 60.0

    async def test_open_rejects_without_calling_operation(self, clock):
        breaker = _breaker(clock, threshold=1)
        await _fail_n(breaker, 1)

        calls = 0

        async def _counted():
            nonlocal calls
            calls += 1
            return "ok"

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(_counted)
        assert exc_info.value.breaker_name == "test"
        assert calls == 0

    async def test_open_returns_fallback(self, clock):
        breaker = _breaker(clock, threshold=1)
        await _fail_n(breaker, 1)
        assert await breaker.execute(_ok, fallback=lambda: "degraded") == "degraded"

    async def test_async_fallback_is_awaited(self, clock):
        breaker = _breaker(clock, threshold=1)
        await _fail_n(breaker, 1)

        async def _fallback():
            return {"fallback": True}

        assert await breaker.execute(_ok, fallback=_fallback) == {"fallback": True}

    async def test_failure_with_fallback_returns_fallback_and_counts(self, clock):
        breaker = _breaker(clock, threshold=2)
        assert await breaker.execute(_boom, fallback=lambda: "fb") == "fb"
        assert await breaker.execute(_boom, fallback=lambda: "fb") == "fb"
        assert breaker.state is CircuitState.OPEN


@pytest.mark.unit
class TestHalfOpenState:

    async def test_recovery_timeout_admits_trial_and_closes_on_success(self, clock):
        breaker = _breaker(clock, threshold=1, recovery=60.0)
        await _fail_n(breaker, 1)
        clock.advance(60)

        assert await breaker.execute(_ok) == "ok"
        assert breaker.state is CircuitState.CLOSED
        assert breaker.get_status()["failures"] == 0

    async def test_trial_failure_reopens_with_fresh_timer(self, clock):
        breaker = _breaker(clock, threshold=1, recovery=60.0)
        await _fail_n(breaker, 1)
        clock.advance(61)

        await _fail_n(breaker, 1)
        assert breaker.state is CircuitState.OPEN
        assert breaker.get_status()["next_attempt_time"] == clock.now + 60.0

        clock.advance(30)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(_ok)

    async def test_exactly_one_concurrent_trial(self, clock):
        breaker = _breaker(clock, threshold=1, recovery=10.0)
        await _fail_n(breaker, 1)
        clock.advance(10)

        release = asyncio.Event()
        trial_calls = 0

        async def _slow_trial():
            nonlocal trial_calls
            trial_calls += 1
            await release.wait()
            return "trial"

        trial = asyncio.create_task(breaker.execute(_slow_trial))
        await asyncio.sleep(0)
        assert breaker.state is CircuitState.HALF_OPEN

        second = await breaker.execute(_slow_trial, fallback=lambda: "rejected")
        assert second == "rejected"

        release.set()
        assert await trial == "trial"
        assert trial_calls == 1
        assert breaker.state is CircuitState.CLOSED

    async def test_cancelled_trial_frees_the_slot(self, clock):
        breaker = _breaker(clock, threshold=1, recovery=10.0)
        await _fail_n(breaker, 1)
        clock.advance(10)

        async def _hang():
            await asyncio.Event().wait()

        trial = asyncio.create_task(breaker.execute(_hang))
        await asyncio.sleep(0)
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        assert await breaker.execute(_ok) == "ok"
        assert breaker.state is CircuitState.CLOSED


@pytest.mark.unit
class TestRegistry:

    def test_get_creates_once(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        first = registry.get("metadata-store-read")
        assert registry.get("metadata-store-read") is first
        assert first.config.failure_threshold == 5

    def test_per_breaker_config_override(self, clock):
        registry = CircuitBreakerRegistry(clock=clock)
        custom = registry.get("webhook-delivery", CircuitBreakerConfig(failure_threshold=2))
        assert custom.config.failure_threshold == 2

    async def test_status_open_breakers_and_reset_all(self, clock):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock=clock)
        await registry.get("b").execute(_ok)
        await _fail_n(registry.get("a"), 1)

        assert registry.open_breakers() == ["a"]
        assert set(registry.all_status()) == {"a", "b"}
        assert registry.all_status()["a"]["state"] == "OPEN"

        registry.reset_all()
        assert registry.open_breakers() == []
        assert registry.all_status()["a"]["failures"] == 0
