"""Tests for the Core AI Service circuit breaker."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from webhook_relay.pipeline.circuit_breaker import CircuitBreaker, CircuitState

from tests.conftest import FakeClock


async def _trip(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(RuntimeError):
            await breaker.execute(AsyncMock(side_effect=RuntimeError("down")))


class TestCircuitBreaker:
    """CLOSED -> OPEN -> HALF_OPEN transitions."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self):
        breaker = CircuitBreaker(clock=FakeClock())
        action = AsyncMock()
        assert await breaker.execute(action) is True
        action.assert_awaited_once()
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failure_reraised_and_counted(self):
        breaker = CircuitBreaker(clock=FakeClock())
        await _trip(breaker, 1)
        assert breaker.failure_count == 1
        assert breaker.is_open is False

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self):
        breaker = CircuitBreaker(threshold=5, clock=FakeClock())
        await _trip(breaker, 4)
        assert breaker.is_open is False
        await _trip(breaker, 1)
        assert breaker.is_open is True
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_open_circuit_does_not_invoke_action(self):
        breaker = CircuitBreaker(threshold=2, timeout=30, clock=FakeClock())
        await _trip(breaker, 2)
        action = AsyncMock()
        assert await breaker.execute(action) is False
        action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_resets_count(self):
        breaker = CircuitBreaker(threshold=3, clock=FakeClock())
        await _trip(breaker, 2)
        await breaker.execute(AsyncMock())
        assert breaker.failure_count == 0
        await _trip(breaker, 2)
        assert breaker.is_open is False

    @pytest.mark.asyncio
    async def test_half_open_after_timeout(self):
        clock = FakeClock()
        breaker = CircuitBreaker(threshold=1, timeout=30, clock=clock)
        await _trip(breaker, 1)
        clock.advance(30)
        assert breaker.state == CircuitState.OPEN
        clock.advance(1)
        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_trial_success_closes(self):
        clock = FakeClock()
        breaker = CircuitBreaker(threshold=1, timeout=30, clock=clock)
        await _trip(breaker, 1)
        clock.advance(31)

        assert await breaker.execute(AsyncMock()) is True
        assert breaker.is_open is False
        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_trial_failure_reopens_and_restarts_timeout(self):
        clock = FakeClock()
        breaker = CircuitBreaker(threshold=1, timeout=30, clock=clock)
        await _trip(breaker, 1)
        clock.advance(31)

        await _trip(breaker, 1)
        assert breaker.is_open is True
        assert breaker.last_failure_time == clock.now

        action = AsyncMock()
        clock.advance(10)
        assert await breaker.execute(action) is False
        action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_single_trial_call_while_half_open(self):
        clock = FakeClock()
        breaker = CircuitBreaker(threshold=1, timeout=30, clock=clock)
        await _trip(breaker, 1)
        clock.advance(31)

        release = asyncio.Event()
        calls = 0

        async def slow_trial():
            nonlocal calls
            calls += 1
            await release.wait()

        trial = asyncio.create_task(breaker.execute(slow_trial))
        await asyncio.sleep(0)

        # A second call while the trial is in flight fails fast
        assert await breaker.execute(slow_trial) is False
        release.set()
        assert await trial is True
        assert calls == 1

    @pytest.mark.asyncio
    async def test_status(self):
        breaker = CircuitBreaker(threshold=2, timeout=30, clock=FakeClock())
        await _trip(breaker, 2)
        status = breaker.status()
        assert status["is_open"] is True
        assert status["state"] == "open"
        assert status["failure_count"] == 2
        assert status["threshold"] == 2
