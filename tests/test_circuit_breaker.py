"""
Circuit Breaker Tests

Run with:
    python -m pytest tests/test_circuit_breaker.py -v
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerOpen, CircuitState


def make_breaker(**overrides) -> CircuitBreaker:
    config = CircuitBreakerConfig(failure_threshold=2, recovery_timeout=0.05, timeout=1.0)
    for key, value in overrides.items():
        setattr(config, key, value)
    return CircuitBreaker("test", config)


class TestCircuitBreaker:
    """State transitions."""

    @pytest.mark.asyncio
    async def test_passes_results_through(self):
        breaker = make_breaker()
        func = AsyncMock(return_value="ok")

        assert await breaker.call(func, 1, key="v") == "ok"
        func.assert_awaited_once_with(1, key="v")
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = make_breaker()
        func = AsyncMock(side_effect=RuntimeError("down"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(func)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpen):
            await breaker.call(func)
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_half_open_recovers(self):
        breaker = make_breaker()
        failing = AsyncMock(side_effect=RuntimeError("down"))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        await asyncio.sleep(0.06)
        assert await breaker.call(AsyncMock(return_value="back")) == "back"

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        breaker = make_breaker(timeout=0.01, failure_threshold=1)

        async def hang():
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            await breaker.call(hang)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_excluded_exceptions_ignored(self):
        breaker = make_breaker(excluded_exceptions=(ValueError,), failure_threshold=1)

        with pytest.raises(ValueError):
            await breaker.call(AsyncMock(side_effect=ValueError("bad input")))

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_excluded_exception_closes_half_open(self):
        breaker = make_breaker(excluded_exceptions=(ValueError,))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(AsyncMock(side_effect=RuntimeError("down")))

        await asyncio.sleep(0.06)
        with pytest.raises(ValueError):
            await breaker.call(AsyncMock(side_effect=ValueError("bad input")))

        # The trial call got an answer, so the breaker lets traffic through again
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"

    def test_reset(self):
        breaker = make_breaker()
        breaker.stats.state = CircuitState.OPEN

        breaker.reset()

        assert breaker.get_status()["state"] == "closed"
