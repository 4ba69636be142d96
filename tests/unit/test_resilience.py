"""
Tests for the shared circuit breaker and retry helpers.
"""

from unittest.mock import AsyncMock, patch

import pytest

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.retry import RetryConfig, RetryError, _calculate_delay, retry_call
from shared.test_helpers import FakeClock


class UpstreamDown(Exception):
    pass


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    @pytest.fixture
    def clock(self):
        return FakeClock(start=0.0)

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(
            failure_threshold=2,
            recovery_timeout=30.0,
            tracked_exceptions=(UpstreamDown,),
            name="test",
            clock=clock.now
        )

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        failing = AsyncMock(side_effect=UpstreamDown())

        for _ in range(2):
            with pytest.raises(UpstreamDown):
                await breaker.call(failing)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(failing)
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_untracked_errors_do_not_count(self, breaker):
        failing = AsyncMock(side_effect=ValueError("bad input"))

        for _ in range(3):
            with pytest.raises(ValueError):
                await breaker.call(failing)

        assert breaker.get_state()["state"] == "closed"

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, breaker, clock):
        for _ in range(2):
            with pytest.raises(UpstreamDown):
                await breaker.call(AsyncMock(side_effect=UpstreamDown()))
        clock.advance(30)

        result = await breaker.call(AsyncMock(return_value="ok"))

        assert result == "ok"
        assert breaker.get_state()["state"] == "closed"
        assert breaker.get_state()["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        for _ in range(2):
            with pytest.raises(UpstreamDown):
                await breaker.call(AsyncMock(side_effect=UpstreamDown()))
        clock.advance(30)

        with pytest.raises(UpstreamDown):
            await breaker.call(AsyncMock(side_effect=UpstreamDown()))

        assert breaker.is_open()


class TestRetry:
    """Test cases for retry_call."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failure(self):
        func = AsyncMock(side_effect=[UpstreamDown(), "ok"])

        with patch("shared.retry.asyncio.sleep", new=AsyncMock()):
            result = await retry_call(func, exceptions=(UpstreamDown,), config=RetryConfig(max_attempts=3))

        assert result == "ok"
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_exhaustion_raises_retry_error(self):
        func = AsyncMock(side_effect=UpstreamDown("still down"))

        with patch("shared.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(RetryError) as exc_info:
                await retry_call(func, exceptions=(UpstreamDown,), config=RetryConfig(max_attempts=2))

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_exception, UpstreamDown)

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        func = AsyncMock(side_effect=ValueError("bad"))

        with pytest.raises(ValueError):
            await retry_call(func, exceptions=(UpstreamDown,), config=RetryConfig(max_attempts=3))

        assert func.await_count == 1

    @pytest.mark.parametrize("strategy,attempt,expected", [
        ("exponential", 1, 0.2),
        ("exponential", 3, 0.8),
        ("exponential", 10, 2.0),
        ("linear", 2, 0.4),
        ("fixed", 5, 0.2),
    ])
    def test_calculate_delay(self, strategy, attempt, expected):
        config = RetryConfig(base_delay=0.2, max_delay=2.0, jitter=False, backoff_strategy=strategy)

        assert _calculate_delay(attempt, config) == pytest.approx(expected)
