"""Unit tests for the catalog API circuit breaker."""

import asyncio
from unittest.mock import Mock

import pytest

from story_relay.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
)


async def fail(breaker: CircuitBreaker) -> None:
    with pytest.raises(RuntimeError):
        async with breaker:
            raise RuntimeError("boom")


async def succeed(breaker: CircuitBreaker) -> None:
    async with breaker:
        pass


@pytest.mark.asyncio
async def test_opens_after_consecutive_failures() -> None:
    breaker = CircuitBreaker("api", failure_threshold=3, clock=Mock(return_value=0.0))

    await fail(breaker)
    await fail(breaker)
    assert breaker.state is CircuitState.CLOSED

    await fail(breaker)
    assert breaker.state is CircuitState.OPEN
    with pytest.raises(CircuitBreakerError):
        await succeed(breaker)


@pytest.mark.asyncio
async def test_success_resets_failure_count() -> None:
    breaker = CircuitBreaker("api", failure_threshold=2, clock=Mock(return_value=0.0))

    await fail(breaker)
    await succeed(breaker)
    await fail(breaker)

    assert breaker.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_probe_closes_circuit() -> None:
    clock = Mock(return_value=100.0)
    breaker = CircuitBreaker("api", failure_threshold=1, recovery_timeout=30, clock=clock)
    await fail(breaker)

    clock.return_value = 129.0
    with pytest.raises(CircuitBreakerError):
        await succeed(breaker)

    clock.return_value = 130.0
    await succeed(breaker)
    assert breaker.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failed_probe_reopens_circuit() -> None:
    clock = Mock(return_value=0.0)
    breaker = CircuitBreaker("api", failure_threshold=5, recovery_timeout=10, clock=clock)
    for _ in range(5):
        await fail(breaker)

    clock.return_value = 10.0
    await fail(breaker)

    assert breaker.state is CircuitState.OPEN
    with pytest.raises(CircuitBreakerError):
        await succeed(breaker)


@pytest.mark.asyncio
async def test_cancellation_is_not_a_failure() -> None:
    breaker = CircuitBreaker("api", failure_threshold=1, clock=Mock(return_value=0.0))

    async def slow_call() -> None:
        async with breaker:
            await asyncio.sleep(1)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(slow_call(), timeout=0.01)

    assert breaker.state is CircuitState.CLOSED
    await succeed(breaker)
