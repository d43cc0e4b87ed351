"""
Circuit breaker guarding calls to the external catalog API.

The breaker never retries. It only stops hammering an endpoint that has
failed repeatedly, failing fast until a recovery window has elapsed.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

log = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls rejected
    HALF_OPEN = "half_open"  # Probing


class CircuitBreakerError(Exception):
    """Raised when a call is rejected because the circuit is open."""


class CircuitBreaker:
    """
    Async context manager implementing a three-state circuit breaker.

    Usage:
        async with breaker:
            await do_call()
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            name: Label used in log messages.
            failure_threshold: Consecutive failures before the circuit opens.
            recovery_timeout: Seconds to stay open before probing again.
            success_threshold: Successful probes needed to close the circuit.
            clock: Monotonic time source, injectable for tests.
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_successes = 0
        self._opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_successes = 0
        self._opened_at = None

    def _maybe_half_open(self) -> None:
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return
        waited = self._clock() - self._opened_at
        if waited >= self.recovery_timeout:
            log.info(
                f"[yellow]{self.name}: probing after {waited:.0f}s open[/yellow]"
            )
            self._state = CircuitState.HALF_OPEN
            self._probe_successes = 0

    async def _record(self, ok: bool) -> None:
        async with self._lock:
            if ok:
                self._consecutive_failures = 0
                if self._state is CircuitState.HALF_OPEN:
                    self._probe_successes += 1
                    if self._probe_successes >= self.success_threshold:
                        log.info(f"[green]✓ {self.name}: circuit closed[/green]")
                        self.reset()
                return

            self._consecutive_failures += 1
            if self._state is CircuitState.HALF_OPEN or (
                self._state is CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                log.warning(
                    f"[red]✗ {self.name}: circuit opened after "
                    f"{self._consecutive_failures} failure(s); "
                    f"rejecting calls for {self.recovery_timeout:.0f}s[/red]"
                )
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
                self._probe_successes = 0

    async def __aenter__(self) -> "CircuitBreaker":
        async with self._lock:
            self._maybe_half_open()
            if self._state is CircuitState.OPEN:
                raise CircuitBreakerError(
                    f"{self.name} is unavailable; retry after "
                    f"{self.recovery_timeout:.0f} seconds."
                )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        # a cancelled caller says nothing about the endpoint
        if exc_type is not None and issubclass(exc_type, asyncio.CancelledError):
            return
        await self._record(exc_type is None)
