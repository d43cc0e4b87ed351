"""
Adaptive pacing for outgoing Telegram Bot API calls.

Telegram answers bursts with 429 and a `retry_after` hint; the limiter spaces
calls out and backs off when that happens.
"""

import asyncio
import logging
import time

log = logging.getLogger(__name__)

MIN_RATE = 1.0
RECOVERY_AFTER = 60.0  # seconds without a flood error
RECOVERY_FACTOR = 1.05


class AdaptiveRateLimiter:
    """
    Keeps at least 1/rate seconds between calls.

    A flood error halves the rate (never below one call per second) and, when
    Telegram supplies `retry_after`, holds every caller until it has elapsed.
    After a quiet minute the rate creeps back towards its ceiling.
    """

    def __init__(
        self, initial_calls_per_second: float = 20.0, max_calls_per_second: float = 25.0
    ):
        self._ceiling = max_calls_per_second
        self._interval = 0.0
        self._rate = 0.0
        self._set_rate(initial_calls_per_second)
        self._previous_call = 0.0
        self._flooded_at = 0.0
        self._paused_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    def _set_rate(self, rate: float) -> None:
        self._rate = rate
        self._interval = 1.0 / rate

    async def on_429(self, retry_after: float | None = None) -> None:
        async with self._lock:
            self._set_rate(max(MIN_RATE, self._rate / 2))
            self._flooded_at = time.monotonic()
            pause = ""
            if retry_after:
                self._paused_until = max(self._paused_until, self._flooded_at + retry_after)
                pause = f", pausing {retry_after:.0f}s"
            log.warning(
                f"[yellow]Telegram flood limit hit. New rate: {self._rate:.1f} calls/s"
                f"{pause}[/yellow]"
            )

    async def acquire(self) -> None:
        """Blocks until the next call is allowed."""
        async with self._lock:
            now = time.monotonic()
            if now - self._flooded_at > RECOVERY_AFTER and self._rate < self._ceiling:
                self._set_rate(min(self._ceiling, self._rate * RECOVERY_FACTOR))

            next_slot = max(self._paused_until, self._previous_call + self._interval)
            if next_slot > now:
                await asyncio.sleep(next_slot - now)
            self._previous_call = time.monotonic()
