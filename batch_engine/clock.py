"""
Time source used by the engine for timestamps, durations and delays.

Everything that sleeps or reads the time goes through a Clock so tests can
replace it with one that advances instantly.
"""

import asyncio
import time


class Clock:
    """Wall-clock time and asyncio sleeping."""

    def time(self) -> float:
        """Current epoch time in seconds (stored timestamps)."""
        return time.time()

    def monotonic(self) -> float:
        """Monotonic seconds (durations)."""
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


system_clock = Clock()
