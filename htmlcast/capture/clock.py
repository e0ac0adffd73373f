"""
FrameClock - paces a capture loop to a target frame rate.

The clock is free-running: it sleeps a fixed interval between ticks and
does not compensate for time spent capturing, so slow captures accumulate
drift. `drift_ms()` reports that lag for logging.
"""

import asyncio
import math
import time
from typing import AsyncIterator, Awaitable, Callable, Optional


def total_frames(fps: int, duration_seconds: float) -> int:
    # Round first so 0.1 * 30 counts as 3 frames, not 4
    return math.ceil(round(fps * duration_seconds, 6))


class FrameClock:
    """
    Usage:
        clock = FrameClock(fps=25, duration_seconds=5)
        async for index in clock:
            ...  # 125 ticks, 40ms apart
    """

    def __init__(
        self,
        fps: int,
        duration_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        if duration_seconds <= 0:
            raise ValueError(f"duration must be positive, got {duration_seconds}")
        self.fps = fps
        self.duration_seconds = duration_seconds
        self.total_ticks = total_frames(fps, duration_seconds)
        self.interval_ms = 1000 / fps
        self._sleep = sleep
        self._monotonic = monotonic
        self._started_at: Optional[float] = None
        self._ticks = 0

    def __aiter__(self) -> AsyncIterator[int]:
        return self._run()

    async def _run(self) -> AsyncIterator[int]:
        self._started_at = self._monotonic()
        self._ticks = 0
        for index in range(self.total_ticks):
            self._ticks = index + 1
            yield index
            if index + 1 < self.total_ticks:
                await self._sleep(self.interval_ms / 1000)

    def drift_ms(self) -> float:
        """How far the last tick lagged behind the ideal schedule."""
        if self._started_at is None or self._ticks == 0:
            return 0.0
        elapsed = (self._monotonic() - self._started_at) * 1000
        return elapsed - (self._ticks - 1) * self.interval_ms
