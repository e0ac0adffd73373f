"""
StreamBridge - bounded hand-off between frame capture and the encoder.

The capture side pushes frames one at a time; the encoder side pulls their
bytes as one continuous stream. The queue is bounded, so a slow encoder
makes `write()` wait instead of buffering frames without limit.
"""

import asyncio
from typing import AsyncIterator, Optional

from loguru import logger

from ..models import Frame

_END = object()
_ABORT = object()


class StreamBridge:
    """
    Usage:
        bridge = StreamBridge(capacity=8)

        # producer
        await bridge.write(frame)
        await bridge.end()

        # consumer
        async for chunk in bridge.chunks():
            stdin.write(chunk)
    """

    def __init__(self, capacity: int = 8):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._next_index = 0
        self._ended = False
        self._aborted: Optional[BaseException] = None   # producer-side failure
        self._failure: Optional[BaseException] = None   # consumer-side failure

        self.frames_written = 0
        self.bytes_delivered = 0

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def failure(self) -> Optional[BaseException]:
        return self._failure

    # Write side

    async def write(self, frame: Frame):
        """Queue one frame, waiting while the buffer is full."""
        if self._ended or self._aborted is not None:
            raise RuntimeError("write() after end() or abort()")
        self._raise_if_failed()
        if frame.index != self._next_index:
            raise ValueError(f"Frame out of order: expected {self._next_index}, got {frame.index}")

        await self._queue.put(frame)
        # fail() may have drained the queue to release us
        self._raise_if_failed()

        self._next_index += 1
        self.frames_written += 1

    async def end(self):
        """No more frames. The reader sees end-of-stream after the queued ones."""
        if self._ended:
            return
        self._raise_if_failed()
        self._ended = True
        await self._queue.put(_END)

    def abort(self, exc: BaseException):
        """Producer failed. The reader raises `exc` instead of ending cleanly."""
        if self._ended or self._aborted is not None:
            return
        self._aborted = exc
        try:
            self._queue.put_nowait(_ABORT)
        except asyncio.QueueFull:
            # Reader is not waiting; it checks _aborted before every get
            pass

    # Read side

    async def chunks(self) -> AsyncIterator[bytes]:
        """Yield raw frame bytes in write order."""
        while True:
            if self._aborted is not None:
                raise self._aborted
            item = await self._queue.get()
            if item is _END:
                return
            if item is _ABORT:
                raise self._aborted
            self.bytes_delivered += len(item.data)
            yield item.data

    def fail(self, exc: BaseException):
        """Consumer failed. Blocked and future writes raise `exc`."""
        if self._failure is not None:
            return
        self._failure = exc
        logger.debug(f"Stream bridge failed on the consumer side: {exc}")
        while not self._queue.empty():
            self._queue.get_nowait()

    def _raise_if_failed(self):
        if self._failure is not None:
            raise self._failure
