"""
CaptureSession - drives one render surface through a FrameClock.

Frames come out strictly in order, one per tick, and the surface is held
for the whole session and released exactly once on every exit path.
"""

import asyncio
from contextlib import aclosing
from typing import AsyncIterator, Optional

from loguru import logger

from ..errors import CaptureFailed, EncodeFailed, InvalidInput, RenderFailed
from ..models import Frame, RenderSpec
from ..render.browser import Renderer
from .bridge import StreamBridge
from .clock import FrameClock, total_frames


class CaptureSession:
    """
    Usage:
        session = CaptureSession(renderer, spec, fps=25, duration_seconds=5)
        await session.run(bridge)         # 125 frames, then bridge.end()

        png = await CaptureSession.single(renderer, spec, full_page=True).capture_one()
    """

    def __init__(
        self,
        renderer: Renderer,
        spec: RenderSpec,
        fps: int,
        duration_seconds: float,
        full_page: bool = False,
        clock: Optional[FrameClock] = None,
    ):
        if not spec.html:
            raise InvalidInput("Missing `html` in request body.")
        if fps <= 0:
            raise InvalidInput(f"fps must be positive, got {fps}")
        if duration_seconds <= 0:
            raise InvalidInput(f"duration must be positive, got {duration_seconds}")

        self.renderer = renderer
        self.spec = spec
        self.fps = fps
        self.duration_seconds = duration_seconds
        self.full_page = full_page
        self.clock = clock or FrameClock(fps, duration_seconds)
        self.total_frames = total_frames(fps, duration_seconds)
        self.frame_interval_ms = 1000 / fps
        self.frames_emitted = 0

    @classmethod
    def single(cls, renderer: Renderer, spec: RenderSpec, full_page: bool = True) -> "CaptureSession":
        """A session lasting exactly one frame."""
        return cls(renderer, spec, fps=1, duration_seconds=1, full_page=full_page)

    async def frames(self) -> AsyncIterator[Frame]:
        """Acquire a surface and yield one frame per clock tick."""
        async with self.renderer.surface(self.spec) as surface:
            async for _ in self.clock:
                try:
                    data = await surface.capture(full_page=self.full_page)
                except RenderFailed as e:
                    raise CaptureFailed(
                        f"Capture failed at frame {self.frames_emitted}/{self.total_frames}: {e}",
                        frame_index=self.frames_emitted,
                    ) from e
                frame = Frame(index=self.frames_emitted, data=data)
                self.frames_emitted += 1
                yield frame

    async def capture_one(self) -> Frame:
        async with aclosing(self.frames()) as frames:
            async for frame in frames:
                return frame
        raise CaptureFailed("Session produced no frames", frame_index=0)

    async def run(self, bridge: StreamBridge) -> int:
        """
        Feed every frame into the bridge, then end it.

        A render failure aborts the bridge so the encoder cannot finish a
        valid file. Returns the number of frames written.
        """
        logger.info(
            f"Capturing {self.total_frames} frames at {self.fps}fps "
            f"({self.spec.width}x{self.spec.height})"
        )
        try:
            async with aclosing(self.frames()) as frames:
                async for frame in frames:
                    await bridge.write(frame)
        except EncodeFailed:
            # Encoder side went away; it reports the error itself
            logger.warning(f"Capture stopped after {self.frames_emitted} frames: encoder failed")
            raise
        except CaptureFailed as e:
            logger.error(f"Capture aborted: {e}")
            bridge.abort(e)
            raise
        except RenderFailed as e:
            err = CaptureFailed(str(e), frame_index=self.frames_emitted)
            logger.error(f"Capture aborted: {err}")
            bridge.abort(err)
            raise err from e
        except asyncio.CancelledError:
            logger.info(f"Capture cancelled after {self.frames_emitted} frames")
            bridge.abort(CaptureFailed("Capture cancelled", frame_index=self.frames_emitted))
            raise
        except Exception as e:
            # Anything else still has to end the encoder's input
            err = CaptureFailed(f"Unexpected capture error: {e}", frame_index=self.frames_emitted)
            logger.exception(f"Capture aborted: {err}")
            bridge.abort(err)
            raise err from e

        await bridge.end()
        logger.info(
            f"Captured {self.frames_emitted} frames "
            f"(clock drift {self.clock.drift_ms():.0f}ms)"
        )
        return self.frames_emitted
