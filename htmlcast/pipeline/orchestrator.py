"""
Render Pipelines

Wires the pieces together for each operation:
1. Still capture: one full-page frame, returned as PNG bytes
2. Timed capture: CaptureSession -> StreamBridge -> ffmpeg -> caller
3. Composite: one overlay capture + uploaded video -> ffmpeg filter graph -> caller
4. Audio: raw PCM (uploaded or from a Gemini response) -> ffmpeg -> caller

Capture and encoding run concurrently, so output starts flowing while
frames are still being captured. Whatever way a stream ends (finished,
failed, or the client went away) the capture task, browser context,
ffmpeg process and temp files are all released before it is over.
"""

import asyncio
from typing import Any, AsyncIterator

from loguru import logger

from ..assets import AssetScope, TempAsset
from ..audio.converter import stream_gemini_to_mp3, stream_raw_to_mp3
from ..capture.bridge import StreamBridge
from ..capture.session import CaptureSession
from ..config import Settings
from ..core.ffmpeg_utils import FFmpegStream, frame_stream_job
from ..errors import InvalidInput
from ..models import RawAudioParams, RenderSpec
from ..render.browser import Renderer
from ..video.compositor import Compositor


async def capture_still(renderer: Renderer, spec: RenderSpec) -> bytes:
    """Full-page PNG of the rendered HTML."""
    frame = await CaptureSession.single(renderer, spec, full_page=True).capture_one()
    logger.info(f"Screenshot captured ({spec.width}x{spec.height}, {len(frame)} bytes)")
    return frame.data


def check_video_limits(spec: RenderSpec, fps: int, duration: float, settings: Settings):
    spec.check_limits(settings.max_dimension)
    if fps > settings.max_fps:
        raise InvalidInput(f"fps {fps} exceeds the limit of {settings.max_fps}")
    if duration > settings.max_duration_seconds:
        raise InvalidInput(f"duration {duration}s exceeds the limit of {settings.max_duration_seconds}s")


async def stream_video(
    renderer: Renderer,
    spec: RenderSpec,
    fps: int,
    duration: float,
    settings: Settings,
) -> AsyncIterator[bytes]:
    """Yield an MP4 of `duration` seconds of the page, captured at `fps`."""
    check_video_limits(spec, fps, duration, settings)
    session = CaptureSession(renderer, spec, fps, duration)
    bridge = StreamBridge(capacity=settings.bridge_capacity)
    encoder = FFmpegStream(
        frame_stream_job(fps, settings.video_quality),
        source=bridge,
        binary=settings.ffmpeg_binary,
        chunk_size=settings.output_chunk_size,
    )

    await encoder.start()
    capture = asyncio.create_task(session.run(bridge))
    try:
        async for chunk in encoder.output():
            yield chunk
        frames = await capture
        logger.info(f"Video complete: {frames} frames, {encoder.bytes_sent} bytes")
    finally:
        # Runs to completion even if the request task is being cancelled
        await asyncio.shield(asyncio.ensure_future(_teardown(capture, encoder)))


async def _teardown(capture: asyncio.Task, encoder: FFmpegStream):
    if not capture.done():
        capture.cancel()
    # The capture outcome has already been reported through the encoder stream
    await asyncio.gather(capture, return_exceptions=True)
    await encoder.close()


async def scoped(chunks: AsyncIterator[bytes], scope: AssetScope) -> AsyncIterator[bytes]:
    """Delete the scope's temp files only after `chunks` has fully terminated."""
    try:
        async for chunk in chunks:
            yield chunk
    finally:
        await chunks.aclose()
        await scope.cleanup()


def stream_composite(
    renderer: Renderer,
    settings: Settings,
    html: str,
    video: TempAsset,
    x: int,
    y: int,
    scope: AssetScope,
) -> AsyncIterator[bytes]:
    compositor = Compositor(renderer, settings)
    return scoped(compositor.stream(html, video, x, y, scope), scope)


def stream_raw_audio(
    audio: TempAsset,
    params: RawAudioParams,
    settings: Settings,
    scope: AssetScope,
) -> AsyncIterator[bytes]:
    chunks = stream_raw_to_mp3(
        audio,
        params,
        binary=settings.ffmpeg_binary,
        chunk_size=settings.output_chunk_size,
    )
    return scoped(chunks, scope)


def stream_gemini_audio(
    payload: Any,
    settings: Settings,
    scope: AssetScope,
    channels: int = 1,
    quality: int = 2,
) -> AsyncIterator[bytes]:
    chunks = stream_gemini_to_mp3(
        payload,
        scope,
        channels=channels,
        quality=quality,
        binary=settings.ffmpeg_binary,
        chunk_size=settings.output_chunk_size,
    )
    return scoped(chunks, scope)
