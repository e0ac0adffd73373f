"""
Video Compositor - burn a rendered HTML overlay into an uploaded video.

The overlay is captured once with a transparent background, saved as a
request-scoped PNG, and joined with the video through a two-input overlay
filter graph. Only the video track is re-encoded.
"""

import asyncio
from typing import AsyncIterator, Optional

from loguru import logger
from PIL import Image

from ..assets import AssetScope, TempAsset
from ..capture.session import CaptureSession
from ..config import Settings
from ..core.ffmpeg_utils import EncodeJob, FFmpegStream, overlay_job
from ..core.video_info import VideoInfo, get_video_info
from ..errors import InvalidInput
from ..models import RenderSpec
from ..render.browser import Renderer


class Compositor:
    """
    Usage:
        compositor = Compositor(renderer, settings)
        async with AssetScope(settings.temp_dir) as scope:
            video = await scope.save_upload(upload)
            async for chunk in compositor.stream(html, video, x=10, y=20, scope=scope):
                ...
    """

    def __init__(self, renderer: Renderer, settings: Settings):
        self.renderer = renderer
        self.settings = settings

    def overlay_spec(self, html: Optional[str]) -> RenderSpec:
        # Transparent so uncovered pixels do not hide the video underneath
        return RenderSpec(
            html=html or "",
            width=self.settings.overlay_width,
            height=self.settings.overlay_height,
            transparent_background=True,
        )

    async def render_overlay(self, spec: RenderSpec, scope: AssetScope) -> TempAsset:
        """Capture the overlay once and persist it as a PNG temp asset."""
        frame = await CaptureSession.single(self.renderer, spec, full_page=True).capture_one()
        asset = await scope.write_bytes(frame.data, prefix="overlay", suffix=".png")
        logger.info(f"Overlay rendered ({len(frame)} bytes)")
        return asset

    def build_job(self, video: TempAsset, info: VideoInfo, overlay: TempAsset, x: int, y: int) -> EncodeJob:
        return overlay_job(
            video.path,
            overlay.path,
            x=x,
            y=y,
            has_audio=info.has_audio,
            quality=self.settings.video_quality,
        )

    async def stream(
        self,
        html: Optional[str],
        video: Optional[TempAsset],
        x: int,
        y: int,
        scope: AssetScope,
    ) -> AsyncIterator[bytes]:
        """Yield the composited MP4 as it is encoded."""
        if not html:
            raise InvalidInput("Missing `html` form field.")
        if video is None:
            raise InvalidInput("Missing `video` file upload.")

        spec = self.overlay_spec(html)
        info = await asyncio.to_thread(get_video_info, video.path)
        logger.info(
            f"Compositing onto {info.width}x{info.height} {info.video_codec} "
            f"({info.duration:.1f}s, audio={info.audio_codec or 'none'}) at ({x}, {y})"
        )

        overlay = await self.render_overlay(spec, scope)
        self._check_placement(overlay, info, x, y)

        job = self.build_job(video, info, overlay, x, y)
        async with FFmpegStream(
            job,
            binary=self.settings.ffmpeg_binary,
            chunk_size=self.settings.output_chunk_size,
        ) as encoder:
            async for chunk in encoder.output():
                yield chunk

    @staticmethod
    def _check_placement(overlay: TempAsset, info: VideoInfo, x: int, y: int):
        with Image.open(overlay.path) as img:
            width, height = img.size
        if x >= info.width or y >= info.height or x + width <= 0 or y + height <= 0:
            logger.warning(
                f"Overlay {width}x{height} at ({x}, {y}) does not intersect the "
                f"{info.width}x{info.height} video"
            )
