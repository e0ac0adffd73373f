"""
htmlcast HTTP API

Renders HTML to PNG and MP4, burns HTML overlays into uploaded videos, and
converts raw PCM audio to MP3. Video and audio responses are streamed while
they are being encoded; a failure after the first byte aborts the
connection instead of appending an error body.
"""

# Load environment variables from .env file BEFORE anything else
from dotenv import load_dotenv
load_dotenv()

import json
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from loguru import logger

from .. import __version__
from ..assets import AssetScope
from ..config import Settings, get_settings, setup_logging
from ..errors import HtmlcastError, InvalidInput
from ..models import RawAudioParams, ScreenshotRequest, VideoRequest
from ..pipeline import (
    capture_still,
    stream_composite,
    stream_gemini_audio,
    stream_raw_audio,
    stream_video,
)
from ..render.browser import Renderer


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_renderer(request: Request) -> Renderer:
    return request.app.state.renderer


async def start_stream(chunks: AsyncIterator[bytes], media_type: str) -> StreamingResponse:
    """
    Pull the first chunk before committing to a 200 response.

    Failures up to that point raise normally (and get a status code);
    failures after it abort the connection mid-body.
    """
    try:
        first = await chunks.__anext__()
    except StopAsyncIteration:
        first = b""

    async def body():
        try:
            if first:
                yield first
            async for chunk in chunks:
                yield chunk
        except Exception as e:
            logger.error(f"Stream aborted mid-response: {e}")
            raise
        finally:
            await chunks.aclose()

    return StreamingResponse(body(), media_type=media_type)


def create_app(settings: Optional[Settings] = None, renderer: Optional[Renderer] = None) -> FastAPI:
    settings = settings or get_settings()
    renderer = renderer or Renderer(args=settings.chromium_args, timeout_ms=settings.render_timeout_ms)
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.temp_dir.mkdir(parents=True, exist_ok=True)
        await renderer.start()
        logger.info(f"Service ready (temp dir {settings.temp_dir})")
        try:
            yield
        finally:
            await renderer.stop()

    app = FastAPI(
        title="htmlcast",
        description="Render HTML to images and video, composite HTML overlays onto video",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.renderer = renderer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HtmlcastError)
    async def handle_error(request: Request, exc: HtmlcastError):
        if exc.status_code >= 500:
            logger.error(f"{request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.url.path} rejected: {exc}")
        return PlainTextResponse(str(exc), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'body'}: {err['msg']}" for err in exc.errors()
        )
        return PlainTextResponse(f"Invalid request: {details}", status_code=400)

    @app.get("/health")
    async def health(renderer: Renderer = Depends(get_renderer)):
        return {"status": "ok", "renderer": renderer.running, "version": __version__}

    @app.post("/screenshot")
    async def screenshot(
        request: ScreenshotRequest,
        settings: Settings = Depends(get_app_settings),
        renderer: Renderer = Depends(get_renderer),
    ):
        """Full-page PNG of the given HTML."""
        spec = request.to_spec().check_limits(settings.max_dimension)
        png = await capture_still(renderer, spec)
        return Response(content=png, media_type="image/png")

    @app.post("/video")
    async def video(
        request: VideoRequest,
        settings: Settings = Depends(get_app_settings),
        renderer: Renderer = Depends(get_renderer),
    ):
        """MP4 of the page captured at `fps` for `duration` seconds, streamed as it encodes."""
        spec = request.to_spec()
        logger.info(f"Video request: {spec.width}x{spec.height} {request.fps}fps {request.duration}s")
        chunks = stream_video(renderer, spec, request.fps, request.duration, settings)
        return await start_stream(chunks, "video/mp4")

    @app.post("/composite")
    async def composite(
        html: Optional[str] = Form(None),
        overlay_x: int = Form(0, alias="overlayX"),
        overlay_y: int = Form(0, alias="overlayY"),
        video: Optional[UploadFile] = File(None),
        settings: Settings = Depends(get_app_settings),
        renderer: Renderer = Depends(get_renderer),
    ):
        """Burn the rendered HTML into the uploaded video at (overlayX, overlayY)."""
        if not html:
            raise InvalidInput("Missing `html` form field.")
        if video is None:
            raise InvalidInput("Missing `video` file upload.")

        scope = AssetScope(settings.temp_dir, owner=f"composite-{uuid.uuid4().hex[:8]}")
        try:
            video_asset = await scope.save_upload(video, prefix="video", max_bytes=settings.max_upload_bytes)
        except BaseException:
            await scope.cleanup()
            raise

        chunks = stream_composite(renderer, settings, html, video_asset, overlay_x, overlay_y, scope)
        return await start_stream(chunks, "video/mp4")

    @app.post("/convert/raw-to-mp3")
    async def raw_to_mp3(
        audio: Optional[UploadFile] = File(None),
        sample_rate: int = Form(24000, alias="sampleRate"),
        channels: int = Form(1),
        quality: int = Form(2),
        input_codec: str = Form("s16le", alias="inputCodec"),
        settings: Settings = Depends(get_app_settings),
    ):
        """Convert an uploaded headerless PCM file to MP3."""
        if audio is None:
            raise InvalidInput("Missing `audio` file upload.")
        params = RawAudioParams(
            sample_rate=sample_rate,
            channels=channels,
            quality=quality,
            input_codec=input_codec,
        )

        scope = AssetScope(settings.temp_dir, owner=f"raw-audio-{uuid.uuid4().hex[:8]}")
        try:
            audio_asset = await scope.save_upload(audio, prefix="audio", suffix=".raw", max_bytes=settings.max_upload_bytes)
        except BaseException:
            await scope.cleanup()
            raise

        chunks = stream_raw_audio(audio_asset, params, settings, scope)
        return await start_stream(chunks, "audio/mpeg")

    @app.post("/convert/gemini-audio-to-mp3")
    async def gemini_audio_to_mp3(
        request: Request,
        channels: int = Query(1),
        quality: int = Query(2),
        settings: Settings = Depends(get_app_settings),
    ):
        """Convert the inline audio of a Gemini TTS response to MP3."""
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidInput("Invalid Gemini response format: Expected a JSON array.") from e

        scope = AssetScope(settings.temp_dir, owner=f"gemini-{uuid.uuid4().hex[:8]}")
        chunks = stream_gemini_audio(payload, settings, scope, channels=channels, quality=quality)
        return await start_stream(chunks, "audio/mpeg")

    return app


app = create_app()
