"""
End-to-end checks against real ffmpeg (and optionally a real Chromium).

Skipped unless the binaries are available.
"""

import io
import math
import struct

import ffmpeg
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from conftest import FakeRenderer, requires_browser, requires_ffmpeg, run_ffmpeg
from htmlcast.api.server import create_app
from htmlcast.core.video_info import get_video_info
from htmlcast.models import RenderSpec
from htmlcast.pipeline import capture_still, stream_video
from htmlcast.render.browser import Renderer

RED = (255, 0, 0, 255)


def make_test_video(path, with_audio: bool = True):
    args = ["-f", "lavfi", "-i", "color=c=blue:s=320x240:d=1:r=25"]
    if with_audio:
        args += ["-f", "lavfi", "-i", "sine=frequency=440:duration=1"]
    args += ["-c:v", "libx264", "-pix_fmt", "yuv420p"]
    args += ["-c:a", "aac", "-shortest"] if with_audio else ["-an"]
    run_ffmpeg(args + [str(path)])
    return path


def first_frame(video_path, png_path) -> Image.Image:
    run_ffmpeg(["-i", str(video_path), "-frames:v", "1", str(png_path)])
    return Image.open(png_path).convert("RGB")


def sine_pcm(seconds: float = 0.5, rate: int = 24000) -> bytes:
    samples = int(seconds * rate)
    return b"".join(
        struct.pack("<h", int(12000 * math.sin(2 * math.pi * 440 * i / rate))) for i in range(samples)
    )


def is_red(pixel) -> bool:
    r, g, b = pixel[:3]
    return r > 200 and g < 60 and b < 60


def is_blue(pixel) -> bool:
    r, g, b = pixel[:3]
    return b > 200 and r < 60 and g < 60


async def collect(chunks) -> bytes:
    return b"".join([chunk async for chunk in chunks])


@requires_ffmpeg
class TestRealEncoder:

    @pytest.mark.asyncio
    async def test_frame_stream_encodes_at_requested_rate(self, make_settings, tmp_path):
        renderer = FakeRenderer()
        spec = RenderSpec(html="<p>x</p>", width=64, height=64)

        data = await collect(stream_video(renderer, spec, fps=10, duration=1, settings=make_settings()))
        out = tmp_path / "out.mp4"
        out.write_bytes(data)

        info = get_video_info(out)
        assert len(renderer.frames) == 10
        assert (info.width, info.height) == (64, 64)
        assert info.fps == pytest.approx(10)
        assert info.duration == pytest.approx(1.0, abs=0.1 + 1e-6)

    def test_composite_places_overlay_and_keeps_audio(self, make_settings, tmp_path, asset_dir):
        source = make_test_video(tmp_path / "blue.mp4")
        renderer = FakeRenderer(color=RED, vary_frames=False)

        with TestClient(create_app(make_settings(), renderer)) as client:
            response = client.post(
                "/composite",
                data={"html": "<div>overlay</div>", "overlayX": "10", "overlayY": "20"},
                files={"video": ("blue.mp4", source.read_bytes(), "video/mp4")},
            )

        assert response.status_code == 200
        assert response.headers["content-type"] == "video/mp4"
        out = tmp_path / "composited.mp4"
        out.write_bytes(response.content)

        info = get_video_info(out)
        assert (info.width, info.height) == (320, 240)
        assert info.audio_codec == "aac"

        frame = first_frame(out, tmp_path / "frame.png")
        # Overlay is 64x48 at (10, 20)
        assert is_red(frame.getpixel((20, 30)))
        assert is_red(frame.getpixel((70, 64)))
        assert is_blue(frame.getpixel((200, 200)))
        assert is_blue(frame.getpixel((5, 5)))

        assert renderer.specs[0].transparent_background is True
        assert renderer.released == 1
        assert list(asset_dir.iterdir()) == []

    def test_composite_without_audio(self, make_settings, tmp_path):
        source = make_test_video(tmp_path / "silent.mp4", with_audio=False)

        with TestClient(create_app(make_settings(), FakeRenderer(color=RED, vary_frames=False))) as client:
            response = client.post(
                "/composite",
                data={"html": "<div>overlay</div>"},
                files={"video": ("silent.mp4", source.read_bytes(), "video/mp4")},
            )

        assert response.status_code == 200
        out = tmp_path / "composited.mp4"
        out.write_bytes(response.content)
        assert not get_video_info(out).has_audio

    def test_raw_pcm_to_mp3(self, make_settings, tmp_path, asset_dir):
        with TestClient(create_app(make_settings(), FakeRenderer())) as client:
            response = client.post(
                "/convert/raw-to-mp3",
                data={"sampleRate": "24000", "channels": "1", "quality": "4"},
                files={"audio": ("tone.raw", sine_pcm(), "application/octet-stream")},
            )

        assert response.status_code == 200
        out = tmp_path / "tone.mp3"
        out.write_bytes(response.content)

        probe = ffmpeg.probe(str(out))
        audio = [s for s in probe["streams"] if s["codec_type"] == "audio"]
        assert audio[0]["codec_name"] == "mp3"
        assert list(asset_dir.iterdir()) == []


@requires_browser
class TestRealBrowser:

    @pytest.mark.asyncio
    async def test_still_capture(self):
        renderer = Renderer(args=["--no-sandbox"])
        await renderer.start()
        try:
            spec = RenderSpec(html="<body style='background:#0a0'><h1>Hello</h1></body>", width=400, height=300)
            png = await capture_still(renderer, spec)
        finally:
            await renderer.stop()

        img = Image.open(io.BytesIO(png))
        assert img.size[0] >= 400 and img.size[1] >= 300

    @requires_ffmpeg
    @pytest.mark.asyncio
    async def test_timed_capture(self, make_settings, tmp_path):
        renderer = Renderer(args=["--no-sandbox"])
        await renderer.start()
        try:
            spec = RenderSpec(html="<h1 id='t'>0</h1>", width=160, height=120)
            data = await collect(stream_video(renderer, spec, fps=5, duration=1, settings=make_settings()))
        finally:
            await renderer.stop()

        out = tmp_path / "page.mp4"
        out.write_bytes(data)
        info = get_video_info(out)
        assert (info.width, info.height) == (160, 120)
        assert info.fps == pytest.approx(5)
