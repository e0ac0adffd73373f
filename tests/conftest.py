"""
Pytest fixtures for htmlcast tests.

Most tests run without a browser or ffmpeg:
- FakeRenderer stands in for Chromium and returns small solid-color PNGs
- fake_encoder writes tiny shell scripts that stand in for the ffmpeg binary

Tests that need the real binaries are marked and skipped when unavailable:
- requires_ffmpeg: ffmpeg and ffprobe on PATH
- requires_browser: Playwright Chromium installed, opt in with HTMLCAST_BROWSER_TESTS=1
"""

import io
import os
import shutil
import subprocess
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image

from htmlcast.config import Settings
from htmlcast.errors import RenderFailed
from htmlcast.models import RenderSpec

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)

requires_browser = pytest.mark.skipif(
    os.environ.get("HTMLCAST_BROWSER_TESTS") != "1",
    reason="Browser tests disabled (set HTMLCAST_BROWSER_TESTS=1 with Playwright Chromium installed)",
)


def run_ffmpeg(args: list[str]) -> str:
    """Run a one-shot ffmpeg command for fixtures; fail the test on error."""
    result = subprocess.run(["ffmpeg", "-y", "-hide_banner"] + args, capture_output=True, text=True)
    assert result.returncode == 0, result.stderr
    return result.stdout


def make_png(width: int, height: int, color=(0, 128, 255, 255)) -> bytes:
    img = Image.new("RGBA", (width, height), color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class FakeSurface:
    def __init__(self, renderer: "FakeRenderer", spec: RenderSpec):
        self.renderer = renderer
        self.spec = spec

    async def capture(self, full_page: bool = False) -> bytes:
        r = self.renderer
        index = len(r.frames)
        if r.fail_at is not None and index >= r.fail_at:
            raise r.fail_with(f"screenshot {index} failed")
        color = r.color
        if r.vary_frames:
            # Distinct bytes per frame so ordering is observable
            color = (color[0], color[1], index % 256, color[3])
        data = make_png(self.spec.width, self.spec.height, color)
        r.frames.append(data)
        r.full_page_calls.append(full_page)
        return data


class FakeRenderer:
    """Duck-typed stand-in for htmlcast.render.Renderer."""

    def __init__(
        self,
        color=(0, 128, 255, 255),
        fail_at: Optional[int] = None,
        fail_on_load: bool = False,
        vary_frames: bool = True,
        fail_with: type = RenderFailed,
    ):
        self.color = color
        self.fail_at = fail_at
        self.fail_with = fail_with
        self.fail_on_load = fail_on_load
        self.vary_frames = vary_frames

        self.started = False
        self.stopped = False
        self.opened = 0
        self.released = 0
        self.specs: list[RenderSpec] = []
        self.frames: list[bytes] = []
        self.full_page_calls: list[bool] = []

    @property
    def running(self) -> bool:
        return self.started and not self.stopped

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    @asynccontextmanager
    async def surface(self, spec: RenderSpec):
        if self.fail_on_load:
            raise RenderFailed("Content did not load")
        self.opened += 1
        self.specs.append(spec)
        try:
            yield FakeSurface(self, spec)
        finally:
            self.released += 1


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def asset_dir(tmp_path: Path) -> Path:
    path = tmp_path / "assets"
    path.mkdir()
    return path


@pytest.fixture
def fake_encoder(tmp_path: Path):
    """Factory: write a shell script that stands in for ffmpeg, return its path."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def make(body: str) -> str:
        path = bin_dir / f"encoder-{uuid.uuid4().hex[:6]}"
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(0o755)
        return str(path)

    return make


@pytest.fixture
def passthrough_encoder(fake_encoder) -> str:
    """Echoes stdin to stdout, so output == concatenated frames."""
    return fake_encoder("exec cat")


@pytest.fixture
def make_settings(asset_dir: Path):
    def make(**overrides) -> Settings:
        values = dict(
            temp_dir=asset_dir,
            log_level="DEBUG",
            bridge_capacity=4,
            overlay_width=64,
            overlay_height=48,
        )
        values.update(overrides)
        return Settings(**values)

    return make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()
