"""Tests for FFmpegStream process handling, using shell scripts as the encoder."""

import asyncio

import pytest

from htmlcast.capture.bridge import StreamBridge
from htmlcast.core.ffmpeg_utils import FFmpegStream, frame_stream_job
from htmlcast.errors import CaptureFailed, EncodeFailed
from htmlcast.models import Frame


async def feed(bridge: StreamBridge, chunks: list[bytes]):
    for i, data in enumerate(chunks):
        await bridge.write(Frame(i, data))
    await bridge.end()


async def read_all(encoder: FFmpegStream) -> bytes:
    return b"".join([chunk async for chunk in encoder.output()])


class TestFFmpegStream:

    @pytest.mark.asyncio
    async def test_passthrough_preserves_frame_order(self, passthrough_encoder):
        bridge = StreamBridge(capacity=2)
        frames = [f"frame-{i};".encode() for i in range(20)]

        async with FFmpegStream(frame_stream_job(10), source=bridge, binary=passthrough_encoder) as encoder:
            producer = asyncio.create_task(feed(bridge, frames))
            out = await read_all(encoder)
            await producer

        assert out == b"".join(frames)
        assert encoder.returncode == 0
        assert encoder.bytes_sent == len(out)

    @pytest.mark.asyncio
    async def test_failure_after_partial_output(self, fake_encoder):
        binary = fake_encoder("printf 'partial'; echo boom >&2; exit 3")
        bridge = StreamBridge(capacity=2)
        received = []

        async with FFmpegStream(frame_stream_job(10), source=bridge, binary=binary) as encoder:
            with pytest.raises(EncodeFailed) as exc_info:
                async for chunk in encoder.output():
                    received.append(chunk)

        err = exc_info.value
        assert b"".join(received) == b"partial"
        assert err.bytes_sent == len(b"partial")
        assert "boom" in err.stderr
        assert "code 3" in str(err)
        # The capture side is told to stop
        assert isinstance(bridge.failure, EncodeFailed)

    @pytest.mark.asyncio
    async def test_upstream_abort_is_reported_instead_of_success(self, passthrough_encoder):
        bridge = StreamBridge(capacity=4)

        async with FFmpegStream(frame_stream_job(10), source=bridge, binary=passthrough_encoder) as encoder:
            await bridge.write(Frame(0, b"first"))
            bridge.abort(CaptureFailed("renderer crashed", frame_index=1))

            with pytest.raises(CaptureFailed):
                await read_all(encoder)

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        bridge = StreamBridge()
        encoder = FFmpegStream(frame_stream_job(10), source=bridge, binary=str(tmp_path / "no-such-ffmpeg"))

        with pytest.raises(EncodeFailed):
            await encoder.start()

        assert isinstance(bridge.failure, EncodeFailed)

    @pytest.mark.asyncio
    async def test_close_kills_running_process(self, fake_encoder):
        bridge = StreamBridge()
        encoder = FFmpegStream(frame_stream_job(10), source=bridge, binary=fake_encoder("exec sleep 30"))
        await encoder.start()

        await asyncio.wait_for(encoder.close(), timeout=5)

        assert encoder.returncode is not None
        assert isinstance(bridge.failure, EncodeFailed)
        # Idempotent
        await encoder.close()

    def test_frame_stream_job_requires_source(self):
        with pytest.raises(ValueError):
            FFmpegStream(frame_stream_job(10))
