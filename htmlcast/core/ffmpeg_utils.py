"""
FFmpeg utilities for encoding rendered output.

All encoding goes through here. Command lines are built as plain argument
lists, and every request gets its own ffmpeg process whose stdout is
streamed back to the caller while it runs.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Optional

from loguru import logger

from ..errors import EncodeFailed

# Fragmented MP4 can be written to a non-seekable pipe
STREAMABLE_MP4_FLAGS = "frag_keyframe+empty_moov+default_base_moof"


def get_video_encoding_args(quality: str = "balanced") -> list[str]:
    """
    libx264 arguments for a quality preset.

    Args:
        quality: "fast" (quick preview), "balanced" (default), "ultra" (best quality)
    """
    quality_map = {
        "fast": ["-c:v", "libx264", "-preset", "veryfast", "-crf", "23"],
        "balanced": ["-c:v", "libx264", "-preset", "fast", "-crf", "18"],
        "ultra": ["-c:v", "libx264", "-preset", "slow", "-crf", "15"],
    }
    return quality_map.get(quality, quality_map["balanced"]) + ["-pix_fmt", "yuv420p"]


class InputKind(str, Enum):
    """Where an encoder input comes from."""
    FRAME_STREAM = "frame_stream"   # Image bytes piped to stdin
    FILE = "file"                   # A path on disk


@dataclass
class EncodeInput:
    kind: InputKind
    descriptor: str                 # File path, or "pipe:0" for frame streams
    options: list[str] = field(default_factory=list)


@dataclass
class EncodeJob:
    """One ffmpeg invocation. Maps 1:1 to one response stream."""
    inputs: list[EncodeInput]
    output_format: str
    codec_params: list[str] = field(default_factory=list)
    filter_graph: Optional[str] = None
    maps: list[str] = field(default_factory=list)
    media_type: str = "application/octet-stream"

    def __post_init__(self):
        if not self.inputs:
            raise ValueError("EncodeJob needs at least one input")
        streams = [i for i in self.inputs if i.kind == InputKind.FRAME_STREAM]
        if len(streams) > 1:
            raise ValueError("Only one frame-stream input can be read from stdin")

    @property
    def reads_stdin(self) -> bool:
        return any(i.kind == InputKind.FRAME_STREAM for i in self.inputs)

    def to_args(self, binary: str = "ffmpeg") -> list[str]:
        """Full command line, writing the container to stdout."""
        args = [binary, "-hide_banner", "-loglevel", "error", "-nostats"]
        for inp in self.inputs:
            args += inp.options
            args += ["-i", inp.descriptor]
        if self.filter_graph:
            args += ["-filter_complex", self.filter_graph]
        for m in self.maps:
            args += ["-map", m]
        args += self.codec_params
        args += ["-f", self.output_format, "pipe:1"]
        return args


def frame_stream_job(fps: int, quality: str = "balanced") -> EncodeJob:
    """PNG frames on stdin -> H.264 MP4 at exactly `fps`."""
    return EncodeJob(
        inputs=[
            EncodeInput(
                kind=InputKind.FRAME_STREAM,
                descriptor="pipe:0",
                options=["-f", "image2pipe", "-c:v", "png", "-framerate", str(fps)],
            )
        ],
        codec_params=[
            *get_video_encoding_args(quality),
            "-r", str(fps),
            "-movflags", STREAMABLE_MP4_FLAGS,
        ],
        output_format="mp4",
        media_type="video/mp4",
    )


def overlay_filter(x: int, y: int) -> str:
    """Two-input overlay: [0] is the base video, [1] the still image."""
    return f"[0:v][1:v]overlay=x={x}:y={y}:eof_action=repeat[vout]"


def overlay_job(
    video_path: Path,
    overlay_path: Path,
    x: int,
    y: int,
    has_audio: bool,
    quality: str = "balanced",
) -> EncodeJob:
    """
    Burn a still overlay into a video.

    Video is re-encoded; the original audio track (if any) is copied as-is.
    """
    codec_params = [*get_video_encoding_args(quality)]
    maps = ["[vout]"]
    if has_audio:
        maps.append("0:a:0")
        codec_params += ["-c:a", "copy"]
    else:
        codec_params.append("-an")

    return EncodeJob(
        inputs=[
            EncodeInput(kind=InputKind.FILE, descriptor=str(video_path)),
            EncodeInput(kind=InputKind.FILE, descriptor=str(overlay_path)),
        ],
        filter_graph=overlay_filter(x, y),
        maps=maps,
        codec_params=codec_params + ["-movflags", STREAMABLE_MP4_FLAGS],
        output_format="mp4",
        media_type="video/mp4",
    )


def mp3_job(
    input_path: Path,
    input_codec: str = "s16le",
    sample_rate: int = 24000,
    channels: int = 1,
    quality: int = 2,
) -> EncodeJob:
    """Headerless PCM file -> MP3 (libmp3lame VBR)."""
    return EncodeJob(
        inputs=[
            EncodeInput(
                kind=InputKind.FILE,
                descriptor=str(input_path),
                options=["-f", input_codec, "-ar", str(sample_rate), "-ac", str(channels)],
            )
        ],
        codec_params=["-c:a", "libmp3lame", "-q:a", str(quality)],
        output_format="mp3",
        media_type="audio/mpeg",
    )


class FFmpegStream:
    """
    A running ffmpeg process exposed as an async byte stream.

    If a frame source is given, its chunks are pumped into stdin with
    drain() backpressure. `output()` yields stdout and ends in exactly one
    terminal outcome: clean completion, EncodeFailed, or the error the frame
    source was aborted with.

    Usage:
        async with FFmpegStream(job, source=bridge) as encoder:
            async for chunk in encoder.output():
                ...
    """

    def __init__(
        self,
        job: EncodeJob,
        source=None,
        binary: str = "ffmpeg",
        chunk_size: int = 64 * 1024,
        stderr_lines: int = 20,
    ):
        if job.reads_stdin and source is None:
            raise ValueError("Frame-stream job needs a source")
        self.job = job
        self.source = source
        self.binary = binary
        self.chunk_size = chunk_size

        self.bytes_sent = 0
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._stderr_tail: deque[str] = deque(maxlen=stderr_lines)
        self._upstream_error: Optional[BaseException] = None
        self._closed = False

    async def __aenter__(self) -> "FFmpegStream":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc else None

    @property
    def stderr_tail(self) -> str:
        return "\n".join(self._stderr_tail)

    async def start(self):
        cmd = self.job.to_args(self.binary)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            self._proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if self.job.reads_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            err = EncodeFailed(f"Could not start encoder {self.binary}: {e}")
            if self.source is not None:
                self.source.fail(err)
            raise err from e

        self._stderr_task = asyncio.create_task(self._read_stderr())
        if self.job.reads_stdin:
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self):
        stdin = self._proc.stdin
        try:
            async for chunk in self.source.chunks():
                stdin.write(chunk)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # ffmpeg went away; output() reports why
            self.source.fail(EncodeFailed("Encoder closed its input", stderr=self.stderr_tail))
            return
        except Exception as e:
            # Producer aborted. Kill ffmpeg so it cannot finalize a valid file.
            self._upstream_error = e
            self._kill()
            return

        try:
            stdin.close()
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass

    async def _read_stderr(self):
        while True:
            line = await self._proc.stderr.readline()
            if not line:
                return
            text = line.decode(errors="replace").rstrip()
            if text:
                self._stderr_tail.append(text)
                logger.debug(f"ffmpeg: {text}")

    async def output(self) -> AsyncIterator[bytes]:
        """Yield encoded bytes until ffmpeg exits, then report its outcome."""
        if self._proc is None:
            raise RuntimeError("FFmpegStream not started")

        while True:
            chunk = await self._proc.stdout.read(self.chunk_size)
            if not chunk:
                break
            self.bytes_sent += len(chunk)
            yield chunk

        returncode = await self._proc.wait()
        if self._pump_task is not None and not self._pump_task.done():
            # ffmpeg is gone; nothing will read the rest of the frames
            self._pump_task.cancel()
        await asyncio.gather(
            *(t for t in (self._pump_task, self._stderr_task) if t is not None),
            return_exceptions=True,
        )

        if self._upstream_error is not None:
            logger.error(f"Encoding aborted by upstream failure after {self.bytes_sent} bytes: {self._upstream_error}")
            raise self._upstream_error

        if returncode != 0:
            err = EncodeFailed(
                f"Encoder exited with code {returncode}",
                stderr=self.stderr_tail,
                bytes_sent=self.bytes_sent,
            )
            if self.source is not None:
                self.source.fail(err)
            if self.bytes_sent:
                logger.error(f"Encoder failed mid-stream after {self.bytes_sent} bytes: {self.stderr_tail}")
            else:
                logger.error(f"Encoder failed before producing output: {self.stderr_tail}")
            raise err

        logger.info(f"Encoded {self.bytes_sent} bytes ({self.job.output_format})")

    def _kill(self):
        if self._proc is not None and self._proc.returncode is None:
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass

    async def close(self):
        """Tear the process down. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self._proc is not None and self._proc.returncode is None:
            logger.warning("Terminating encoder before it finished")
            self._kill()
            await self._proc.wait()

        if self.source is not None and not self.source.ended:
            self.source.fail(EncodeFailed("Encoder closed", stderr=self.stderr_tail))

        for task in (self._pump_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
