"""
Media information extraction using ffprobe.

The compositor needs to know whether an upload is a real video and whether
it carries an audio track before it builds the filter graph.
"""

from pathlib import Path
from dataclasses import dataclass
from typing import Optional

import ffmpeg

from ..errors import EncodeFailed, InvalidInput


@dataclass
class VideoInfo:
    """What the compositor needs to know about an uploaded video."""
    duration: float          # Total duration in seconds
    width: int               # Frame width
    height: int              # Frame height
    fps: float               # Frames per second
    video_codec: str         # e.g., "h264"
    audio_codec: Optional[str]  # e.g., "aac", None if no audio
    path: Path

    @property
    def has_audio(self) -> bool:
        return self.audio_codec is not None


def _parse_rate(rate: str) -> float:
    # Rates can be fractional like "30000/1001"
    if "/" in rate:
        num, den = rate.split("/")
        return float(num) / float(den) if float(den) else 0.0
    return float(rate)


def get_video_info(video_path: str | Path) -> VideoInfo:
    """
    Extract video information using ffprobe.

    Raises InvalidInput if the file cannot be probed or has no video stream.
    """
    video_path = Path(video_path)

    if not video_path.exists():
        raise InvalidInput(f"Video not found: {video_path.name}")

    try:
        data = ffmpeg.probe(str(video_path))
    except ffmpeg.Error as e:
        stderr = e.stderr.decode(errors="replace") if e.stderr else ""
        raise InvalidInput(f"Could not read video {video_path.name}: {stderr.strip()[-200:]}") from e
    except FileNotFoundError as e:
        raise EncodeFailed("ffprobe not found") from e

    format_info = data.get("format", {})
    duration = float(format_info.get("duration", 0) or 0)

    video_stream = None
    audio_stream = None

    for stream in data.get("streams", []):
        if stream.get("codec_type") == "video" and video_stream is None:
            video_stream = stream
        elif stream.get("codec_type") == "audio" and audio_stream is None:
            audio_stream = stream

    if video_stream is None:
        raise InvalidInput(f"No video stream found in {video_path.name}")

    return VideoInfo(
        duration=duration,
        width=int(video_stream["width"]),
        height=int(video_stream["height"]),
        fps=_parse_rate(video_stream.get("avg_frame_rate", "0/1")) or _parse_rate(video_stream.get("r_frame_rate", "0/1")),
        video_codec=video_stream["codec_name"],
        audio_codec=audio_stream["codec_name"] if audio_stream else None,
        path=video_path,
    )
