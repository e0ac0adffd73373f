"""Core utilities used across all modules."""

from .ffmpeg_utils import EncodeJob, FFmpegStream
from .video_info import VideoInfo, get_video_info

__all__ = ["EncodeJob", "FFmpegStream", "VideoInfo", "get_video_info"]
