"""
Pipeline Module

Contains the orchestration for every render and convert operation.
"""

from .orchestrator import (
    capture_still,
    stream_video,
    stream_composite,
    stream_raw_audio,
    stream_gemini_audio,
)

__all__ = [
    "capture_still",
    "stream_video",
    "stream_composite",
    "stream_raw_audio",
    "stream_gemini_audio",
]
