"""
Error taxonomy shared by the capture, encode and compositing pipelines.

InvalidInput is raised before any resource is acquired. RenderFailed and
EncodeFailed abort a request and trigger teardown. CleanupFailed is only
ever logged.
"""

from typing import Optional


class HtmlcastError(Exception):
    """Base class for every failure the service reports."""
    status_code = 500


class InvalidInput(HtmlcastError):
    """Missing or malformed request fields."""
    status_code = 400


class RenderFailed(HtmlcastError):
    """The browser could not produce a surface or the content never settled."""
    status_code = 502


class CaptureFailed(RenderFailed):
    """A capture session aborted while producing frames."""

    def __init__(self, message: str, frame_index: Optional[int] = None):
        super().__init__(message)
        self.frame_index = frame_index


class EncodeFailed(HtmlcastError):
    """FFmpeg reported an error (possibly after output was already sent)."""

    def __init__(self, message: str, stderr: str = "", bytes_sent: int = 0):
        super().__init__(message)
        self.stderr = stderr
        self.bytes_sent = bytes_sent


class CleanupFailed(HtmlcastError):
    """A temp asset could not be deleted. Logged, never raised to callers."""
