"""Frame capture: pacing, sessions, and the hand-off to the encoder."""

from .bridge import StreamBridge
from .clock import FrameClock
from .session import CaptureSession

__all__ = ["StreamBridge", "FrameClock", "CaptureSession"]
