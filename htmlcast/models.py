"""
Core data models for the render service.
These define render requests, captured frames, and audio conversion inputs.
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidInput


@dataclass(frozen=True)
class RenderSpec:
    """What to render and at which viewport. Immutable once a capture begins."""
    html: str
    width: int
    height: int
    transparent_background: bool = False

    def __post_init__(self):
        if not self.html:
            raise InvalidInput("Missing `html` in request body.")
        if self.width <= 0 or self.height <= 0:
            raise InvalidInput(f"Viewport must be positive, got {self.width}x{self.height}")

    def check_limits(self, max_dimension: int) -> "RenderSpec":
        if self.width > max_dimension or self.height > max_dimension:
            raise InvalidInput(
                f"Viewport {self.width}x{self.height} exceeds the {max_dimension}px limit"
            )
        return self


@dataclass(frozen=True)
class Frame:
    """One captured image. `index` is its position in emission order."""
    index: int
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ScreenshotRequest(_WireModel):
    """Body of POST /screenshot."""
    html: Optional[str] = None
    width: int = 1080
    height: int = 1080
    omit_background: bool = Field(default=False, alias="omitBackground")

    def to_spec(self) -> RenderSpec:
        return RenderSpec(
            html=self.html or "",
            width=self.width,
            height=self.height,
            transparent_background=self.omit_background,
        )


class VideoRequest(_WireModel):
    """Body of POST /video."""
    html: Optional[str] = None
    width: int = 1080
    height: int = 1920
    fps: int = 25
    duration: float = 5                   # Seconds
    omit_background: bool = Field(default=False, alias="omitBackground")

    def to_spec(self) -> RenderSpec:
        return RenderSpec(
            html=self.html or "",
            width=self.width,
            height=self.height,
            transparent_background=self.omit_background,
        )


# Raw PCM layouts ffmpeg can read without a container
RAW_AUDIO_CODECS = {"s16le", "s16be", "s24le", "s24be", "s32le", "s32be", "f32le", "f64le", "u8", "s8", "mulaw", "alaw"}


@dataclass(frozen=True)
class RawAudioParams:
    """How to interpret a headerless audio file, and how hard to compress it."""
    sample_rate: int = 24000
    channels: int = 1
    quality: int = 2                      # libmp3lame VBR 0-9, lower = better
    input_codec: str = "s16le"

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise InvalidInput(f"sampleRate must be positive, got {self.sample_rate}")
        if not 1 <= self.channels <= 8:
            raise InvalidInput(f"channels must be between 1 and 8, got {self.channels}")
        if not 0 <= self.quality <= 9:
            raise InvalidInput(f"quality must be between 0 and 9, got {self.quality}")
        if self.input_codec not in RAW_AUDIO_CODECS:
            raise InvalidInput(f"Unsupported inputCodec: {self.input_codec}")


# Gemini generateContent response (only the fields we read)

class GeminiInlineData(_WireModel):
    mime_type: str = Field(alias="mimeType")
    data: str


class GeminiPart(_WireModel):
    inline_data: Optional[GeminiInlineData] = Field(default=None, alias="inlineData")


class GeminiContent(_WireModel):
    parts: list[GeminiPart] = []


class GeminiCandidate(_WireModel):
    content: Optional[GeminiContent] = None


class GeminiResponse(_WireModel):
    candidates: list[GeminiCandidate] = []
