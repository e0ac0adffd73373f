"""
Raw PCM to MP3 conversion.

Two entry points: an uploaded headerless audio file, and a Gemini TTS
response whose first inline part holds base64 L16 audio.
"""

import base64
import binascii
import re
from typing import Any, AsyncIterator

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from ..assets import AssetScope, TempAsset
from ..core.ffmpeg_utils import FFmpegStream, mp3_job
from ..errors import InvalidInput
from ..models import GeminiResponse, RawAudioParams

DEFAULT_SAMPLE_RATE = 24000

_gemini_payload = TypeAdapter(list[GeminiResponse])
_rate_pattern = re.compile(r"rate=(\d+)")


async def stream_raw_to_mp3(
    audio: TempAsset,
    params: RawAudioParams,
    binary: str = "ffmpeg",
    chunk_size: int = 64 * 1024,
) -> AsyncIterator[bytes]:
    """Yield MP3 bytes for a headerless PCM file."""
    if audio.size == 0:
        raise InvalidInput("Audio input is empty.")

    job = mp3_job(
        audio.path,
        input_codec=params.input_codec,
        sample_rate=params.sample_rate,
        channels=params.channels,
        quality=params.quality,
    )
    logger.info(
        f"Converting {audio.size} bytes of {params.input_codec} "
        f"@ {params.sample_rate}Hz x{params.channels} to MP3 (q={params.quality})"
    )
    async with FFmpegStream(job, binary=binary, chunk_size=chunk_size) as encoder:
        async for chunk in encoder.output():
            yield chunk


def parse_gemini_audio(payload: Any) -> tuple[bytes, int]:
    """
    Pull the PCM bytes and sample rate out of a Gemini response array.

    Returns:
        (pcm_bytes, sample_rate)
    """
    if not isinstance(payload, list) or not payload:
        raise InvalidInput("Invalid Gemini response format: Expected a JSON array.")

    try:
        responses = _gemini_payload.validate_python(payload)
    except ValidationError as e:
        raise InvalidInput(f"Invalid Gemini response format: {e.error_count()} validation errors") from e

    inline = None
    candidates = responses[0].candidates
    if candidates and candidates[0].content and candidates[0].content.parts:
        inline = candidates[0].content.parts[0].inline_data
    if inline is None or not inline.data or not inline.mime_type:
        raise InvalidInput(
            "Missing audio data in Gemini response. Expected inlineData with data and mimeType."
        )

    try:
        # Line-wrapped (MIME style) base64 is accepted
        pcm = base64.b64decode("".join(inline.data.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidInput("Gemini audio data is not valid base64.") from e
    if not pcm:
        raise InvalidInput("Gemini audio data is empty.")

    match = _rate_pattern.search(inline.mime_type)
    sample_rate = int(match.group(1)) if match else DEFAULT_SAMPLE_RATE

    logger.debug(f"Gemini audio: {len(pcm)} bytes, {inline.mime_type}")
    return pcm, sample_rate


async def stream_gemini_to_mp3(
    payload: Any,
    scope: AssetScope,
    channels: int = 1,
    quality: int = 2,
    binary: str = "ffmpeg",
    chunk_size: int = 64 * 1024,
) -> AsyncIterator[bytes]:
    """Decode a Gemini TTS response and yield it as MP3."""
    pcm, sample_rate = parse_gemini_audio(payload)
    # audio/L16 is signed 16-bit little-endian PCM
    params = RawAudioParams(sample_rate=sample_rate, channels=channels, quality=quality, input_codec="s16le")
    audio = await scope.write_bytes(pcm, prefix="gemini-audio", suffix=".raw")

    async for chunk in stream_raw_to_mp3(audio, params, binary=binary, chunk_size=chunk_size):
        yield chunk
