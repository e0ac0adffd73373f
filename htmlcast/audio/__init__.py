"""
Audio Module

Converts raw PCM (uploaded, or embedded in a Gemini TTS response) to MP3.
"""

from .converter import parse_gemini_audio, stream_gemini_to_mp3, stream_raw_to_mp3

__all__ = ["parse_gemini_audio", "stream_gemini_to_mp3", "stream_raw_to_mp3"]
