"""Infrastructure layer: external tools (FFmpeg) behind small interfaces.

Services depend on IMediaDecoder / IEncoder, not on the FFmpeg-backed
implementations, so tests can swap in fakes.
"""

from fastcut.infrastructure.decoder import AudioChunk, FFmpegDecoder, IMediaDecoder
from fastcut.infrastructure.encoder import (
    FFmpegEncoder,
    IEncoder,
    MemoryOutputTarget,
    StreamingOutputTarget,
)
from fastcut.infrastructure.ffmpeg_runner import FFmpegRunner

__all__ = [
    "AudioChunk",
    "FFmpegDecoder",
    "FFmpegEncoder",
    "FFmpegRunner",
    "IEncoder",
    "IMediaDecoder",
    "MemoryOutputTarget",
    "StreamingOutputTarget",
]
